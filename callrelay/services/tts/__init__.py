"""Text-to-Speech services (ElevenLabs)."""

from callrelay.services.tts.elevenlabs import ElevenLabsSynthesisService, parse_output_format
from callrelay.services.tts.exceptions import (
    TTSConfigurationError,
    TTSConnectionError,
    TTSEmptyAudioError,
)
from callrelay.services.tts.protocol import ChunkCallback, SynthesisPort

__all__ = [
    # Services
    "ElevenLabsSynthesisService",
    # Protocol
    "SynthesisPort",
    "ChunkCallback",
    # Utilities
    "parse_output_format",
    # Exceptions
    "TTSConnectionError",
    "TTSEmptyAudioError",
    "TTSConfigurationError",
]
