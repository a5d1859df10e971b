"""Speech-to-Text services (Deepgram)."""

from callrelay.services.stt.deepgram import (
    DeepgramConnection,
    DeepgramTranscriptionService,
    transcript_event_from_result,
)
from callrelay.services.stt.protocol import (
    TranscriptCallback,
    TranscriptEvent,
    TranscriptionPort,
)

__all__ = [
    "DeepgramConnection",
    "DeepgramTranscriptionService",
    "TranscriptCallback",
    "TranscriptEvent",
    "TranscriptionPort",
    "transcript_event_from_result",
]
