"""Custom exceptions for TTS services."""

from callrelay.exceptions import SynthesisError


class TTSConnectionError(SynthesisError):
    """Raised when unable to reach the TTS provider."""

    pass


class TTSEmptyAudioError(SynthesisError):
    """Raised when the provider returns no audio."""

    pass


class TTSConfigurationError(SynthesisError):
    """Raised for an unsupported voice or output format setting."""

    pass
