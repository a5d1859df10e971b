"""Exception taxonomy for call handling.

Every error here is contained by the component that raises it: per frame,
per turn or per session. None of them is fatal to the process.
"""


class CallRelayError(Exception):
    """Base exception for call relay errors."""

    pass


class TransportError(CallRelayError):
    """Telephony or transcription connection problem."""

    pass


class ConnectError(TransportError):
    """Raised when the transcription provider cannot be reached."""

    pass


class CodecError(CallRelayError):
    """Raised for a malformed audio payload. The frame is dropped."""

    pass


class UpstreamError(CallRelayError):
    """Generation or synthesis failure. Aborts the current turn only."""

    pass


class GenerationError(UpstreamError):
    """Raised when reply generation times out or the provider errors."""

    pass


class SynthesisError(UpstreamError):
    """Raised when speech synthesis fails."""

    pass


class ResourceError(CallRelayError):
    """Recording file I/O failure. The call proceeds without a full recording."""

    pass


class CallCapacityError(CallRelayError):
    """Raised when the system is at maximum call capacity."""

    pass
