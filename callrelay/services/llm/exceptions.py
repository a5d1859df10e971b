"""Custom exceptions for LLM services.

All of them are GenerationError, so a turn treats them the same way.
"""

from callrelay.exceptions import GenerationError


class LLMRateLimitError(GenerationError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float = 60.0):
        super().__init__(message)
        self.retry_after = retry_after


class LLMConnectionError(GenerationError):
    """Raised when unable to connect to LLM API (including timeouts)."""

    pass


class LLMAuthenticationError(GenerationError):
    """Raised when API key is invalid."""

    pass


class LLMEmptyResponseError(GenerationError):
    """Raised when the completion carries no text."""

    pass
