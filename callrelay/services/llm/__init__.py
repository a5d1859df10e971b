"""LLM services (Groq)."""

from callrelay.services.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMRateLimitError,
)
from callrelay.services.llm.groq import GroqService
from callrelay.services.llm.protocol import GenerationPort, Message, Role

__all__ = [
    # Protocol and types
    "GenerationPort",
    "Message",
    "Role",
    # Implementation
    "GroqService",
    # Exceptions
    "LLMRateLimitError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "LLMEmptyResponseError",
]
