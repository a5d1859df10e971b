"""Groq LLM service implementation."""

from __future__ import annotations

from typing import Any

import groq
from groq import AsyncGroq

from callrelay.config import Settings, get_settings
from callrelay.exceptions import GenerationError
from callrelay.logging_config import get_logger
from callrelay.services.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMRateLimitError,
)
from callrelay.services.llm.protocol import Message

logger: Any = get_logger(__name__)

# Voice replies are spoken, keep them short
DEFAULT_MAX_TOKENS = 150
DEFAULT_TEMPERATURE = 0.7


class GroqService:
    """Groq chat completion for one-shot voice replies."""

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
        *,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.groq_model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client: AsyncGroq | None = None

    @property
    def client(self) -> AsyncGroq:
        """Lazy initialization of AsyncGroq client."""
        if self._client is None:
            self._client = AsyncGroq(
                api_key=self._settings.groq_api_key.get_secret_value(),
                timeout=self._settings.groq_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def generate(self, messages: list[Message]) -> str:
        """Generate a reply for the given conversation.

        Args:
            messages: Ordered messages, system instruction first

        Returns:
            Reply text, stripped

        Raises:
            LLMRateLimitError: When rate limit exceeded
            LLMConnectionError: When API unreachable or timed out
            LLMAuthenticationError: When API key invalid
            GenerationError: For other API errors or an empty reply
        """
        try:
            response = await self.client.chat.completions.create(
                messages=[m.to_api() for m in messages],  # type: ignore[misc]
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )

        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limit hit: {e}")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                retry_after=self._extract_retry_after(e),
            ) from e

        except groq.APITimeoutError as e:
            logger.error("Groq request timed out")
            raise LLMConnectionError("Groq API timed out") from e

        except groq.APIConnectionError as e:
            logger.error(f"Groq connection error: {e.__cause__}")
            raise LLMConnectionError("Failed to connect to Groq API") from e

        except groq.AuthenticationError as e:
            logger.error("Groq authentication failed")
            raise LLMAuthenticationError("Invalid Groq API key") from e

        except groq.APIStatusError as e:
            logger.error(f"Groq API error: {e.status_code} - {e.message}")
            raise GenerationError(f"Groq API error: {e.status_code}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise LLMEmptyResponseError("Empty response from Groq")
        return content.strip()

    def _extract_retry_after(self, error: groq.RateLimitError) -> float:
        """Read the retry-after header from a rate limit error, defaulting to 60s."""
        try:
            value = error.response.headers.get("retry-after")
            return float(value) if value else 60.0
        except (AttributeError, TypeError, ValueError):
            return 60.0
