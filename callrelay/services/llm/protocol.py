"""LLM service protocol and data types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Message:
    """A single message sent to the generator."""

    role: Role
    content: str

    def to_api(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class GenerationPort(Protocol):
    """Protocol for reply generation."""

    async def generate(self, messages: list[Message]) -> str:
        """Return the reply text for an ordered list of messages.

        Raises:
            GenerationError: On timeout or provider error
        """
        ...
