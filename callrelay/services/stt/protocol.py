"""STT (Speech-to-Text) service protocol and data types."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """A transcription result.

    Interim results may still change; a final result is stable and is the
    only kind that starts a turn.
    """

    text: str
    is_final: bool
    confidence: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


TranscriptCallback = Callable[[TranscriptEvent], None]


class TranscriptionPort(Protocol):
    """Protocol for live transcription providers.

    ``connect`` must return only once the provider has acknowledged the
    connection. ``on_event`` is invoked on the event loop thread, in the
    order results arrive.
    """

    async def connect(
        self,
        on_event: TranscriptCallback,
        *,
        encoding: str = "mulaw",
        sample_rate: int = 8000,
    ) -> Any:
        """Open a streaming connection and return its handle.

        Raises:
            ConnectError: If the provider cannot be reached
        """
        ...

    async def send(self, handle: Any, data: bytes) -> None:
        """Forward audio bytes on an open connection."""
        ...

    async def close(self, handle: Any) -> None:
        """Close the connection. Must tolerate an already-closed handle."""
        ...
