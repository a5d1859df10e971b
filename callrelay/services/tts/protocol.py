"""TTS (Text-to-Speech) service protocol and data types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from callrelay.core.session import SampleFormat

# Receives (audio bytes, is_final). The final call may carry empty audio.
ChunkCallback = Callable[[bytes, bool], Awaitable[None]]


class SynthesisPort(Protocol):
    """Protocol for TTS service implementations.

    Audio is produced in ``output_format`` at ``sample_rate``.
    """

    output_format: SampleFormat
    sample_rate: int

    async def synthesize(self, text: str) -> bytes:
        """Synthesize text to a complete audio buffer.

        Raises:
            SynthesisError: If synthesis fails or yields no audio
        """
        ...

    async def synthesize_streaming(self, text: str, on_chunk: ChunkCallback) -> None:
        """Synthesize text, awaiting ``on_chunk`` for each partial result.

        The last call has ``is_final=True``.

        Raises:
            SynthesisError: If synthesis fails, possibly after some chunks
        """
        ...
