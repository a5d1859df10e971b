"""Deepgram STT service implementation with WebSocket streaming."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from callrelay.config import Settings, get_settings
from callrelay.exceptions import ConnectError
from callrelay.logging_config import get_logger
from callrelay.services.stt.protocol import TranscriptCallback, TranscriptEvent

if TYPE_CHECKING:
    from deepgram import DeepgramClient

logger: Any = get_logger(__name__)

# Deepgram model optimized for real-time conversation
DEEPGRAM_MODEL = "nova-2"


@dataclass
class DeepgramConnection:
    """Handle for one live Deepgram connection."""

    live: Any
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    closed: bool = False


def transcript_event_from_result(result: Any) -> TranscriptEvent | None:
    """Convert a Deepgram live result into a TranscriptEvent.

    Returns None for results without alternatives or with empty text.
    """
    channel = getattr(result, "channel", None)
    alternatives = getattr(channel, "alternatives", None)
    if not alternatives:
        return None

    alternative = alternatives[0]
    text = (getattr(alternative, "transcript", "") or "").strip()
    if not text:
        return None

    return TranscriptEvent(
        text=text,
        is_final=bool(getattr(result, "is_final", False)),
        confidence=float(getattr(alternative, "confidence", 0.0) or 0.0),
    )


class DeepgramTranscriptionService:
    """Deepgram live transcription for phone calls.

    Optimized for voice bot use cases:
    - Interim results for low-latency feedback
    - μ-law 8kHz telephony audio accepted natively
    - Results are handed back to the event loop that opened the connection
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.deepgram_model or DEEPGRAM_MODEL
        self._client: DeepgramClient | None = None

    @property
    def client(self) -> DeepgramClient:
        """Lazy initialization of Deepgram client."""
        if self._client is None:
            from deepgram import DeepgramClient

            self._client = DeepgramClient(
                api_key=self._settings.deepgram_api_key.get_secret_value(),
            )
        return self._client

    async def connect(
        self,
        on_event: TranscriptCallback,
        *,
        encoding: str = "mulaw",
        sample_rate: int = 8000,
    ) -> DeepgramConnection:
        """Open a live transcription connection.

        The SDK delivers results on its own thread; each one is converted
        and scheduled onto the calling event loop.

        Raises:
            ConnectError: If the connection cannot be established
        """
        from deepgram import LiveOptions, LiveTranscriptionEvents

        loop = asyncio.get_running_loop()

        def on_message(self_live: Any, result: Any, **kwargs: Any) -> None:
            """Handle incoming transcription results."""
            try:
                event = transcript_event_from_result(result)
            except Exception as e:
                logger.error(f"Error processing transcription result: {e}")
                return
            if event is not None:
                loop.call_soon_threadsafe(on_event, event)

        def on_error(self_live: Any, error: Any, **kwargs: Any) -> None:
            logger.error(f"Deepgram WebSocket error: {error}")

        def on_close(self_live: Any, close: Any, **kwargs: Any) -> None:
            logger.debug("Deepgram WebSocket closed")

        options = LiveOptions(
            model=self._model,
            encoding=encoding,
            sample_rate=sample_rate,
            channels=1,
            interim_results=True,
            punctuate=True,
            smart_format=True,
        )

        try:
            live = self.client.listen.live.v("1")
            live.on(LiveTranscriptionEvents.Transcript, on_message)
            live.on(LiveTranscriptionEvents.Error, on_error)
            live.on(LiveTranscriptionEvents.Close, on_close)
            started = await asyncio.to_thread(live.start, options)
        except Exception as e:
            raise ConnectError(f"Deepgram live connect failed: {e}") from e

        if not started:
            raise ConnectError("Deepgram live connect failed")

        connection = DeepgramConnection(live=live)
        logger.info(
            f"Deepgram live connection open ({connection.connection_id}, "
            f"{encoding}@{sample_rate}Hz)"
        )
        return connection

    async def send(self, handle: DeepgramConnection, data: bytes) -> None:
        if handle.closed:
            return
        await asyncio.to_thread(handle.live.send, data)

    async def close(self, handle: DeepgramConnection) -> None:
        if handle.closed:
            return
        handle.closed = True
        try:
            await asyncio.to_thread(handle.live.finish)
        except Exception as e:
            logger.warning(f"Deepgram finish failed ({handle.connection_id}): {e}")
        logger.info(f"Deepgram connection closed ({handle.connection_id})")
