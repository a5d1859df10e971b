"""Per-call bridge to the live transcription provider.

State machine:
    CONNECTING → OPEN → CLOSED
    CONNECTING → CLOSED (connect failed, or closed before it finished)

While CONNECTING, audio is held in a bounded ring buffer (oldest frame
dropped on overflow). On open the buffer is flushed in order before any new
frame is forwarded. While OPEN a keepalive task sends a silent frame on a
fixed interval so the provider does not drop the connection during caller
silence. Transcript events are queued and dispatched by a single task, in
arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum, auto
from typing import Any

from callrelay.exceptions import ConnectError
from callrelay.logging_config import get_logger
from callrelay.observability.metrics import KEEPALIVE_FRAMES, PENDING_FRAMES_DROPPED
from callrelay.services.stt.protocol import TranscriptEvent, TranscriptionPort

logger: Any = get_logger(__name__)

DEFAULT_PENDING_CAPACITY = 400
DEFAULT_KEEPALIVE_INTERVAL = 5.0
DEFAULT_KEEPALIVE_FRAME_BYTES = 8192

TranscriptHandler = Callable[[TranscriptEvent], Awaitable[None]]


class BridgeState(Enum):
    """Connection state of a TranscriptionBridge."""

    CONNECTING = auto()
    OPEN = auto()
    CLOSED = auto()


async def _cancel_task(task: asyncio.Task[None] | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    if task is asyncio.current_task():
        return
    with contextlib.suppress(asyncio.CancelledError):
        await task


class TranscriptionBridge:
    """Owns one streaming transcription connection for a call."""

    def __init__(
        self,
        port: TranscriptionPort,
        on_transcript: TranscriptHandler,
        *,
        encoding: str,
        sample_rate: int,
        silence_frame: bytes = bytes(DEFAULT_KEEPALIVE_FRAME_BYTES),
        capacity: int = DEFAULT_PENDING_CAPACITY,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        label: str = "",
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._port = port
        self._on_transcript = on_transcript
        self._encoding = encoding
        self._sample_rate = sample_rate
        self._silence_frame = silence_frame
        self._keepalive_interval = keepalive_interval
        self._label = label

        self._state = BridgeState.CONNECTING
        self._handle: Any = None
        self._pending: deque[bytes] = deque(maxlen=capacity)
        self._events: asyncio.Queue[TranscriptEvent] = asyncio.Queue()
        self._keepalive_task: asyncio.Task[None] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None

        self.dropped_frames = 0
        self.keepalive_frames_sent = 0

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is BridgeState.OPEN

    @property
    def capacity(self) -> int:
        return self._pending.maxlen or 0

    @property
    def pending_count(self) -> int:
        """Frames waiting for the connection to open."""
        return len(self._pending)

    async def connect(self) -> None:
        """Open the provider connection and flush buffered audio.

        Raises:
            ConnectError: If the provider cannot be reached
        """
        if self._state is not BridgeState.CONNECTING:
            raise ConnectError(f"Bridge is {self._state.name}, cannot connect")

        try:
            handle = await self._port.connect(
                self._enqueue,
                encoding=self._encoding,
                sample_rate=self._sample_rate,
            )
        except ConnectError:
            self._fail_connect()
            raise
        except Exception as e:
            self._fail_connect()
            raise ConnectError(f"Transcription connect failed: {e}") from e

        if self._state is BridgeState.CLOSED:
            # Closed while the connection was being established
            await self._close_handle(handle)
            return

        self._handle = handle
        self._dispatch_task = asyncio.create_task(
            self._dispatch(), name=f"transcripts-{self._label}"
        )

        flushed = 0
        while self._pending and self._state is BridgeState.CONNECTING:
            frame = self._pending.popleft()
            try:
                await self._port.send(handle, frame)
                flushed += 1
            except Exception as e:
                logger.error(f"Failed to flush buffered audio ({self._label}): {e}")

        if self._state is not BridgeState.CONNECTING:
            return

        # No await between the empty-buffer check and this transition
        self._state = BridgeState.OPEN
        self._keepalive_task = asyncio.create_task(
            self._keepalive(), name=f"keepalive-{self._label}"
        )
        logger.info(f"Transcription open ({self._label}), flushed {flushed} buffered frames")

    async def send(self, data: bytes) -> None:
        """Forward audio while open; buffer it while connecting."""
        if self._state is BridgeState.OPEN:
            try:
                await self._port.send(self._handle, data)
            except Exception as e:
                logger.error(f"Transcription send failed ({self._label}): {e}")
        elif self._state is BridgeState.CONNECTING:
            if len(self._pending) == self._pending.maxlen:
                self.dropped_frames += 1
                PENDING_FRAMES_DROPPED.inc()
            self._pending.append(data)

    async def stop_keepalive(self) -> None:
        """Cancel the keepalive timer."""
        task, self._keepalive_task = self._keepalive_task, None
        await _cancel_task(task)

    async def close(self) -> None:
        """Close the connection. Idempotent."""
        if self._state is BridgeState.CLOSED:
            return
        self._state = BridgeState.CLOSED
        self._pending.clear()

        await self.stop_keepalive()
        dispatch, self._dispatch_task = self._dispatch_task, None
        await _cancel_task(dispatch)

        handle, self._handle = self._handle, None
        if handle is not None:
            await self._close_handle(handle)
        logger.debug(f"Transcription bridge closed ({self._label})")

    def _fail_connect(self) -> None:
        self._state = BridgeState.CLOSED
        self._pending.clear()

    async def _close_handle(self, handle: Any) -> None:
        try:
            await self._port.close(handle)
        except Exception as e:
            logger.warning(f"Transcription close failed ({self._label}): {e}")

    def _enqueue(self, event: TranscriptEvent) -> None:
        """Provider callback: runs on the event loop, never blocks."""
        if self._state is BridgeState.CLOSED:
            return
        self._events.put_nowait(event)

    async def _dispatch(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._on_transcript(event)
            except Exception as e:
                logger.error(f"Transcript handler failed ({self._label}): {e}")

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            if self._state is not BridgeState.OPEN:
                return
            try:
                await self._port.send(self._handle, self._silence_frame)
            except Exception as e:
                logger.error(f"Keepalive send failed ({self._label}): {e}")
                continue
            self.keepalive_frames_sent += 1
            KEEPALIVE_FRAMES.inc()
            logger.debug(f"Sent silence frame to transcription ({self._label})")
