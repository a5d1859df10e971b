"""Registry of live call sessions.

The registry is the only owner of sessions. Anything holding a connection
id looks the session up here and treats "absent" as "call is gone": a
session that is being torn down already reads as absent.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from callrelay.core.session import OutboundTransport, Session
from callrelay.exceptions import CallCapacityError
from callrelay.logging_config import get_logger
from callrelay.observability.metrics import ACTIVE_CALLS, record_call_metrics

logger: Any = get_logger(__name__)

DEFAULT_MAX_CONCURRENT_CALLS = 50


class SessionRegistry:
    """Async-safe map of connection id to Session."""

    def __init__(self, max_concurrent_calls: int = DEFAULT_MAX_CONCURRENT_CALLS) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._max_concurrent_calls = max_concurrent_calls

    async def create(
        self,
        connection_id: str,
        *,
        transport: OutboundTransport,
        **fields: Any,
    ) -> tuple[Session, bool]:
        """Register a session for a connection.

        Returns (session, created). A second start for the same connection
        returns the existing session with created=False.

        Raises:
            CallCapacityError: If the system is at maximum capacity.
        """
        async with self._lock:
            existing = self._sessions.get(connection_id)
            if existing is not None:
                return existing, False

            if len(self._sessions) >= self._max_concurrent_calls:
                logger.warning(
                    f"Max concurrent calls reached ({self._max_concurrent_calls}), "
                    f"rejecting connection {connection_id}"
                )
                raise CallCapacityError(
                    f"System at capacity ({self._max_concurrent_calls} concurrent calls)"
                )

            session = Session(connection_id=connection_id, transport=transport, **fields)
            self._sessions[connection_id] = session
            ACTIVE_CALLS.set(len(self._sessions))

            logger.info(
                f"Created session for connection {connection_id} "
                f"(active: {len(self._sessions)}/{self._max_concurrent_calls})"
            )
            return session, True

    async def get(self, connection_id: str) -> Session | None:
        """Look up a live session. Sessions being destroyed read as absent."""
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None or session.closing:
                return None
            return session

    def peek(self, connection_id: str) -> Session | None:
        """Lock-free lookup for hot paths (per-frame audio)."""
        session = self._sessions.get(connection_id)
        if session is None or session.closing:
            return None
        return session

    async def destroy(self, connection_id: str, *, outcome: str = "completed") -> bool:
        """Tear a session down and release everything it owns.

        Release order: in-flight turn, pending transcription connect,
        keepalive, transcoder, transcription connection, recording. Each
        release is attempted even if an earlier one fails. Returns False if
        there was nothing to destroy.
        """
        async with self._lock:
            session = self._sessions.get(connection_id)
            if session is None or session.closing:
                return False
            session.closing = True

        if session.turns is not None:
            await _release(connection_id, "turn", session.turns.cancel())

        if session.connect_task is not None and not session.connect_task.done():
            await _release(connection_id, "connect", _cancel(session.connect_task))

        if session.bridge is not None:
            await _release(connection_id, "keepalive", session.bridge.stop_keepalive())

        if session.transcoder is not None:
            await _release(connection_id, "transcoder", session.transcoder.stop())

        if session.bridge is not None:
            await _release(connection_id, "transcription", session.bridge.close())

        if session.recording is not None:
            try:
                session.recording.close()
            except Exception as e:
                logger.error(f"Failed to close recording for {connection_id}: {e}")

        async with self._lock:
            self._sessions.pop(connection_id, None)
            ACTIVE_CALLS.set(len(self._sessions))

        record_call_metrics(outcome, session.duration_seconds)
        if session.latency is not None:
            summary = session.latency.summary()
            if summary:
                logger.info(f"Latency summary for {connection_id}: {summary}")

        logger.info(
            f"Session {connection_id} closed after {session.duration_seconds:.1f}s "
            f"(active: {len(self._sessions)})"
        )
        return True

    async def close_all(self) -> None:
        """Destroy every session (shutdown)."""
        for connection_id in list(self._sessions):
            try:
                await self.destroy(connection_id, outcome="shutdown")
            except Exception as e:
                logger.error(f"Error closing session {connection_id}: {e}")

    @property
    def active_count(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)


async def _release(connection_id: str, what: str, operation: Any) -> None:
    try:
        await operation
    except Exception as e:
        logger.error(f"Failed to release {what} for {connection_id}: {e}")


async def _cancel(task: asyncio.Task[Any]) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
