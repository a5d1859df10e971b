"""WebSocket handler for bidirectional call audio.

Handles two kinds of clients on the same endpoint:
- Twilio Media Streams: JSON envelopes (connected, start, media, mark, stop)
  carrying base64 μ-law audio
- Browser playground: raw PCM16 binary frames, with optional
  ``{"type": "register"}`` / ``{"type": "stop"}`` control messages. These
  clients also receive ``registered``, ``transcript``, ``bot_text`` and
  ``error`` status messages next to the audio.

Each socket gets its own connection id. The session is destroyed when the
stream stops or the socket goes away, whichever comes first.
"""

from __future__ import annotations

import base64
import binascii
import json
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from callrelay.core.orchestrator import CallOrchestrator
from callrelay.core.session import AudioFrame, SampleFormat, Session
from callrelay.exceptions import CallCapacityError
from callrelay.logging_config import get_logger, mask_sid
from callrelay.observability.metrics import CODEC_ERRORS
from callrelay.services.telephony.twilio import StreamStart, TwilioMediaSender

logger: Any = get_logger(__name__)

# Close code for "try again later"
CLOSE_CODE_OVERLOADED = 1013


def parse_sample_rate(value: Any) -> int | None:
    """Positive integer rate from a control message, or None if unusable."""
    if isinstance(value, bool):
        return None
    try:
        rate = int(value)
    except (TypeError, ValueError):
        return None
    return rate if rate > 0 else None


class PlaygroundSender(TwilioMediaSender):
    """Media sender for raw PCM clients that also shows them the conversation.

    Status messages are JSON objects tagged by ``type``: registered,
    transcript, bot_text and error.
    """

    async def send_status(self, kind: str, **fields: Any) -> None:
        try:
            await self._websocket.send_json({"type": kind, **fields})
        except Exception as e:
            logger.error(f"Failed to send {kind} status: {e}")

    async def on_transcript(self, text: str) -> None:
        await self.send_status("transcript", text=text)

    async def on_reply(self, text: str) -> None:
        await self.send_status("bot_text", text=text)

    async def on_error(self, message: str) -> None:
        await self.send_status("error", message=message)


class CallStreamHandler:
    """Dispatches the messages of one WebSocket connection."""

    def __init__(self, websocket: WebSocket, orchestrator: CallOrchestrator) -> None:
        self._websocket = websocket
        self._orchestrator = orchestrator
        self.connection_id = str(uuid.uuid4())
        self.stopped = False

    async def handle_text(self, text: str) -> None:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON received on {self.connection_id}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Unexpected JSON message on {self.connection_id}")
            return

        event = message.get("event")
        if event is None and "type" in message:
            await self._handle_control(message)
            return

        if event == "connected":
            logger.info(f"Media stream connected ({self.connection_id})")

        elif event == "start":
            info = StreamStart.from_message(message)
            logger.info(
                f"Stream started: {mask_sid(info.stream_sid)} for call "
                f"{mask_sid(info.call_sid)}, {info.encoding.value}@{info.sample_rate}Hz"
            )
            await self._orchestrator.start_call(
                self.connection_id,
                transport=TwilioMediaSender(self._websocket, info.stream_sid),
                stream_id=info.stream_sid,
                call_id=info.call_sid or info.stream_sid,
                inbound_format=info.encoding,
                sample_rate=info.sample_rate,
            )

        elif event == "media":
            payload = (message.get("media") or {}).get("payload", "")
            if not payload:
                return
            try:
                audio = base64.b64decode(payload, validate=True)
            except (binascii.Error, ValueError):
                CODEC_ERRORS.inc()
                logger.warning(f"Failed to decode audio payload on {self.connection_id}")
                return
            session = self._orchestrator.registry.peek(self.connection_id)
            if session is None:
                return
            await self._orchestrator.handle_audio(
                self.connection_id, AudioFrame(audio, session.inbound_format)
            )

        elif event == "mark":
            name = (message.get("mark") or {}).get("name", "")
            logger.debug(f"Playback mark reached on {self.connection_id}: {name}")

        elif event == "stop":
            logger.info(f"Stream stopped ({self.connection_id})")
            self.stopped = True

        else:
            logger.debug(f"Ignoring event {event!r} on {self.connection_id}")

    async def handle_binary(self, data: bytes) -> None:
        """Raw PCM16 audio. Starts a session on the first frame if needed."""
        if not data:
            return
        session = self._orchestrator.registry.peek(self.connection_id)
        if session is None:
            logger.info(
                f"Binary audio without a session on {self.connection_id}, "
                f"starting PCM session"
            )
            await self._start_binary_session()
        await self._orchestrator.handle_audio(
            self.connection_id, AudioFrame(data, SampleFormat.PCM16)
        )

    async def _handle_control(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "register":
            raw_rate = message.get("sampleRate")
            sample_rate = parse_sample_rate(raw_rate)
            if raw_rate is not None and sample_rate is None:
                logger.warning(
                    f"Ignoring register with invalid sampleRate {raw_rate!r} "
                    f"on {self.connection_id}"
                )
                return
            await self._start_binary_session(sample_rate)
        elif kind == "stop":
            logger.info(f"Client requested stop ({self.connection_id})")
            self.stopped = True
        else:
            logger.debug(f"Unhandled control message {kind!r} on {self.connection_id}")

    async def _start_binary_session(self, sample_rate: int | None = None) -> Session:
        settings = self._orchestrator.settings
        sender = PlaygroundSender(self._websocket, self.connection_id)
        try:
            session = await self._orchestrator.start_call(
                self.connection_id,
                transport=sender,
                listener=sender,
                stream_id=self.connection_id,
                call_id=self.connection_id,
                inbound_format=SampleFormat.PCM16,
                sample_rate=sample_rate or settings.binary_sample_rate,
            )
        except CallCapacityError:
            await sender.on_error("Start session failed")
            raise

        if session.listener is sender:
            await sender.send_status("registered")
        return session


async def call_stream_endpoint(websocket: WebSocket, orchestrator: CallOrchestrator) -> None:
    """Handle one call audio WebSocket connection.

    Protocol:
    - Receives JSON envelopes or binary PCM frames
    - Sends JSON media messages followed by a playback mark per reply
    """
    await websocket.accept()
    handler = CallStreamHandler(websocket, orchestrator)
    logger.info(f"WebSocket connected ({handler.connection_id})")

    outcome = "completed"
    try:
        while not handler.stopped:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected ({handler.connection_id})")
                break

            if message.get("bytes") is not None:
                await handler.handle_binary(message["bytes"])
            elif message.get("text") is not None:
                await handler.handle_text(message["text"])

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected ({handler.connection_id})")

    except CallCapacityError as e:
        outcome = "rejected"
        logger.warning(f"Rejecting connection {handler.connection_id}: {e}")
        await websocket.close(code=CLOSE_CODE_OVERLOADED)

    except Exception as e:
        outcome = "error"
        logger.error(f"WebSocket error on {handler.connection_id}: {e}")

    finally:
        await orchestrator.end_call(handler.connection_id, outcome=outcome)

    if handler.stopped:
        await websocket.close()
