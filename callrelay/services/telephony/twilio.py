"""Twilio Media Streams integration.

Handles:
- TwiML generation that connects a call to the /call WebSocket
- Parsing of the Media Streams ``start`` envelope
- Outbound media and mark messages back to the caller
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any
from xml.etree.ElementTree import Element, SubElement, tostring

from fastapi import WebSocket

from callrelay.core.session import SampleFormat
from callrelay.logging_config import get_logger

logger: Any = get_logger(__name__)

TELEPHONY_SAMPLE_RATE = 8000

_ENCODINGS = {
    "audio/x-mulaw": SampleFormat.MULAW,
    "mulaw": SampleFormat.MULAW,
    "audio/x-l16": SampleFormat.PCM16,
    "linear16": SampleFormat.PCM16,
}


@dataclass(frozen=True, slots=True)
class TwilioCallInfo:
    """Information about a Twilio call from the voice webhook."""

    call_sid: str
    from_number: str
    to_number: str
    direction: str = "inbound"
    status: str = "ringing"

    @classmethod
    def from_webhook(cls, form_data: dict[str, str]) -> TwilioCallInfo:
        """Create from Twilio webhook form data."""
        return cls(
            call_sid=form_data.get("CallSid", ""),
            from_number=form_data.get("From", ""),
            to_number=form_data.get("To", ""),
            direction=form_data.get("Direction", "inbound"),
            status=form_data.get("CallStatus", "ringing"),
        )


@dataclass(frozen=True, slots=True)
class StreamStart:
    """Fields of a Media Streams ``start`` envelope."""

    stream_sid: str
    call_sid: str
    encoding: SampleFormat = SampleFormat.MULAW
    sample_rate: int = TELEPHONY_SAMPLE_RATE

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> StreamStart:
        start = message.get("start") or {}
        media_format = start.get("mediaFormat") or {}
        encoding = _ENCODINGS.get(
            str(media_format.get("encoding", "audio/x-mulaw")).lower(),
            SampleFormat.MULAW,
        )
        return cls(
            stream_sid=start.get("streamSid") or message.get("streamSid", ""),
            call_sid=start.get("callSid", ""),
            encoding=encoding,
            sample_rate=int(media_format.get("sampleRate", TELEPHONY_SAMPLE_RATE)),
        )


def generate_stream_twiml(websocket_url: str, *, bidirectional: bool = True) -> str:
    """Generate TwiML that connects the call to a bidirectional media stream.

    Args:
        websocket_url: wss:// URL of the media stream endpoint

    Returns:
        TwiML document
    """
    response = Element("Response")
    connect = SubElement(response, "Connect")
    stream = SubElement(connect, "Stream")
    stream.set("url", websocket_url)
    stream.set("bidirectional", str(bidirectional).lower())

    xml_str = tostring(response, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>{xml_str}'


class TwilioMediaSender:
    """Sends bot audio to the caller over the Media Streams WebSocket.

    Implements the OutboundTransport protocol.
    """

    def __init__(self, websocket: WebSocket, stream_sid: str) -> None:
        self._websocket = websocket
        self._stream_sid = stream_sid
        self.media_sent = 0
        self.marks_sent = 0

    @property
    def stream_sid(self) -> str:
        return self._stream_sid

    async def send_audio(self, payload: bytes) -> None:
        """Send one μ-law payload as a media message."""
        message = {
            "event": "media",
            "streamSid": self._stream_sid,
            "media": {"payload": base64.b64encode(payload).decode("ascii")},
        }
        try:
            await self._websocket.send_json(message)
            self.media_sent += 1
        except Exception as e:
            logger.error(f"Failed to send audio: {e}")

    async def send_mark(self, name: str) -> None:
        """Send a mark so Twilio reports when playback reaches this point."""
        message = {
            "event": "mark",
            "streamSid": self._stream_sid,
            "mark": {"name": name},
        }
        try:
            await self._websocket.send_json(message)
            self.marks_sent += 1
        except Exception as e:
            logger.error(f"Failed to send mark: {e}")
