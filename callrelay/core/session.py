"""Per-call session state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from callrelay.core.latency import LatencyRecorder
    from callrelay.core.recording import RecordingWriter
    from callrelay.core.transcoder import Transcoder
    from callrelay.core.transcription import TranscriptionBridge
    from callrelay.core.turn import TurnController
    from callrelay.services.stt.protocol import TranscriptEvent


class SampleFormat(str, Enum):
    """Sample encoding of an audio payload."""

    MULAW = "mulaw"  # 8-bit logarithmic telephony encoding
    PCM16 = "linear16"  # 16-bit signed little-endian linear PCM


class CodecMode(Enum):
    """How inbound audio reaches the transcription provider."""

    DIRECT = auto()  # Native bytes forwarded as-is
    TRANSCODE = auto()  # Resampled to the transcription rate first


class TurnState(Enum):
    """Turn state machine: at most one turn in flight per session."""

    IDLE = auto()
    BUSY = auto()


class OutboundTransport(Protocol):
    """Protocol for sending audio back to the caller."""

    async def send_audio(self, payload: bytes) -> None:
        """Send one telephony-encoded audio payload to the caller."""
        ...

    async def send_mark(self, name: str) -> None:
        """Send a playback marker after the last audio payload."""
        ...


class StatusListener(Protocol):
    """Text side channel for clients that display the conversation."""

    async def on_transcript(self, text: str) -> None: ...

    async def on_reply(self, text: str) -> None: ...

    async def on_error(self, message: str) -> None: ...


@dataclass(frozen=True, slots=True)
class AudioFrame:
    """One inbound audio payload. Frames are ingested in arrival order."""

    payload: bytes
    format: SampleFormat = SampleFormat.MULAW


@dataclass
class Session:
    """State for a single live call.

    Owned by SessionRegistry. The transcoder, transcription bridge,
    recording and turn controller belong to the session and are released
    together when it is destroyed.
    """

    connection_id: str
    transport: OutboundTransport
    listener: StatusListener | None = field(default=None, repr=False)
    stream_id: str = ""
    call_id: str = ""
    inbound_format: SampleFormat = SampleFormat.MULAW
    sample_rate: int = 8000
    codec_mode: CodecMode = CodecMode.DIRECT
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Sub-resources, attached after creation
    bridge: TranscriptionBridge | None = field(default=None, repr=False)
    transcoder: Transcoder | None = field(default=None, repr=False)
    recording: RecordingWriter | None = field(default=None, repr=False)
    turns: TurnController | None = field(default=None, repr=False)
    latency: LatencyRecorder | None = field(default=None, repr=False)
    connect_task: asyncio.Task[None] | None = field(default=None, repr=False)

    turn_state: TurnState = TurnState.IDLE
    has_greeted: bool = False
    closing: bool = False
    transcript_history: list[TranscriptEvent] = field(default_factory=list, repr=False)

    @property
    def transcription_ready(self) -> bool:
        """Whether the transcription connection is open."""
        return self.bridge is not None and self.bridge.is_open

    @property
    def duration_seconds(self) -> float:
        return (datetime.now(UTC) - self.created_at).total_seconds()
