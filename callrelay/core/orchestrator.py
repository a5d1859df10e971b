"""Call orchestration: session bootstrap and inbound audio ingestion.

CallOrchestrator wires the per-call components together:

    start  → register session, open recording, start transcoder,
             connect transcription in the background
    media  → decode, append to recording, forward (direct or transcoded)
    stop   → destroy the session

Provider callbacks never hold a Session reference. They carry the
connection id and look the session up in the registry, so a callback that
arrives after teardown finds nothing and returns.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from pathlib import Path
from typing import Any

from callrelay.config import Settings, get_settings
from callrelay.core import codec
from callrelay.core.latency import LatencyRecorder
from callrelay.core.recording import RecordingWriter
from callrelay.core.registry import SessionRegistry
from callrelay.core.session import (
    AudioFrame,
    CodecMode,
    OutboundTransport,
    SampleFormat,
    Session,
    StatusListener,
)
from callrelay.core.transcoder import Transcoder, create_transcoder
from callrelay.core.transcription import TranscriptionBridge
from callrelay.core.turn import TurnController
from callrelay.exceptions import CodecError, ConnectError, ResourceError
from callrelay.logging_config import get_logger, mask_sid
from callrelay.observability.metrics import CODEC_ERRORS
from callrelay.services.llm.protocol import GenerationPort
from callrelay.services.stt.protocol import TranscriptEvent, TranscriptionPort
from callrelay.services.tts.protocol import SynthesisPort

logger: Any = get_logger(__name__)

TranscoderFactory = Callable[..., Transcoder]


class CallOrchestrator:
    """Runs every live call against one set of provider ports."""

    def __init__(
        self,
        registry: SessionRegistry,
        *,
        transcription: TranscriptionPort,
        generator: GenerationPort,
        synthesizer: SynthesisPort,
        settings: Settings | None = None,
        transcoder_factory: TranscoderFactory = create_transcoder,
    ) -> None:
        self._registry = registry
        self._transcription = transcription
        self._generator = generator
        self._synthesizer = synthesizer
        self._settings = settings or get_settings()
        self._transcoder_factory = transcoder_factory

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def generator(self) -> GenerationPort:
        return self._generator

    async def start_call(
        self,
        connection_id: str,
        *,
        transport: OutboundTransport,
        listener: StatusListener | None = None,
        stream_id: str = "",
        call_id: str = "",
        inbound_format: SampleFormat = SampleFormat.MULAW,
        sample_rate: int | None = None,
    ) -> Session:
        """Create and bootstrap the session for a connection.

        A repeated start for a connection that already has a session returns
        the existing session untouched.

        Raises:
            CallCapacityError: If the system is at maximum capacity.
        """
        settings = self._settings
        if sample_rate is None:
            sample_rate = (
                settings.telephony_sample_rate
                if inbound_format is SampleFormat.MULAW
                else settings.binary_sample_rate
            )

        if inbound_format is SampleFormat.MULAW:
            codec_mode = CodecMode.DIRECT
            encoding, transcription_rate = SampleFormat.MULAW, sample_rate
        elif sample_rate == settings.transcription_sample_rate:
            codec_mode = CodecMode.DIRECT
            encoding, transcription_rate = SampleFormat.PCM16, sample_rate
        else:
            codec_mode = CodecMode.TRANSCODE
            encoding, transcription_rate = SampleFormat.PCM16, settings.transcription_sample_rate

        session, created = await self._registry.create(
            connection_id,
            transport=transport,
            listener=listener,
            stream_id=stream_id,
            call_id=call_id or stream_id or connection_id,
            inbound_format=inbound_format,
            sample_rate=sample_rate,
            codec_mode=codec_mode,
        )
        if not created:
            logger.warning(f"Duplicate start for connection {connection_id}, keeping session")
            return session

        logger.info(
            f"Call started: {mask_sid(session.call_id)} "
            f"({inbound_format.value}@{sample_rate}Hz, {codec_mode.name.lower()})"
        )

        session.latency = LatencyRecorder(call_id=session.call_id)
        session.recording = self._open_recording(session)

        bridge = TranscriptionBridge(
            self._transcription,
            functools.partial(self._on_transcript, connection_id),
            encoding=encoding.value,
            sample_rate=transcription_rate,
            silence_frame=codec.silence(encoding, settings.keepalive_frame_bytes),
            capacity=settings.pending_audio_capacity,
            keepalive_interval=settings.keepalive_interval_seconds,
            label=connection_id,
        )
        session.bridge = bridge

        if codec_mode is CodecMode.TRANSCODE:
            transcoder = self._transcoder_factory(
                settings.transcoder_backend, sample_rate, transcription_rate
            )
            try:
                await transcoder.start(bridge.send)
                session.transcoder = transcoder
            except ResourceError as e:
                logger.error(f"Transcoder unavailable for {connection_id}: {e}")

        session.turns = TurnController(
            session,
            generator=self._generator,
            synthesizer=self._synthesizer,
            system_prompt=settings.system_prompt,
            synthesis_mode=settings.synthesis_mode,
            latency=session.latency,
            outbound_rate=settings.telephony_sample_rate,
        )

        session.connect_task = asyncio.create_task(
            self._connect_transcription(connection_id, bridge),
            name=f"connect-{connection_id}",
        )
        return session

    async def handle_audio(self, connection_id: str, frame: AudioFrame) -> None:
        """Ingest one inbound frame. Frames must be passed in arrival order."""
        session = self._registry.peek(connection_id)
        if session is None:
            return

        try:
            pcm = codec.to_pcm16(frame.payload, frame.format)
        except CodecError as e:
            CODEC_ERRORS.inc()
            logger.warning(f"Dropping malformed frame for {connection_id}: {e}")
            return

        if session.recording is not None:
            session.recording.write(pcm)

        if session.codec_mode is CodecMode.TRANSCODE:
            if session.transcoder is not None:
                await session.transcoder.write(pcm)
            return

        if session.bridge is None:
            return
        if session.inbound_format is SampleFormat.MULAW and frame.format is SampleFormat.MULAW:
            await session.bridge.send(frame.payload)
        elif session.inbound_format is SampleFormat.MULAW:
            await session.bridge.send(codec.encode_buffer(pcm))
        else:
            await session.bridge.send(pcm)

    async def end_call(self, connection_id: str, *, outcome: str = "completed") -> bool:
        """Destroy the session for a connection. Safe to call more than once."""
        return await self._registry.destroy(connection_id, outcome=outcome)

    def _open_recording(self, session: Session) -> RecordingWriter | None:
        path = Path(self._settings.recordings_dir) / f"call_{session.call_id}.wav"
        try:
            return RecordingWriter.open(path, sample_rate=session.sample_rate)
        except ResourceError as e:
            logger.error(f"Recording disabled for {session.connection_id}: {e}")
            return None

    async def _connect_transcription(
        self, connection_id: str, bridge: TranscriptionBridge
    ) -> None:
        try:
            await bridge.connect()
        except ConnectError as e:
            logger.error(f"Transcription unavailable for {connection_id}: {e}")

    async def _on_transcript(self, connection_id: str, event: TranscriptEvent) -> None:
        session = self._registry.peek(connection_id)
        if session is None or session.turns is None:
            return
        if not event.text.strip():
            return

        session.transcript_history.append(event)
        if not event.is_final:
            logger.debug(f"Interim ({connection_id}): {event.text}")
            return

        if session.listener is not None:
            await session.listener.on_transcript(event.text)
        session.turns.submit(event)
