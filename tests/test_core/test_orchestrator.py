"""End-to-end tests for call orchestration with in-memory providers."""

from __future__ import annotations

import asyncio
import struct

import pytest

from callrelay.core.orchestrator import CallOrchestrator
from callrelay.core.registry import SessionRegistry
from callrelay.core.session import AudioFrame, CodecMode, SampleFormat, TurnState
from callrelay.core.transcription import BridgeState
from callrelay.core.turn import PLAYBACK_MARK
from callrelay.services.stt.protocol import TranscriptEvent

FRAME = bytes(range(0, 160))  # 20 ms of μ-law


def wav_data_size(path) -> int:
    return struct.unpack("<I", path.read_bytes()[40:44])[0]


async def start_mulaw_call(orchestrator, transport, connection_id="conn-1"):
    return await orchestrator.start_call(
        connection_id,
        transport=transport,
        stream_id="MZ123",
        call_id="CA123",
        inbound_format=SampleFormat.MULAW,
        sample_rate=8000,
    )


class TestCallFlow:
    """Tests for the full inbound → reply → playback cycle."""

    @pytest.mark.asyncio
    async def test_book_a_room_for_tonight(
        self, orchestrator, transcription, generator, synthesizer, transport, settings, wait_for
    ) -> None:
        session = await start_mulaw_call(orchestrator, transport)
        await wait_for(lambda: session.transcription_ready)

        for _ in range(10):
            await orchestrator.handle_audio("conn-1", AudioFrame(FRAME))
        transcription.emit("book a room for tonight")

        await wait_for(lambda: transport.marks)
        await wait_for(lambda: session.turn_state is TurnState.IDLE)

        assert transport.events == [("media", synthesizer.audio), ("mark", PLAYBACK_MARK)]
        assert generator.calls[0][-1].content == "book a room for tonight"

        recording = session.recording
        await orchestrator.end_call("conn-1")

        expected = 10 * len(FRAME) * 2 + len(synthesizer.audio) * 2
        assert recording.data_size == expected
        assert wav_data_size(recording.path) == expected
        assert recording.path.name == "call_CA123.wav"
        assert str(recording.path.parent) == settings.recordings_dir

    @pytest.mark.asyncio
    async def test_mulaw_call_is_transcribed_directly(
        self, orchestrator, transcription, transport, wait_for
    ) -> None:
        session = await start_mulaw_call(orchestrator, transport)
        await wait_for(lambda: session.transcription_ready)

        await orchestrator.handle_audio("conn-1", AudioFrame(FRAME))

        assert session.codec_mode is CodecMode.DIRECT
        assert transcription.connects == [("mulaw", 8000)]
        assert transcription.sent == [FRAME]
        await orchestrator.end_call("conn-1")

    @pytest.mark.asyncio
    async def test_interim_transcripts_do_not_start_turns(
        self, orchestrator, transcription, generator, transport, wait_for
    ) -> None:
        session = await start_mulaw_call(orchestrator, transport)
        await wait_for(lambda: session.transcription_ready)

        transcription.emit("book a", is_final=False)
        await wait_for(lambda: len(session.transcript_history) == 1)

        assert generator.calls == []
        assert session.transcript_history[0].is_final is False
        await orchestrator.end_call("conn-1")

    @pytest.mark.asyncio
    async def test_final_transcripts_reach_listener(
        self, orchestrator, transcription, transport, fakes, wait_for
    ) -> None:
        listener = fakes.Listener()
        session = await orchestrator.start_call(
            "conn-1",
            transport=transport,
            listener=listener,
            inbound_format=SampleFormat.PCM16,
            sample_rate=16000,
        )
        await wait_for(lambda: session.transcription_ready)

        transcription.emit("book a", is_final=False)
        transcription.emit("book a room")
        await wait_for(lambda: transport.marks == [PLAYBACK_MARK])

        assert listener.events == [
            ("transcript", "book a room"),
            ("bot_text", "We have rooms available tonight."),
        ]
        await orchestrator.end_call("conn-1")

    @pytest.mark.asyncio
    async def test_duplicate_start_keeps_session(self, orchestrator, transport) -> None:
        first = await start_mulaw_call(orchestrator, transport)
        second = await start_mulaw_call(orchestrator, transport)

        assert second is first
        await orchestrator.end_call("conn-1")


class TestPcmSessions:
    """Tests for linear PCM clients."""

    @pytest.mark.asyncio
    async def test_48k_pcm_is_transcoded_to_16k(
        self, orchestrator, transcription, transport, wait_for
    ) -> None:
        session = await orchestrator.start_call(
            "conn-pcm",
            transport=transport,
            inbound_format=SampleFormat.PCM16,
            sample_rate=48000,
        )
        await wait_for(lambda: session.transcription_ready)

        for _ in range(10):
            await orchestrator.handle_audio(
                "conn-pcm", AudioFrame(b"\x00\x01" * 960, SampleFormat.PCM16)
            )

        assert session.codec_mode is CodecMode.TRANSCODE
        assert transcription.connects == [("linear16", 16000)]
        forwarded = sum(len(chunk) for chunk in transcription.sent) // 2
        assert 0 < forwarded <= 10 * 960 // 3
        assert session.recording.sample_rate == 48000
        await orchestrator.end_call("conn-pcm")

        assert not session.transcoder.running

    @pytest.mark.asyncio
    async def test_16k_pcm_is_forwarded_directly(
        self, orchestrator, transcription, transport, wait_for
    ) -> None:
        session = await orchestrator.start_call(
            "conn-pcm",
            transport=transport,
            inbound_format=SampleFormat.PCM16,
            sample_rate=16000,
        )
        await wait_for(lambda: session.transcription_ready)
        frame = b"\x01\x00" * 320

        await orchestrator.handle_audio("conn-pcm", AudioFrame(frame, SampleFormat.PCM16))

        assert session.codec_mode is CodecMode.DIRECT
        assert session.transcoder is None
        assert transcription.sent == [frame]
        await orchestrator.end_call("conn-pcm")

    @pytest.mark.asyncio
    async def test_default_pcm_rate(self, orchestrator, transport, settings) -> None:
        session = await orchestrator.start_call(
            "conn-pcm", transport=transport, inbound_format=SampleFormat.PCM16
        )

        assert session.sample_rate == settings.binary_sample_rate
        await orchestrator.end_call("conn-pcm")

    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self, orchestrator, transport) -> None:
        session = await orchestrator.start_call(
            "conn-pcm",
            transport=transport,
            inbound_format=SampleFormat.PCM16,
            sample_rate=16000,
        )

        await orchestrator.handle_audio("conn-pcm", AudioFrame(b"\x01\x02\x03", SampleFormat.PCM16))

        assert session.recording.data_size == 0
        await orchestrator.end_call("conn-pcm")


class TestConnectTiming:
    """Tests for audio that arrives before transcription is ready."""

    @pytest.mark.asyncio
    async def test_audio_buffers_until_connected(
        self, fakes, settings, generator, synthesizer, transport, wait_for
    ) -> None:
        gate = asyncio.Event()
        transcription = fakes.Transcription(gate=gate)
        orchestrator = CallOrchestrator(
            SessionRegistry(),
            transcription=transcription,
            generator=generator,
            synthesizer=synthesizer,
            settings=settings,
        )
        session = await start_mulaw_call(orchestrator, transport)

        frames = [bytes([i]) * 160 for i in range(5)]
        for frame in frames:
            await orchestrator.handle_audio("conn-1", AudioFrame(frame))

        assert session.bridge.pending_count == 5
        gate.set()
        await wait_for(lambda: session.transcription_ready)

        assert transcription.sent == frames
        await orchestrator.end_call("conn-1")

    @pytest.mark.asyncio
    async def test_connect_failure_keeps_call_recording(
        self, fakes, settings, generator, synthesizer, transport, wait_for
    ) -> None:
        orchestrator = CallOrchestrator(
            SessionRegistry(),
            transcription=fakes.Transcription(fail=True),
            generator=generator,
            synthesizer=synthesizer,
            settings=settings,
        )
        session = await start_mulaw_call(orchestrator, transport)
        await wait_for(lambda: session.bridge.state is BridgeState.CLOSED)

        await orchestrator.handle_audio("conn-1", AudioFrame(FRAME))

        assert session.recording.data_size == len(FRAME) * 2
        assert await orchestrator.end_call("conn-1") is True

    @pytest.mark.asyncio
    async def test_end_call_cancels_pending_connect(
        self, fakes, settings, generator, synthesizer, transport
    ) -> None:
        gate = asyncio.Event()
        transcription = fakes.Transcription(gate=gate)
        orchestrator = CallOrchestrator(
            SessionRegistry(),
            transcription=transcription,
            generator=generator,
            synthesizer=synthesizer,
            settings=settings,
        )
        session = await start_mulaw_call(orchestrator, transport)
        await asyncio.sleep(0)
        assert transcription.connects == [("mulaw", 8000)]

        # The provider never answers; teardown must not wait for it
        await asyncio.wait_for(orchestrator.end_call("conn-1"), timeout=1.0)

        assert session.connect_task.done()
        assert session.bridge.state is BridgeState.CLOSED
        assert orchestrator.registry.active_count == 0
        assert transcription.closed == []


class TestTeardown:
    """Tests for callbacks that arrive after the call ended."""

    @pytest.mark.asyncio
    async def test_late_transcript_is_ignored(
        self, orchestrator, generator, transport, wait_for
    ) -> None:
        session = await start_mulaw_call(orchestrator, transport)
        await wait_for(lambda: session.transcription_ready)
        await orchestrator.end_call("conn-1")

        await orchestrator._on_transcript("conn-1", TranscriptEvent("too late", is_final=True))

        assert generator.calls == []
        assert transport.events == []

    @pytest.mark.asyncio
    async def test_audio_after_end_is_ignored(self, orchestrator, transport) -> None:
        session = await start_mulaw_call(orchestrator, transport)
        await orchestrator.end_call("conn-1")

        await orchestrator.handle_audio("conn-1", AudioFrame(FRAME))

        assert session.recording.data_size == 0

    @pytest.mark.asyncio
    async def test_end_call_twice(self, orchestrator, transport) -> None:
        await start_mulaw_call(orchestrator, transport)

        assert await orchestrator.end_call("conn-1") is True
        assert await orchestrator.end_call("conn-1") is False
