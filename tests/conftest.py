"""Shared pytest fixtures for callrelay tests."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from typing import Any

import pytest

# callrelay.main builds an app at import time; give it keys to load
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("ELEVENLABS_API_KEY", "test-elevenlabs-key")

from callrelay.config import Settings  # noqa: E402
from callrelay.core.orchestrator import CallOrchestrator  # noqa: E402
from callrelay.core.registry import SessionRegistry  # noqa: E402
from callrelay.core.session import SampleFormat  # noqa: E402
from callrelay.exceptions import ConnectError, GenerationError, SynthesisError  # noqa: E402
from callrelay.services.llm.protocol import Message  # noqa: E402
from callrelay.services.stt.protocol import TranscriptEvent  # noqa: E402


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "deepgram_api_key": "test-deepgram-key",
        "groq_api_key": "test-groq-key",
        "elevenlabs_api_key": "test-elevenlabs-key",
        "keepalive_interval_seconds": 60.0,
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings], tmp_path) -> Settings:
    """Default Settings fixture, recording into a temporary directory."""
    return settings_factory(recordings_dir=str(tmp_path / "recordings"))


# =============================================================================
# Provider Fakes
# =============================================================================


class FakeTranscriptionPort:
    """In-memory transcription provider.

    ``gate`` holds connect() open until set; ``fail`` makes connect raise.
    """

    def __init__(self, *, fail: bool = False, gate: asyncio.Event | None = None) -> None:
        self.fail = fail
        self.gate = gate
        self.connects: list[tuple[str, int]] = []
        self.sent: list[bytes] = []
        self.closed: list[Any] = []
        self.on_event: Callable[[TranscriptEvent], None] | None = None

    async def connect(self, on_event, *, encoding: str = "mulaw", sample_rate: int = 8000):
        self.connects.append((encoding, sample_rate))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectError("transcription provider unreachable")
        self.on_event = on_event
        return f"handle-{len(self.connects)}"

    async def send(self, handle: Any, data: bytes) -> None:
        self.sent.append(data)

    async def close(self, handle: Any) -> None:
        self.closed.append(handle)

    def emit(self, text: str, *, is_final: bool = True) -> None:
        assert self.on_event is not None, "not connected"
        self.on_event(TranscriptEvent(text=text, is_final=is_final))


class FakeGenerator:
    """Returns canned replies in order; the last one repeats."""

    def __init__(
        self,
        replies: list[str] | str = "We have rooms available tonight.",
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.replies = [replies] if isinstance(replies, str) else list(replies)
        self.error = error
        self.gate = gate
        self.calls: list[list[Message]] = []

    async def generate(self, messages: list[Message]) -> str:
        self.calls.append(messages)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        return self.replies[index]


class FakeSynthesizer:
    """Synthesizes a fixed buffer of audio per call."""

    def __init__(
        self,
        audio: bytes = b"\x7f" * 160,
        *,
        output_format: SampleFormat = SampleFormat.MULAW,
        sample_rate: int = 8000,
        error: Exception | None = None,
        stream_error: Exception | None = None,
        chunk_size: int = 80,
    ) -> None:
        self.audio = audio
        self.output_format = output_format
        self.sample_rate = sample_rate
        self.error = error
        self.stream_error = stream_error
        self.chunk_size = chunk_size
        self.texts: list[str] = []
        self.stream_texts: list[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.audio

    async def synthesize_streaming(self, text: str, on_chunk) -> None:
        self.stream_texts.append(text)
        if self.stream_error is not None:
            raise self.stream_error
        for start in range(0, len(self.audio), self.chunk_size):
            await on_chunk(self.audio[start:start + self.chunk_size], False)
        await on_chunk(b"", True)


class FakeTransport:
    """Records outbound media and marks in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    async def send_audio(self, payload: bytes) -> None:
        self.events.append(("media", payload))

    async def send_mark(self, name: str) -> None:
        self.events.append(("mark", name))

    @property
    def media(self) -> list[bytes]:
        return [payload for kind, payload in self.events if kind == "media"]

    @property
    def marks(self) -> list[str]:
        return [name for kind, name in self.events if kind == "mark"]


class FakeListener:
    """Records status notifications as (kind, text) pairs."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    async def on_transcript(self, text: str) -> None:
        self.events.append(("transcript", text))

    async def on_reply(self, text: str) -> None:
        self.events.append(("bot_text", text))

    async def on_error(self, message: str) -> None:
        self.events.append(("error", message))


@pytest.fixture
def transcription() -> FakeTranscriptionPort:
    return FakeTranscriptionPort()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fakes() -> Any:
    """Access to the fake classes for tests that need custom instances."""

    class _Fakes:
        Transcription = FakeTranscriptionPort
        Generator = FakeGenerator
        Synthesizer = FakeSynthesizer
        Transport = FakeTransport
        Listener = FakeListener
        GenerationError = GenerationError
        SynthesisError = SynthesisError

    return _Fakes


@pytest.fixture
def orchestrator(settings, transcription, generator, synthesizer) -> CallOrchestrator:
    """CallOrchestrator wired to in-memory providers."""
    return CallOrchestrator(
        SessionRegistry(max_concurrent_calls=settings.max_concurrent_calls),
        transcription=transcription,
        generator=generator,
        synthesizer=synthesizer,
        settings=settings,
    )


async def settle(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_for() -> Callable[..., Any]:
    """Return an awaitable helper that polls a condition."""
    return settle


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def test_client(orchestrator, settings) -> Generator:
    """FastAPI TestClient wired to the in-memory orchestrator."""
    from fastapi.testclient import TestClient

    from callrelay.config import get_settings
    from callrelay.main import create_app

    app = create_app(orchestrator)
    app.dependency_overrides[get_settings] = lambda: settings

    with TestClient(app) as client:
        yield client
