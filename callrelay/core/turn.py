"""Turn state machine: final transcript → generation → synthesis → playback.

A session runs at most one turn at a time. A final transcript that arrives
while a turn is in flight is dropped, not queued. Whatever happens inside a
turn, the session returns to IDLE when it ends.

Reply post-processing: only the first reply of a call may open with a
greeting. Later replies have leading greeting phrases removed before they
are synthesized (see strip_greeting).
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from typing import Any, Literal

from callrelay.core import codec
from callrelay.core.latency import LatencyRecorder
from callrelay.core.session import SampleFormat, Session, TurnState
from callrelay.core.transcoder import AudioResampler
from callrelay.exceptions import GenerationError, SynthesisError, UpstreamError
from callrelay.logging_config import get_logger
from callrelay.observability.metrics import record_turn
from callrelay.services.llm.protocol import GenerationPort, Message, Role
from callrelay.services.stt.protocol import TranscriptEvent
from callrelay.services.tts.protocol import SynthesisPort

logger: Any = get_logger(__name__)

PLAYBACK_MARK = "playback-completed"
TELEPHONY_SAMPLE_RATE = 8000

GREETING_RE = re.compile(
    r"^\s*(?:"
    r"(?:hello|hi|hey|greetings|good\s+(?:morning|afternoon|evening|day))\b(?:\s+there)?"
    r"|(?:welcome\s+to|thank\s+you\s+for\s+calling|thanks\s+for\s+calling)\b[^.!?,]*"
    r")\s*[,.!]*\s*",
    re.IGNORECASE,
)


def strip_greeting(text: str) -> str:
    """Remove leading greeting phrases from a reply.

    "Hello! Welcome to Axion Hotel. How can I help?" -> "How can I help?"
    Text after the greeting keeps its wording; its first letter is
    capitalized.
    """
    result = text
    while match := GREETING_RE.match(result):
        result = result[match.end():]
    result = result.strip()
    if result[:1].islower():
        result = result[0].upper() + result[1:]
    return result


class TurnController:
    """Runs turns for one session under a single-flight guard."""

    def __init__(
        self,
        session: Session,
        *,
        generator: GenerationPort,
        synthesizer: SynthesisPort,
        system_prompt: str,
        synthesis_mode: Literal["full", "streaming"] = "full",
        latency: LatencyRecorder | None = None,
        outbound_rate: int = TELEPHONY_SAMPLE_RATE,
    ) -> None:
        self._session = session
        self._generator = generator
        self._synthesizer = synthesizer
        self._system_prompt = system_prompt
        self._mode = synthesis_mode
        self._latency = latency or LatencyRecorder(call_id=session.call_id)
        self._task: asyncio.Task[None] | None = None

        self._outbound_rate = outbound_rate
        self._recording_rate = (
            session.recording.sample_rate if session.recording else outbound_rate
        )
        self._to_outbound, self._to_recording = self._new_resamplers()

    @property
    def state(self) -> TurnState:
        return self._session.turn_state

    @property
    def current_task(self) -> asyncio.Task[None] | None:
        return self._task

    def submit(self, event: TranscriptEvent) -> asyncio.Task[None] | None:
        """Start a turn for a final transcript if the session is idle.

        Returns the turn task, or None when the event does not start a turn.
        """
        if not event.is_final or not event.text.strip() or self._session.closing:
            return None

        if self._session.turn_state is TurnState.BUSY:
            logger.debug(
                f"Turn in flight for {self._session.connection_id}, "
                f"dropping final transcript: {event.text}"
            )
            record_turn("dropped")
            return None

        # Check-and-set without an await in between
        self._session.turn_state = TurnState.BUSY
        self._task = asyncio.create_task(
            self._run(event.text.strip()),
            name=f"turn-{self._session.connection_id}",
        )
        return self._task

    async def cancel(self) -> None:
        """Cancel an in-flight turn (session teardown)."""
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def build_messages(self, transcript: str) -> list[Message]:
        return [
            Message(role=Role.SYSTEM, content=self._system_prompt),
            Message(role=Role.USER, content=transcript),
        ]

    def apply_greeting_rule(self, reply: str) -> str:
        """Let the first reply of the call through; strip greetings after that."""
        if not self._session.has_greeted:
            self._session.has_greeted = True
            return reply.strip()
        return strip_greeting(reply)

    async def _run(self, transcript: str) -> None:
        span = self._latency.start("full_pipeline")
        outcome = "failed"
        try:
            outcome = await self._execute(transcript)
        except UpstreamError as e:
            logger.error(f"Turn failed for {self._session.connection_id}: {e}")
            stage = "Reply generation" if isinstance(e, GenerationError) else "Speech synthesis"
            await self._notify_error(f"{stage} failed")
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except Exception as e:
            logger.error(f"Unexpected turn error for {self._session.connection_id}: {e}")
        finally:
            self._session.turn_state = TurnState.IDLE
            span.end(ok=outcome == "completed")
            record_turn(outcome)

    async def _execute(self, transcript: str) -> str:
        logger.info(f"Caller ({self._session.connection_id}): {transcript}")
        self._to_outbound, self._to_recording = self._new_resamplers()

        reply = await self._latency.track(
            "generation",
            self._generator.generate(self.build_messages(transcript)),
        )
        reply = self.apply_greeting_rule(reply)
        if not reply:
            logger.info(f"Reply empty after greeting rule ({self._session.connection_id})")
            return "empty"

        logger.info(f"Bot ({self._session.connection_id}): {reply}")
        if self._session.listener is not None:
            await self._session.listener.on_reply(reply)

        if self._mode == "streaming":
            await self._speak_streaming(reply)
        else:
            await self._speak_full(reply)
        return "completed"

    async def _speak_full(self, reply: str) -> None:
        audio = await self._latency.track("synthesis", self._synthesizer.synthesize(reply))
        await self._deliver(audio)
        await self._finish_playback()

    async def _speak_streaming(self, reply: str) -> None:
        async def on_chunk(data: bytes, is_final: bool) -> None:
            if data:
                await self._deliver(data)

        try:
            await self._latency.track(
                "synthesis_stream",
                self._synthesizer.synthesize_streaming(reply, on_chunk),
            )
        except SynthesisError as e:
            logger.warning(
                f"Streaming synthesis failed for {self._session.connection_id}, "
                f"retrying as full synthesis: {e}"
            )
            await self._speak_full(reply)
            return
        await self._finish_playback()

    async def _notify_error(self, message: str) -> None:
        if self._session.listener is not None and not self._session.closing:
            await self._session.listener.on_error(message)

    def _new_resamplers(self) -> tuple[AudioResampler, AudioResampler]:
        rate = self._synthesizer.sample_rate
        return (
            AudioResampler(rate, self._outbound_rate),
            AudioResampler(rate, self._recording_rate),
        )

    async def _deliver(self, audio: bytes) -> None:
        """Send synthesized audio to the caller and append it to the recording."""
        if self._session.closing or not audio:
            return

        if self._synthesizer.output_format is SampleFormat.MULAW:
            pcm = codec.decode_buffer(audio)
            if self._to_outbound.needs_resampling:
                payload = codec.encode_buffer(self._to_outbound.resample(pcm))
            else:
                payload = audio
        else:
            pcm = audio
            payload = codec.encode_buffer(self._to_outbound.resample(pcm))

        await self._emit(payload, self._to_recording.resample(pcm))

    async def _emit(self, payload: bytes, recorded: bytes) -> None:
        if payload:
            await self._session.transport.send_audio(payload)
        if recorded and self._session.recording is not None:
            self._session.recording.write(recorded)

    async def _finish_playback(self) -> None:
        if self._session.closing:
            return
        # Resampler tails belong to this utterance, ahead of the mark
        await self._emit(
            codec.encode_buffer(self._to_outbound.flush()),
            self._to_recording.flush(),
        )
        await self._session.transport.send_mark(PLAYBACK_MARK)
