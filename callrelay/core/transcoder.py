"""Sample-rate conversion for inbound and bot audio.

Inbound audio whose rate differs from the transcription rate is streamed
through a Transcoder before it reaches the provider. Two backends share the
same interface:
- SoxrTranscoder: in-process streaming resampler (default, lowest latency)
- FfmpegTranscoder: external ffmpeg process fed through its stdin/stdout

AudioResampler converts bot audio, chunk by chunk, for the outbound leg and
the recording.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

import numpy as np
import soxr

from callrelay.exceptions import ResourceError
from callrelay.logging_config import get_logger

logger: Any = get_logger(__name__)

OutputCallback = Callable[[bytes], Awaitable[None]]

FFMPEG_READ_SIZE = 4096
STOP_TIMEOUT = 2.0  # Seconds to wait for ffmpeg to exit before killing it


class Transcoder(Protocol):
    """Streaming PCM16 rate converter: order-preserving, low added latency."""

    source_rate: int
    target_rate: int

    async def start(self, on_output: OutputCallback) -> None:
        """Begin converting; converted chunks are passed to ``on_output``."""
        ...

    async def write(self, data: bytes) -> None:
        """Feed PCM16 bytes at the source rate."""
        ...

    async def stop(self) -> None:
        """Release the underlying resource. Never raises if already stopped."""
        ...


class AudioResampler:
    """Streaming resampler for bot audio, one instance per utterance.

    Filter state carries over from one chunk to the next, so chunk
    boundaries do not restart the filter. Call flush() after the last chunk
    to collect the samples the filter still holds.
    """

    def __init__(
        self,
        source_rate: int,
        target_rate: int,
        quality: str = "HQ",  # VHQ, HQ, MQ, LQ, QQ
    ) -> None:
        self._source_rate = source_rate
        self._target_rate = target_rate
        self._quality = quality
        self._stream: soxr.ResampleStream | None = None
        self._carry = b""

    @property
    def ratio(self) -> float:
        """Resampling ratio (target/source)."""
        return self._target_rate / self._source_rate

    @property
    def needs_resampling(self) -> bool:
        """Check if resampling is actually needed."""
        return self._source_rate != self._target_rate

    def resample(self, audio_data: bytes) -> bytes:
        """Resample the next chunk of 16-bit mono PCM bytes."""
        if not self.needs_resampling or not audio_data:
            return audio_data

        data = self._carry + audio_data
        usable = len(data) // 2 * 2
        self._carry = data[usable:]
        if not usable:
            return b""

        if self._stream is None:
            self._stream = soxr.ResampleStream(
                self._source_rate,
                self._target_rate,
                1,
                dtype="int16",
                quality=self._quality,
            )
        converted = self._stream.resample_chunk(np.frombuffer(data[:usable], dtype="<i2"))
        return np.asarray(converted, dtype="<i2").tobytes()

    def flush(self) -> bytes:
        """Drain the filter and reset for the next utterance."""
        stream, self._stream = self._stream, None
        self._carry = b""
        if stream is None:
            return b""
        tail = stream.resample_chunk(np.zeros(0, dtype=np.int16), last=True)
        return np.asarray(tail, dtype="<i2").tobytes()


class SoxrTranscoder:
    """In-process streaming transcoder on soxr.ResampleStream."""

    def __init__(self, source_rate: int, target_rate: int, quality: str = "HQ") -> None:
        self.source_rate = source_rate
        self.target_rate = target_rate
        self._quality = quality
        self._stream: soxr.ResampleStream | None = None
        self._on_output: OutputCallback | None = None
        self._carry = b""  # Odd trailing byte held until the next write

    @property
    def running(self) -> bool:
        return self._stream is not None

    async def start(self, on_output: OutputCallback) -> None:
        self._stream = soxr.ResampleStream(
            self.source_rate,
            self.target_rate,
            1,
            dtype="int16",
            quality=self._quality,
        )
        self._on_output = on_output
        logger.debug(f"soxr transcoder started: {self.source_rate}Hz → {self.target_rate}Hz")

    async def write(self, data: bytes) -> None:
        if self._stream is None or self._on_output is None:
            return

        data = self._carry + data
        usable = len(data) // 2 * 2
        self._carry = data[usable:]
        if not usable:
            return

        samples = np.frombuffer(data[:usable], dtype="<i2")
        converted = self._stream.resample_chunk(samples)
        if len(converted):
            await self._on_output(np.asarray(converted, dtype="<i2").tobytes())

    async def stop(self) -> None:
        self._stream = None
        self._on_output = None
        self._carry = b""


class FfmpegTranscoder:
    """Transcoder backed by an ffmpeg subprocess.

    Raw s16le mono goes in on stdin at the source rate and comes out on
    stdout at the target rate; a reader task forwards stdout chunks.
    """

    def __init__(self, source_rate: int, target_rate: int, *, binary: str = "ffmpeg") -> None:
        self.source_rate = source_rate
        self.target_rate = target_rate
        self._binary = binary
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._on_output: OutputCallback | None = None

    @property
    def running(self) -> bool:
        return self._process is not None

    def command(self) -> list[str]:
        return [
            self._binary,
            "-hide_banner",
            "-loglevel", "error",
            "-f", "s16le",
            "-ar", str(self.source_rate),
            "-ac", "1",
            "-i", "pipe:0",
            "-f", "s16le",
            "-ar", str(self.target_rate),
            "-ac", "1",
            "pipe:1",
        ]

    async def start(self, on_output: OutputCallback) -> None:
        """Spawn ffmpeg.

        Raises:
            ResourceError: If the process cannot be started
        """
        args = self.command()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ResourceError(f"Failed to start ffmpeg: {e}") from e

        self._on_output = on_output
        self._tasks = [
            asyncio.create_task(self._pump_stdout(self._process), name="ffmpeg-stdout"),
            asyncio.create_task(self._pump_stderr(self._process), name="ffmpeg-stderr"),
        ]
        logger.debug(f"ffmpeg spawned (pid {self._process.pid}): {' '.join(args)}")

    async def write(self, data: bytes) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            return
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"ffmpeg stdin closed: {e}")

    async def stop(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=STOP_TIMEOUT)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.debug(f"ffmpeg exited with code={process.returncode}")

    async def _pump_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            chunk = await process.stdout.read(FFMPEG_READ_SIZE)
            if not chunk:
                break
            if self._on_output is None:
                continue
            try:
                await self._on_output(chunk)
            except Exception as e:
                logger.error(f"Transcoded chunk delivery failed: {e}")

    async def _pump_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for line in process.stderr:
            logger.error(f"ffmpeg stderr: {line.decode(errors='replace').rstrip()}")


def create_transcoder(
    backend: Literal["soxr", "ffmpeg"],
    source_rate: int,
    target_rate: int,
) -> Transcoder:
    """Build the configured transcoder backend."""
    if backend == "ffmpeg":
        return FfmpegTranscoder(source_rate, target_rate)
    return SoxrTranscoder(source_rate, target_rate)
