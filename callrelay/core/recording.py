"""Streaming WAV recorder for call audio.

The header is written with zeroed size fields when the file is opened and
rewritten with the real sizes on close, so the recording can grow for the
whole call without buffering it in memory.
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import IO, Any

from callrelay.exceptions import ResourceError
from callrelay.logging_config import get_logger

logger: Any = get_logger(__name__)

WAV_HEADER_SIZE = 44
WAV_FORMAT_PCM = 1
CHANNELS = 1
BITS_PER_SAMPLE = 16


def build_wav_header(sample_rate: int, data_size: int | None = None) -> bytes:
    """Build a 44-byte RIFF/WAVE header for mono 16-bit PCM.

    With ``data_size`` None both size fields are zero-filled (provisional).
    """
    block_align = CHANNELS * BITS_PER_SAMPLE // 8
    byte_rate = sample_rate * block_align
    riff_size = 0 if data_size is None else data_size + 36
    data_size = data_size or 0
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        riff_size,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        WAV_FORMAT_PCM,
        CHANNELS,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


class RecordingWriter:
    """Append-only WAV sink for one call.

    Caller and bot audio are appended in call order. Writes are synchronous
    and never yield to the event loop, so the two paths cannot interleave
    inside a single write.
    """

    def __init__(self, path: Path, file: IO[bytes], sample_rate: int) -> None:
        self._path = path
        self._file: IO[bytes] | None = file
        self._sample_rate = sample_rate
        self._data_size = 0

    @classmethod
    def open(cls, path: str | Path, sample_rate: int = 8000) -> RecordingWriter:
        """Create the file (and parent directories) with a provisional header.

        Raises:
            ResourceError: If the file cannot be created
        """
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            file = target.open("wb")
            file.write(build_wav_header(sample_rate))
            file.flush()
        except OSError as e:
            raise ResourceError(f"Cannot open recording {target}: {e}") from e

        logger.debug(f"Recording opened: {target} @ {sample_rate}Hz")
        return cls(target, file, sample_rate)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def data_size(self) -> int:
        """PCM bytes written so far."""
        return self._data_size

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, pcm16: bytes) -> None:
        """Append PCM16 bytes. Failures are logged, never raised."""
        if self._file is None or not pcm16:
            return
        try:
            self._file.write(pcm16)
            self._data_size += len(pcm16)
        except (OSError, ValueError) as e:
            logger.error(f"Recording write failed for {self._path}: {e}")

    def close(self) -> None:
        """Finalize the header with the true sizes and release the file.

        Safe to call repeatedly and with zero bytes written.
        """
        file, self._file = self._file, None
        if file is None:
            return
        try:
            file.seek(0)
            file.write(build_wav_header(self._sample_rate, self._data_size))
            file.flush()
        except (OSError, ValueError) as e:
            logger.warning(f"Recording finalize failed for {self._path}: {e}")
        finally:
            try:
                file.close()
            except OSError as e:
                logger.warning(f"Recording close failed for {self._path}: {e}")

        logger.info(f"Recording saved: {self._path} ({self._data_size} bytes)")
