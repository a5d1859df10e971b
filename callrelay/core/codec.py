"""G.711 μ-law ↔ 16-bit linear PCM conversion.

Telephony media streams carry 8-bit μ-law samples; transcription, the
recording and the resamplers work on 16-bit little-endian PCM. The scalar
functions are the reference implementation. The buffer functions apply them
through lookup tables built from the scalar functions, so both paths are
bit-identical.
"""

from __future__ import annotations

import numpy as np

from callrelay.core.session import SampleFormat
from callrelay.exceptions import CodecError

MULAW_BIAS = 0x84  # Added before companding, removed after expansion
MULAW_CLIP = 32635  # Largest magnitude the compressor represents
PCM16_MIN = -32768
PCM16_MAX = 32767
MULAW_SILENCE = 0xFF


def decode(sample: int) -> int:
    """Expand one μ-law byte into a 16-bit linear sample.

    Total over every integer: only the low 8 bits are used.
    """
    value = ~sample & 0xFF
    sign = value & 0x80
    exponent = (value >> 4) & 0x07
    mantissa = value & 0x0F

    magnitude = (((mantissa << 3) + MULAW_BIAS) << exponent) - MULAW_BIAS
    pcm = -magnitude if sign else magnitude
    return max(PCM16_MIN, min(PCM16_MAX, pcm))


def encode(sample: int) -> int:
    """Compress one 16-bit linear sample into a μ-law byte."""
    pcm = max(PCM16_MIN, min(PCM16_MAX, int(sample)))
    sign = 0x80 if pcm < 0 else 0x00
    magnitude = min(-pcm if sign else pcm, MULAW_CLIP) + MULAW_BIAS

    exponent = (magnitude >> 7).bit_length() - 1
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return ~(sign | (exponent << 4) | mantissa) & 0xFF


_DECODE_TABLE = np.array([decode(b) for b in range(256)], dtype="<i2")
_ENCODE_TABLE = np.array(
    [encode(s) for s in range(PCM16_MIN, PCM16_MAX + 1)], dtype=np.uint8
)


def decode_buffer(mulaw_bytes: bytes) -> bytes:
    """Convert μ-law bytes to PCM16 little-endian bytes, sample by sample."""
    if not mulaw_bytes:
        return b""
    indices = np.frombuffer(mulaw_bytes, dtype=np.uint8)
    return _DECODE_TABLE[indices].tobytes()


def encode_buffer(pcm_bytes: bytes) -> bytes:
    """Convert PCM16 little-endian bytes to μ-law bytes, sample by sample.

    Raises:
        CodecError: If the payload is not a whole number of 16-bit samples
    """
    if not pcm_bytes:
        return b""
    if len(pcm_bytes) % 2:
        raise CodecError(f"PCM16 payload has odd length {len(pcm_bytes)}")
    samples = np.frombuffer(pcm_bytes, dtype="<i2").astype(np.int32)
    return _ENCODE_TABLE[samples - PCM16_MIN].tobytes()


def to_pcm16(payload: bytes, sample_format: SampleFormat) -> bytes:
    """Return linear PCM for a payload in either sample format."""
    if sample_format is SampleFormat.MULAW:
        return decode_buffer(payload)
    if len(payload) % 2:
        raise CodecError(f"PCM16 payload has odd length {len(payload)}")
    return payload


def silence(sample_format: SampleFormat, size: int) -> bytes:
    """A silent frame of ``size`` bytes in the given sample format.

    μ-law silence is 0xFF: a zero byte decodes to full negative scale.
    """
    if sample_format is SampleFormat.MULAW:
        return bytes([MULAW_SILENCE]) * size
    return bytes(size)
