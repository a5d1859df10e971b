"""Tests for μ-law ↔ PCM16 conversion."""

from __future__ import annotations

import struct

import pytest

from callrelay.core import codec
from callrelay.core.session import SampleFormat
from callrelay.exceptions import CodecError


class TestScalarDecode:
    """Tests for single-sample μ-law expansion."""

    def test_silence_byte_decodes_to_zero(self) -> None:
        assert codec.decode(0xFF) == 0

    def test_extremes(self) -> None:
        assert codec.decode(0x80) == 32124
        assert codec.decode(0x00) == -32124

    def test_negative_zero(self) -> None:
        assert codec.decode(0x7F) == 0

    def test_total_over_all_bytes(self) -> None:
        """Every byte decodes into the signed 16-bit range."""
        for byte in range(256):
            assert codec.PCM16_MIN <= codec.decode(byte) <= codec.PCM16_MAX

    def test_only_low_byte_is_used(self) -> None:
        assert codec.decode(0x1FF) == codec.decode(0xFF)
        assert codec.decode(-1) == codec.decode(0xFF)

    def test_sign_symmetry(self) -> None:
        for byte in range(0x80, 0x100):
            assert codec.decode(byte) == -codec.decode(byte & 0x7F)


class TestScalarEncode:
    """Tests for single-sample μ-law compression."""

    def test_zero_encodes_to_silence(self) -> None:
        assert codec.encode(0) == 0xFF

    def test_clipping(self) -> None:
        assert codec.encode(40000) == codec.encode(32767) == 0x80
        assert codec.encode(-40000) == codec.encode(-32768) == 0x00

    def test_decode_then_encode_is_identity(self) -> None:
        """Expanded values compress back to the same byte (except negative zero)."""
        for byte in range(256):
            if byte == 0x7F:
                continue
            assert codec.encode(codec.decode(byte)) == byte

    def test_encode_is_monotonic_in_magnitude(self) -> None:
        previous = codec.decode(codec.encode(0))
        for sample in range(0, 32768, 97):
            current = codec.decode(codec.encode(sample))
            assert current >= previous
            previous = current


class TestBufferConversion:
    """Tests for the table-driven buffer helpers."""

    def test_decode_buffer_matches_scalar(self) -> None:
        payload = bytes(range(256))
        pcm = codec.decode_buffer(payload)

        assert len(pcm) == 512
        samples = struct.unpack("<256h", pcm)
        assert list(samples) == [codec.decode(b) for b in range(256)]

    def test_encode_buffer_matches_scalar(self) -> None:
        samples = [-32768, -1000, -1, 0, 1, 1000, 32767]
        pcm = struct.pack(f"<{len(samples)}h", *samples)

        assert list(codec.encode_buffer(pcm)) == [codec.encode(s) for s in samples]

    def test_empty_buffers(self) -> None:
        assert codec.decode_buffer(b"") == b""
        assert codec.encode_buffer(b"") == b""

    def test_encode_buffer_rejects_odd_length(self) -> None:
        with pytest.raises(CodecError):
            codec.encode_buffer(b"\x00\x01\x02")

    def test_to_pcm16(self) -> None:
        assert codec.to_pcm16(b"\xff\xff", SampleFormat.MULAW) == b"\x00\x00" * 2
        assert codec.to_pcm16(b"\x01\x02", SampleFormat.PCM16) == b"\x01\x02"

    def test_to_pcm16_rejects_partial_sample(self) -> None:
        with pytest.raises(CodecError):
            codec.to_pcm16(b"\x01", SampleFormat.PCM16)


class TestSilence:
    """Tests for silent keepalive frames."""

    def test_mulaw_silence_decodes_to_zero(self) -> None:
        frame = codec.silence(SampleFormat.MULAW, 160)

        assert len(frame) == 160
        assert set(codec.decode_buffer(frame)) == {0}

    def test_pcm_silence_is_zero_bytes(self) -> None:
        assert codec.silence(SampleFormat.PCM16, 8192) == bytes(8192)
