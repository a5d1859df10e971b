"""ElevenLabs TTS service implementation."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any

from callrelay.config import Settings, get_settings
from callrelay.core.session import SampleFormat
from callrelay.exceptions import SynthesisError
from callrelay.logging_config import get_logger
from callrelay.services.tts.exceptions import (
    TTSConfigurationError,
    TTSConnectionError,
    TTSEmptyAudioError,
)
from callrelay.services.tts.protocol import ChunkCallback

logger: Any = get_logger(__name__)

ELEVENLABS_DEFAULT_VOICE_ID = "JBFqnCBsd6RMkjVDRZzb"  # Rachel
ELEVENLABS_DEFAULT_MODEL_ID = "eleven_multilingual_v2"
ELEVENLABS_DEFAULT_OUTPUT_FORMAT = "ulaw_8000"  # Telephony-ready

_FORMAT_PREFIXES = {
    "ulaw": SampleFormat.MULAW,
    "pcm": SampleFormat.PCM16,
}


def parse_output_format(output_format: str) -> tuple[SampleFormat, int]:
    """Split an ElevenLabs output format such as ``ulaw_8000`` into (format, rate).

    Raises:
        TTSConfigurationError: For formats the call pipeline cannot play
    """
    prefix, _, rate = output_format.partition("_")
    sample_format = _FORMAT_PREFIXES.get(prefix)
    if sample_format is None or not rate.isdigit():
        raise TTSConfigurationError(f"Unsupported ElevenLabs output format: {output_format}")
    return sample_format, int(rate)


class ElevenLabsSynthesisService:
    """ElevenLabs TTS with full-buffer and chunked output."""

    def __init__(
        self,
        settings: Settings | None = None,
        voice_id: str | None = None,
        model_id: str | None = None,
        output_format: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._voice_id = voice_id or self._settings.elevenlabs_voice_id or ELEVENLABS_DEFAULT_VOICE_ID
        self._model_id = model_id or self._settings.elevenlabs_model_id or ELEVENLABS_DEFAULT_MODEL_ID
        self._output_format = (
            output_format
            or self._settings.elevenlabs_output_format
            or ELEVENLABS_DEFAULT_OUTPUT_FORMAT
        )
        self.output_format, self.sample_rate = parse_output_format(self._output_format)
        self._client = None

    def _get_client(self):
        if self._client is None:
            from elevenlabs import ElevenLabs

            self._client = ElevenLabs(
                api_key=self._settings.elevenlabs_api_key.get_secret_value()
            )
        return self._client

    async def synthesize(self, text: str) -> bytes:
        """Synthesize the whole reply in one request."""
        try:
            audio = await asyncio.to_thread(self._convert, text)
        except SynthesisError:
            raise
        except Exception as e:
            logger.error(f"ElevenLabs synthesis error: {e}")
            raise TTSConnectionError(f"ElevenLabs request failed: {e}") from e

        if not audio:
            raise TTSEmptyAudioError("No audio received from ElevenLabs")
        return self._whole_samples(audio)

    async def synthesize_streaming(self, text: str, on_chunk: ChunkCallback) -> None:
        """Stream the reply, forwarding chunks as the provider produces them."""
        carry = b""
        delivered = 0
        try:
            stream = await asyncio.to_thread(self._open_stream, text)
            while True:
                chunk = await asyncio.to_thread(next, stream, None)
                if chunk is None:
                    break
                if not chunk:
                    continue
                data = carry + chunk
                if self.output_format is SampleFormat.PCM16:
                    usable = len(data) // 2 * 2
                    data, carry = data[:usable], data[usable:]
                if data:
                    delivered += len(data)
                    await on_chunk(data, False)
        except SynthesisError:
            raise
        except Exception as e:
            logger.error(f"ElevenLabs streaming error after {delivered} bytes: {e}")
            raise TTSConnectionError(f"ElevenLabs stream failed: {e}") from e

        if not delivered:
            raise TTSEmptyAudioError("No audio received from ElevenLabs")
        await on_chunk(b"", True)

    def _convert(self, text: str) -> bytes:
        client = self._get_client()
        audio_chunks = client.text_to_speech.convert(
            text=text,
            voice_id=self._voice_id,
            model_id=self._model_id,
            output_format=self._output_format,
        )
        return b"".join(audio_chunks)

    def _open_stream(self, text: str) -> Iterator[bytes]:
        client = self._get_client()
        return iter(
            client.text_to_speech.stream(
                text=text,
                voice_id=self._voice_id,
                model_id=self._model_id,
                output_format=self._output_format,
            )
        )

    def _whole_samples(self, audio: bytes) -> bytes:
        if self.output_format is SampleFormat.PCM16 and len(audio) % 2:
            return audio[:-1]
        return audio
