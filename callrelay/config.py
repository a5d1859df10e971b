"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for required variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a polite hotel assistant for Axion Hotel in Lake City.\n"
    "- Help with room booking, availability, check-in/out, and services.\n"
    "- Reply naturally, like a receptionist.\n"
    "- Keep answers short, clear, and to the point."
)

DEFAULT_CHAT_PROMPT = (
    "You are a helpful call center agent. "
    "Always reply in short, clear, and to the point answers (1-2 sentences max)."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    deepgram_api_key: SecretStr = Field(description="Deepgram API key for live transcription")
    groq_api_key: SecretStr = Field(description="Groq API key for reply generation")
    elevenlabs_api_key: SecretStr = Field(description="ElevenLabs API key for speech synthesis")

    # ==========================================================================
    # Providers
    # ==========================================================================
    deepgram_model: str = Field(default="nova-2", description="Deepgram live model")
    groq_model: str = Field(
        default="llama-3.3-70b-versatile", description="Groq chat completion model"
    )
    groq_timeout_seconds: float = Field(
        default=10.0, description="Timeout for a single generation request"
    )
    elevenlabs_voice_id: str = Field(
        default="JBFqnCBsd6RMkjVDRZzb", description="ElevenLabs voice ID (Rachel)"
    )
    elevenlabs_model_id: str = Field(
        default="eleven_multilingual_v2", description="ElevenLabs model ID"
    )
    elevenlabs_output_format: str = Field(
        default="ulaw_8000",
        description="ElevenLabs output format (ulaw_8000 or pcm_<rate>)",
    )

    # ==========================================================================
    # Audio
    # ==========================================================================
    telephony_sample_rate: int = Field(
        default=8000, description="Sample rate of μ-law telephony media streams"
    )
    transcription_sample_rate: int = Field(
        default=16000, description="Linear PCM rate the transcription provider expects"
    )
    binary_sample_rate: int = Field(
        default=48000,
        description="Rate assumed for raw PCM16 binary frames without a start envelope",
    )
    transcoder_backend: Literal["soxr", "ffmpeg"] = Field(
        default="soxr",
        description="Resampler used when inbound and transcription rates differ",
    )
    synthesis_mode: Literal["full", "streaming"] = Field(
        default="full", description="Deliver synthesized audio in one piece or as chunks"
    )

    # ==========================================================================
    # Transcription channel
    # ==========================================================================
    pending_audio_capacity: int = Field(
        default=400,
        description="Frames buffered while the transcription connection is opening",
    )
    keepalive_interval_seconds: float = Field(
        default=5.0, description="Interval between silent keepalive frames"
    )
    keepalive_frame_bytes: int = Field(
        default=8192, description="Size of a silent keepalive frame"
    )

    # ==========================================================================
    # Call handling
    # ==========================================================================
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT, description="Fixed system instruction for every turn"
    )
    chat_system_prompt: str = Field(
        default=DEFAULT_CHAT_PROMPT, description="System instruction for the /llm/chat endpoint"
    )
    recordings_dir: str = Field(default="recordings", description="Where call WAVs are written")
    max_concurrent_calls: int = Field(
        default=50, description="Calls accepted before new ones are rejected"
    )
    server_base_url: str = Field(
        default="localhost:3000",
        description="Public host used in TwiML stream URLs",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def stream_host(self) -> str:
        """Server host without scheme, for wss:// stream URLs."""
        host = self.server_base_url
        for scheme in ("https://", "http://"):
            if host.startswith(scheme):
                host = host[len(scheme):]
        return host.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()  # type: ignore[call-arg]  # loads from env
