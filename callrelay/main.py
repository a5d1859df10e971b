"""FastAPI application entry point.

callrelay - real-time voice agent that answers phone calls.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket

from callrelay import __version__
from callrelay.api.routes import health, llm, metrics, twilio_webhook
from callrelay.api.websocket.call_stream import call_stream_endpoint
from callrelay.config import Settings, get_settings
from callrelay.core.orchestrator import CallOrchestrator
from callrelay.core.registry import SessionRegistry
from callrelay.logging_config import setup_logging
from callrelay.services.llm.groq import GroqService
from callrelay.services.stt.deepgram import DeepgramTranscriptionService
from callrelay.services.tts.elevenlabs import ElevenLabsSynthesisService


def build_orchestrator(settings: Settings) -> CallOrchestrator:
    """Wire the provider services into a call orchestrator."""
    return CallOrchestrator(
        SessionRegistry(max_concurrent_calls=settings.max_concurrent_calls),
        transcription=DeepgramTranscriptionService(settings=settings),
        generator=GroqService(settings=settings),
        synthesizer=ElevenLabsSynthesisService(settings=settings),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging

    Shutdown:
    - Close active call sessions
    """
    settings = app.state.orchestrator.settings

    setup_logging(
        level=settings.log_level,
        enable_file=settings.is_production,
    )

    yield

    await app.state.orchestrator.registry.close_all()


def create_app(orchestrator: CallOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = orchestrator.settings if orchestrator is not None else get_settings()

    app = FastAPI(
        title="callrelay",
        description="Real-time voice agent for phone calls",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or build_orchestrator(settings)

    # Health check routes
    app.include_router(health.router, tags=["Health"])

    # Twilio voice webhook
    app.include_router(twilio_webhook.router)

    # Text chat against the reply model
    app.include_router(llm.router)

    # Metrics endpoint for Prometheus scraping
    app.include_router(metrics.router, tags=["Observability"])

    # WebSocket endpoint for call audio
    @app.websocket("/call")
    async def call_ws(websocket: WebSocket):
        """WebSocket endpoint for Twilio media streams and raw PCM clients."""
        await call_stream_endpoint(websocket, app.state.orchestrator)

    return app


# Application instance
app = create_app()
