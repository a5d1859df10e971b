"""Health check endpoints.

Provides:
- Basic health check (GET /health)
- Detailed health check with provider configuration and load (GET /health/detailed)
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from callrelay import __version__
from callrelay.config import Settings, get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response."""

    status: str
    checks: dict[str, str]
    active_calls: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint.

    Returns:
        Simple status indicating the API is running.
    """
    return HealthResponse(status="healthy")


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> DetailedHealthResponse:
    """Detailed health check.

    Reports whether each provider is configured (no API calls are made)
    and how many calls are live.
    """
    checks = {
        "deepgram": "configured" if settings.deepgram_api_key.get_secret_value() else "missing",
        "groq": "configured" if settings.groq_api_key.get_secret_value() else "missing",
        "elevenlabs": (
            "configured" if settings.elevenlabs_api_key.get_secret_value() else "missing"
        ),
    }

    registry = request.app.state.orchestrator.registry
    status = "healthy" if all(v == "configured" for v in checks.values()) else "degraded"

    return DetailedHealthResponse(
        status=status,
        checks=checks,
        active_calls=registry.active_count,
        version=__version__,
    )
