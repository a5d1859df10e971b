"""Text chat endpoint for trying the reply model without a call."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from callrelay.config import Settings, get_settings
from callrelay.exceptions import GenerationError
from callrelay.logging_config import get_logger
from callrelay.services.llm.protocol import Message, Role

router = APIRouter(prefix="/llm", tags=["LLM"])
logger: Any = get_logger(__name__)


class ChatRequest(BaseModel):
    """Chat request body."""

    message: str = Field(min_length=1, max_length=2000)


class ChatResponse(BaseModel):
    """Chat response body."""

    reply: str


@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> ChatResponse:
    """Generate one reply to a single user message."""
    generator = request.app.state.orchestrator.generator
    messages = [
        Message(role=Role.SYSTEM, content=settings.chat_system_prompt),
        Message(role=Role.USER, content=payload.message),
    ]
    try:
        reply = await generator.generate(messages)
    except GenerationError as e:
        logger.error(f"Chat generation failed: {e}")
        raise HTTPException(status_code=502, detail="Reply generation failed") from e

    return ChatResponse(reply=reply)
