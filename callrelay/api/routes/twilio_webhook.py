"""Twilio voice webhook.

Answers an incoming call with TwiML that opens a bidirectional media
stream to the /call WebSocket.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from callrelay.config import Settings, get_settings
from callrelay.logging_config import get_logger, mask_sid
from callrelay.services.telephony.twilio import TwilioCallInfo, generate_stream_twiml

router = APIRouter(prefix="/twilio", tags=["Twilio"])
logger: Any = get_logger(__name__)


@router.post("/incoming-call")
async def twilio_incoming_call(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Response:
    """Handle an incoming call from Twilio.

    Expected form data:
    - CallSid: Unique call identifier
    - From / To: Caller and called numbers
    - CallStatus: Current call status
    """
    form_data = await request.form()
    call_info = TwilioCallInfo.from_webhook({k: str(v) for k, v in form_data.items()})

    logger.info(
        f"Incoming call {mask_sid(call_info.call_sid)} "
        f"({call_info.direction}, status: {call_info.status})"
    )

    websocket_url = f"wss://{settings.stream_host}/call"
    return Response(
        content=generate_stream_twiml(websocket_url),
        media_type="text/xml",
    )
