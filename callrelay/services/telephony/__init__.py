"""Telephony services (Twilio Media Streams).

This module provides integration with Twilio for voice telephony:
- TwiML generation for bidirectional streams
- TwilioMediaSender: outbound media and marks
"""

from callrelay.services.telephony.twilio import (
    TELEPHONY_SAMPLE_RATE,
    StreamStart,
    TwilioCallInfo,
    TwilioMediaSender,
    generate_stream_twiml,
)

__all__ = [
    # Sender
    "TwilioMediaSender",
    # Data classes
    "TwilioCallInfo",
    "StreamStart",
    # TwiML
    "generate_stream_twiml",
    # Constants
    "TELEPHONY_SAMPLE_RATE",
]
