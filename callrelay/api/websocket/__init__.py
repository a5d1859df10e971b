"""WebSocket handlers for real-time call audio.

This module provides the WebSocket endpoint for call media:
- call_stream_endpoint: Main WebSocket handler
- CallStreamHandler: Per-connection message dispatch
"""

from callrelay.api.websocket.call_stream import CallStreamHandler, call_stream_endpoint

__all__ = [
    "call_stream_endpoint",
    "CallStreamHandler",
]
