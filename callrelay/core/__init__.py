"""Core call-session components.

This module provides the real-time orchestration for live calls:
- Session: Per-call state owned by the SessionRegistry
- TranscriptionBridge: Buffered, kept-alive transcription connection
- TurnController: Single-flight generate → synthesize → playback turns
- CallOrchestrator: Wires the above together for each call
"""

from callrelay.core.session import (
    AudioFrame,
    CodecMode,
    OutboundTransport,
    SampleFormat,
    Session,
    StatusListener,
    TurnState,
)
from callrelay.core.latency import LatencyRecorder
from callrelay.core.orchestrator import CallOrchestrator
from callrelay.core.recording import RecordingWriter
from callrelay.core.registry import SessionRegistry
from callrelay.core.transcription import BridgeState, TranscriptionBridge
from callrelay.core.turn import TurnController

__all__ = [
    # Session model
    "Session",
    "AudioFrame",
    "SampleFormat",
    "CodecMode",
    "TurnState",
    "OutboundTransport",
    "StatusListener",
    # Components
    "CallOrchestrator",
    "SessionRegistry",
    "TranscriptionBridge",
    "BridgeState",
    "TurnController",
    "RecordingWriter",
    "LatencyRecorder",
]
