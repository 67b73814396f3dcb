from chat_cli_bridge.sessions.models import (
    CancelOutcome,
    HistoryEntry,
    SendResult,
    SendStatus,
    Session,
    SessionStatus,
    TokenUsage,
)
from chat_cli_bridge.sessions.orchestrator import SessionOrchestrator
from chat_cli_bridge.sessions.registry import ActiveProcessRegistry
from chat_cli_bridge.sessions.store import SessionStore
from chat_cli_bridge.sessions.transcripts import TranscriptReader

__all__ = [
    "ActiveProcessRegistry",
    "CancelOutcome",
    "HistoryEntry",
    "SendResult",
    "SendStatus",
    "Session",
    "SessionOrchestrator",
    "SessionStatus",
    "SessionStore",
    "TokenUsage",
    "TranscriptReader",
]
