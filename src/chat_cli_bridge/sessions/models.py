from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from chat_cli_bridge.delivery import MessageRef
from chat_cli_bridge.process.arguments import LaunchMode
from chat_cli_bridge.process.supervisor import AssistantProcessSupervisor

# USD per million tokens, used only when the CLI reports a cost but no tokens.
_ESTIMATE_INPUT_PRICE = 12.0
_ESTIMATE_OUTPUT_PRICE = 60.0
_ESTIMATE_INPUT_SHARE = 0.7


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    transaction_count: int = 0

    @property
    def context_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.cache_read_tokens + self.cache_creation_tokens

    def usage_percent(self, limit: int) -> float:
        if limit <= 0:
            return 0.0
        return self.context_tokens / limit * 100

    def add(self, usage: dict[str, Any] | None, cost_usd: float | None = None) -> None:
        """Accumulate one execution result.

        When the usage block carries no tokens but a cost was reported, the
        tokens are estimated from the cost.
        """
        if not usage and not cost_usd:
            return

        usage = usage or {}
        input_tokens = _as_int(usage.get("input_tokens"))
        output_tokens = _as_int(usage.get("output_tokens"))
        cache_read = _as_int(usage.get("cache_read_input_tokens"))
        cache_creation = _as_int(usage.get("cache_creation_input_tokens"))

        if input_tokens == 0 and output_tokens == 0 and cost_usd and cost_usd > 0:
            input_tokens = round(cost_usd * _ESTIMATE_INPUT_SHARE / _ESTIMATE_INPUT_PRICE * 1_000_000)
            output_tokens = round(cost_usd * (1 - _ESTIMATE_INPUT_SHARE) / _ESTIMATE_OUTPUT_PRICE * 1_000_000)

        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cache_read_tokens += cache_read
        self.cache_creation_tokens += cache_creation
        self.transaction_count += 1


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


@dataclass
class Session:
    user_id: str
    chat_id: str
    supervisor: AssistantProcessSupervisor
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    session_id: str | None = None
    message_count: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    last_todo_ref: MessageRef | None = None
    last_todos: list[dict] | None = None
    pending_resource: str | None = None
    last_activity_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_continuation: bool = False
    is_compacting: bool = False
    compact_requested: bool = False

    @property
    def is_active(self) -> bool:
        return self.supervisor.is_running

    def touch(self) -> None:
        self.last_activity_at = datetime.now(UTC)


@dataclass(frozen=True)
class HistoryEntry:
    session_id: str
    added_at: str
    last_access_at: str


@dataclass(frozen=True)
class SessionStatus:
    """Read-only snapshot of a user's session.

    ``is_loaded`` is False when only a stored id survives (for example after
    a restart); counters are then zero and token usage comes from the
    transcript, if one exists.
    """

    user_id: str
    session_id: str | None
    stored_session_id: str | None
    is_loaded: bool
    is_active: bool
    message_count: int
    elapsed_seconds: float
    idle_seconds: float
    token_usage: TokenUsage
    context_limit: int
    history_size: int
    is_continuation: bool
    summary: str | None = None

    @property
    def usage_percent(self) -> float:
        return self.token_usage.usage_percent(self.context_limit)


class SendStatus(Enum):
    ACCEPTED = "accepted"
    BUSY = "busy"
    FAILED = "failed"


@dataclass(frozen=True)
class SendResult:
    status: SendStatus
    mode: LaunchMode | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status is SendStatus.ACCEPTED


class CancelOutcome(Enum):
    CANCELLED = "cancelled"
    NO_ACTIVE_SESSION = "no_active_session"
