from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

EXTERNAL_TOOL_PREFIX = "mcp__"


class ToolKind(Enum):
    TODO_WRITE = "todo_write"
    TODO_READ = "todo_read"
    EDIT_FILE = "edit_file"
    WRITE_FILE = "write_file"
    READ_FILE = "read_file"
    SHELL_COMMAND = "shell_command"
    SPAWN_SUBTASK = "spawn_subtask"
    EXTERNAL_TOOL = "external_tool"
    UNKNOWN_TOOL = "unknown_tool"


_KNOWN_TOOLS: dict[str, ToolKind] = {
    "todowrite": ToolKind.TODO_WRITE,
    "todoread": ToolKind.TODO_READ,
    "edit": ToolKind.EDIT_FILE,
    "write": ToolKind.WRITE_FILE,
    "read": ToolKind.READ_FILE,
    "bash": ToolKind.SHELL_COMMAND,
    "task": ToolKind.SPAWN_SUBTASK,
}


def classify_tool(name: str, external_prefix: str = EXTERNAL_TOOL_PREFIX) -> ToolKind:
    kind = _KNOWN_TOOLS.get(name.lower())
    if kind is not None:
        return kind
    if name.startswith(external_prefix):
        return ToolKind.EXTERNAL_TOOL
    return ToolKind.UNKNOWN_TOOL


@dataclass(frozen=True)
class SessionInitialized:
    session_id: str
    model: str | None = None
    cwd: str | None = None
    tools: tuple[str, ...] = ()
    permission_mode: str | None = None


@dataclass(frozen=True)
class AssistantText:
    text: str
    message_id: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class AssistantThinking:
    thinking: str
    signature: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class ToolInvocation:
    """A ``tool_use`` item from an assistant message.

    ``kind`` carries the specialization; the kind-specific properties read from
    ``input`` and fall back to empty values when the assistant omitted a field.
    """

    tool_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    kind: ToolKind = ToolKind.UNKNOWN_TOOL
    session_id: str | None = None

    @property
    def todos(self) -> list[dict[str, Any]]:
        todos = self.input.get("todos")
        if not isinstance(todos, list):
            return []
        return [t for t in todos if isinstance(t, dict)]

    @property
    def file_path(self) -> str:
        return str(self.input.get("file_path") or "")

    @property
    def old_string(self) -> str:
        return str(self.input.get("old_string") or "")

    @property
    def new_string(self) -> str:
        return str(self.input.get("new_string") or "")

    @property
    def content(self) -> str:
        return str(self.input.get("content") or "")

    @property
    def command(self) -> str:
        return str(self.input.get("command") or "")

    @property
    def description(self) -> str:
        return str(self.input.get("description") or "")

    @property
    def prompt(self) -> str:
        return str(self.input.get("prompt") or "")

    @property
    def subagent_type(self) -> str:
        return str(self.input.get("subagent_type") or "")


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: Any = None
    is_error: bool = False
    session_id: str | None = None
    # Set when no invocation with this id was seen earlier in the stream.
    orphaned: bool = False


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    result: str | None = None
    error: str | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    usage: dict[str, Any] | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class ParseFailure:
    line: str
    error: str


DomainEvent = Union[
    SessionInitialized,
    AssistantText,
    AssistantThinking,
    ToolInvocation,
    ToolResult,
    ExecutionResult,
    ParseFailure,
]


@dataclass(frozen=True)
class ProcessExited:
    """Reported once per run after the last domain event."""

    returncode: int | None
    result_seen: bool
    cancelled: bool = False
