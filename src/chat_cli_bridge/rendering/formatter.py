from __future__ import annotations

import json
import re
from html import escape
from typing import TYPE_CHECKING, Any

from chat_cli_bridge.stream.events import (
    AssistantThinking,
    ExecutionResult,
    ParseFailure,
    ProcessExited,
    SessionInitialized,
    ToolInvocation,
    ToolKind,
    ToolResult,
)

if TYPE_CHECKING:
    from chat_cli_bridge.sessions.models import HistoryEntry, SessionStatus

STATUS_ICONS = {
    "completed": "✅",
    "in_progress": "🔄",
    "pending": "⭕",
    "blocked": "🚧",
}

STATUS_TITLES = {
    "in_progress": "In Progress",
    "pending": "Pending",
    "blocked": "Blocked",
    "completed": "Completed",
}

PRIORITY_BADGES = {
    "critical": "🚨",
    "high": "🔴",
    "medium": "🟡",
    "low": "🟢",
}

TOOL_ICONS = {
    ToolKind.TODO_WRITE: "📋",
    ToolKind.TODO_READ: "📖",
    ToolKind.EDIT_FILE: "✏️",
    ToolKind.WRITE_FILE: "📝",
    ToolKind.READ_FILE: "👀",
    ToolKind.SHELL_COMMAND: "💻",
    ToolKind.SPAWN_SUBTASK: "🤖",
    ToolKind.EXTERNAL_TOOL: "🔌",
    ToolKind.UNKNOWN_TOOL: "🔧",
}

_FENCE_RE = re.compile(r"```[^\n`]*\n(.*?)```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")
_H1_RE = re.compile(r"^# (.+)$", re.MULTILINE)
_H2_RE = re.compile(r"^#{2,6} (.+)$", re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_ITALIC_RE = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])")
_NUMBERED_RE = re.compile(r"^\d+\.\s+", re.MULTILINE)
_BULLET_RE = re.compile(r"^[*-]\s+", re.MULTILINE)
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_SHORT_ID = 8


def _esc(text: Any) -> str:
    return escape("" if text is None else str(text), quote=False)


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _as_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [item.get("text", "") for item in content if isinstance(item, dict) and item.get("type") == "text"]
        if parts:
            return "\n".join(str(p) for p in parts)
    return json.dumps(content, ensure_ascii=False)


def short_id(session_id: str | None) -> str:
    return session_id[-_SHORT_ID:] if session_id else "none"


def todos_changed(old: list[dict] | None, new: list[dict] | None) -> bool:
    """True when status, content or priority of any item differs."""
    if old is None or new is None or len(old) != len(new):
        return True
    for before, after in zip(old, new):
        for key in ("status", "content", "priority"):
            if before.get(key) != after.get(key):
                return True
    return False


class HtmlFormatter:
    """Renders domain events as chat HTML (b, i, s, code, pre, a)."""

    def format_assistant_text(self, text: str) -> str:
        protected: list[str] = []

        def stash(markup: str) -> str:
            protected.append(markup)
            return f"\x00{len(protected) - 1}\x00"

        formatted = _esc(text)
        formatted = _FENCE_RE.sub(lambda m: stash(f"<pre>{m.group(1).rstrip()}</pre>"), formatted)
        formatted = _INLINE_CODE_RE.sub(lambda m: stash(f"<code>{m.group(1)}</code>"), formatted)
        formatted = _H1_RE.sub(r"<b>📋 \1</b>", formatted)
        formatted = _H2_RE.sub(r"<b>🔸 \1</b>", formatted)
        formatted = _BOLD_RE.sub(r"<b>\1</b>", formatted)
        formatted = _NUMBERED_RE.sub("• ", formatted)
        formatted = _BULLET_RE.sub("• ", formatted)
        formatted = _ITALIC_RE.sub(r"<i>\1</i>", formatted)
        formatted = _LINK_RE.sub(
            lambda m: f'<a href="{m.group(2).replace(chr(34), "&quot;")}">{m.group(1)}</a>',
            formatted,
        )
        formatted = _EXCESS_NEWLINES_RE.sub("\n\n", formatted)
        return _PLACEHOLDER_RE.sub(lambda m: protected[int(m.group(1))], formatted)

    def format_thinking(self, event: AssistantThinking) -> str:
        return f"🤔 <b>Thinking...</b>\n\n<pre>{_esc(event.thinking)}</pre>"

    def format_session_init(self, event: SessionInitialized) -> str:
        return (
            "🚀 <b>Session Started</b>\n\n"
            f"🆔 <b>Session:</b> <code>{_esc(short_id(event.session_id))}</code>\n"
            f"🤖 <b>Model:</b> {_esc(event.model or 'unknown')}\n"
            f"📁 <b>Directory:</b> <code>{_esc(event.cwd or 'unknown')}</code>\n"
            f"🔒 <b>Permissions:</b> {_esc(event.permission_mode or 'unknown')}\n"
            f"🛠 <b>Tools:</b> {len(event.tools)} available"
        )

    def format_todo_list(self, todos: list[dict]) -> str:
        text = f"{TOOL_ICONS[ToolKind.TODO_WRITE]} <b>Todo List</b>\n\n"
        if not todos:
            return text + "No tasks"

        counts = {status: 0 for status in STATUS_ICONS}
        for todo in todos:
            status = self._todo_status(todo)
            counts[status] += 1

        total = len(todos)
        percent = round(counts["completed"] / total * 100)
        text += f"📊 <b>Progress</b>: {counts['completed']}/{total} ({percent}%)\n"
        text += f"✅ {counts['completed']} | 🔄 {counts['in_progress']} | ⭕ {counts['pending']}"
        if counts["blocked"]:
            text += f" | 🚧 {counts['blocked']}"
        text += "\n\n"

        for status, title in STATUS_TITLES.items():
            group = [todo for todo in todos if self._todo_status(todo) == status]
            if not group:
                continue
            text += f"<b>{STATUS_ICONS[status]} {title}</b> ({len(group)})\n"
            for todo in group:
                badge = PRIORITY_BADGES.get(str(todo.get("priority", "")), "")
                suffix = f" {badge}" if badge else ""
                content = _esc(todo.get("content", ""))
                if status == "completed":
                    text += f"✅ <s>{content}</s>{suffix}\n"
                else:
                    text += f"{STATUS_ICONS[status]} {content}{suffix}\n"
            text += "\n"
        return text.strip()

    def format_tool(self, event: ToolInvocation) -> str | None:
        """Render a tool invocation; returns None for kinds that are not shown."""
        kind = event.kind
        icon = TOOL_ICONS[kind]
        if kind is ToolKind.TODO_WRITE:
            return self.format_todo_list(event.todos)
        if kind is ToolKind.TODO_READ:
            return None

        if kind is ToolKind.EDIT_FILE:
            return (
                f"{icon} <b>File Edit</b>\n\n"
                f"📄 <code>{_esc(event.file_path)}</code>\n\n"
                f"<b>Before:</b>\n<pre>{_esc(_preview(event.old_string, 100))}</pre>\n\n"
                f"<b>After:</b>\n<pre>{_esc(_preview(event.new_string, 100))}</pre>"
            )
        if kind is ToolKind.WRITE_FILE:
            return (
                f"{icon} <b>File Write</b>\n\n"
                f"📄 <code>{_esc(event.file_path)}</code>\n\n"
                f"<b>Content:</b>\n<pre>{_esc(_preview(event.content.strip(), 200))}</pre>"
            )
        if kind is ToolKind.READ_FILE:
            return f"{icon} <b>File Read</b>\n\n📄 <code>{_esc(event.file_path)}</code>"
        if kind is ToolKind.SHELL_COMMAND:
            text = f"{icon} <b>Terminal Command</b>\n\n"
            if event.description:
                text += f"📝 <b>Description:</b> {_esc(event.description)}\n\n"
            command = event.command
            if len(command) > 100 or "\n" in command:
                text += f"💻 <b>Command:</b>\n<pre>{_esc(command)}</pre>"
            else:
                text += f"💻 <code>{_esc(command)}</code>"
            return text
        if kind is ToolKind.SPAWN_SUBTASK:
            return (
                f"{icon} <b>Task Agent</b>\n\n"
                f"🤖 <b>Type:</b> {_esc(event.subagent_type or 'general')}\n"
                f"📋 <b>Description:</b> {_esc(event.description)}\n\n"
                f"<b>Prompt:</b>\n<pre>{_esc(_preview(event.prompt, 200))}</pre>"
            )

        title = "MCP Tool" if kind is ToolKind.EXTERNAL_TOOL else "Tool"
        text = f"{icon} <b>{title}</b>\n\n🔌 <b>Tool:</b> <code>{_esc(event.name)}</code>"
        if event.input:
            text += "\n\n<b>Parameters:</b>"
            for key, value in event.input.items():
                rendered = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
                text += f"\n• <b>{_esc(key)}:</b> <code>{_esc(_preview(rendered, 100))}</code>"
        return text

    def format_tool_result(self, event: ToolResult) -> str:
        mark = "❌" if event.is_error else "✅"
        outcome = "Failed" if event.is_error else "Success"
        text = f"{mark} <b>Result:</b> {outcome}"
        if event.orphaned:
            text += f" <i>(unknown tool call <code>{_esc(event.tool_use_id)}</code>)</i>"
        output = _as_text(event.content).strip()
        if output:
            text += f"\n\n<pre>{_esc(_preview(output, 300))}</pre>"
        return text

    def format_execution_result(self, event: ExecutionResult, session_id: str | None = None) -> str:
        if event.success:
            text = f"✅ <b>Done</b> · session <code>{_esc(short_id(session_id or event.session_id))}</code>\n\n"
        else:
            text = "❌ <b>Execution Failed</b>\n\n"
            if event.error:
                text += f"<pre>{_esc(_preview(str(event.error), 500))}</pre>\n\n"

        if event.duration_ms:
            text += f"⏱ <b>Duration:</b> {event.duration_ms / 1000:.2f}s\n"
        if event.cost_usd:
            text += f"💰 <b>Cost:</b> ${event.cost_usd:.4f}\n"
        if event.usage:
            input_tokens = int(event.usage.get("input_tokens") or 0)
            output_tokens = int(event.usage.get("output_tokens") or 0)
            text += f"🎯 <b>Tokens:</b> {input_tokens + output_tokens} ({input_tokens} in, {output_tokens} out)"
        return text.strip()

    def format_parse_failure(self, event: ParseFailure) -> str:
        return (
            "⚠️ <b>Skipped unreadable output</b>\n\n"
            f"<code>{_esc(_preview(event.line, 120))}</code>\n"
            f"<i>{_esc(event.error)}</i>"
        )

    def format_unexpected_exit(self, event: ProcessExited) -> str:
        return (
            "⚠️ <b>Assistant stopped without a result</b>\n\n"
            f"Exit code: <code>{_esc(event.returncode)}</code>"
        )

    def format_error(self, error: Any, context: str = "") -> str:
        title = f"❌ <b>Error</b> in {_esc(context)}" if context else "❌ <b>Error</b>"
        return f"{title}\n\n<pre>{_esc(_preview(str(error).strip(), 1000))}</pre>"

    def format_compaction(self, usage_percent: float) -> str:
        return f"🗜 <b>Compacting context</b> ({usage_percent:.1f}% of the window used)"

    def format_status(self, status: SessionStatus, *, model: str, working_directory: str) -> str:
        text = "📊 <b>Session Status</b>\n\n"
        if status.summary:
            text += f"💡 <b>Current Work:</b> {_esc(status.summary)}\n\n"

        usage = status.token_usage
        if status.is_loaded:
            text += f"🆔 <b>Current:</b> <code>{_esc(short_id(status.session_id))}</code>\n"
            text += f"📋 <b>Stored:</b> <code>{_esc(short_id(status.stored_session_id))}</code>\n"
            text += f"📊 <b>Status:</b> {'🔄 Processing' if status.is_active else '💤 Idle'}\n"
            text += f"💬 <b>Messages:</b> {status.message_count}\n"
            text += f"⏱ <b>Uptime:</b> {round(status.elapsed_seconds)}s\n"
            text += f"⏰ <b>Last Activity:</b> {_ago(status.idle_seconds)}\n\n"
        else:
            text += "🆔 <b>Current:</b> 💤 not active\n"
            text += f"📋 <b>Stored:</b> <code>{_esc(short_id(status.stored_session_id))}</code> (can resume)\n\n"

        text += (
            f"🎯 <b>Context:</b> {usage.context_tokens:,} / {status.context_limit:,} "
            f"({status.usage_percent:.1f}%)\n"
        )
        if usage.transaction_count:
            plural = "s" if usage.transaction_count > 1 else ""
            text += f"   ↳ {usage.input_tokens:,} in, {usage.output_tokens:,} out\n"
            text += f"   ↳ {usage.transaction_count} transaction{plural}\n"
            if usage.cache_read_tokens:
                text += (
                    f"💾 <b>Cache:</b> {usage.cache_read_tokens:,} read, "
                    f"{usage.cache_creation_tokens:,} created\n"
                )
            if status.is_continuation:
                text += "   ↳ 🔄 Continued from previous session\n"
            if status.usage_percent > 80:
                text += "⚠️ <b>Close to the limit, consider /compact soon</b>\n"

        text += f"\n📁 <b>Directory:</b> {_esc(working_directory)}\n"
        text += f"📚 <b>History:</b> {status.history_size} sessions\n"
        text += f"🤖 <b>Model:</b> {_esc(model)}"
        if not status.is_loaded:
            text += "\n\n💡 Send a message to resume this session"
        return text

    def format_history(self, entries: list[tuple[HistoryEntry, str | None]], current_session_id: str | None) -> str:
        if not entries:
            return "📚 <b>Session History</b>\n\nNo previous sessions"
        text = "📚 <b>Session History</b>\n"
        for entry, summary in entries:
            marker = " ◀ current" if entry.session_id == current_session_id else ""
            text += f"\n<code>{_esc(entry.session_id)}</code>{marker}\n"
            text += f"   {_esc(summary or 'No summary available')}\n"
            text += f"   <i>last used {_esc(entry.last_access_at[:19].replace('T', ' '))}</i>\n"
        text += "\nUse /resume &lt;id&gt; to switch to one of them."
        return text

    @staticmethod
    def _todo_status(todo: dict) -> str:
        status = str(todo.get("status", "pending"))
        return status if status in STATUS_ICONS else "pending"


def _ago(seconds: float) -> str:
    if seconds < 60:
        return f"{round(seconds)}s ago"
    return f"{round(seconds / 60)}m ago"
