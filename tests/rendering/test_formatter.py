import unittest

from chat_cli_bridge.rendering.formatter import HtmlFormatter, short_id, todos_changed
from chat_cli_bridge.sessions import HistoryEntry, SessionStatus, TokenUsage
from chat_cli_bridge.stream import (
    ExecutionResult,
    ProcessExited,
    SessionInitialized,
    ToolInvocation,
    ToolKind,
    ToolResult,
)


def _tool(name: str, kind: ToolKind, **tool_input) -> ToolInvocation:
    return ToolInvocation(tool_id="t1", name=name, input=tool_input, kind=kind)


def _status(**overrides) -> SessionStatus:
    values = {
        "user_id": "u1",
        "session_id": "session-0000abcd",
        "stored_session_id": "session-0000abcd",
        "is_loaded": True,
        "is_active": False,
        "message_count": 3,
        "elapsed_seconds": 125.0,
        "idle_seconds": 30.0,
        "token_usage": TokenUsage(input_tokens=150_000, output_tokens=20_000, transaction_count=3),
        "context_limit": 200_000,
        "history_size": 4,
        "is_continuation": False,
        "summary": "Fix <flaky> tests",
    }
    values.update(overrides)
    return SessionStatus(**values)


class AssistantTextTests(unittest.TestCase):
    def setUp(self) -> None:
        self._formatter = HtmlFormatter()

    def test_markdown_is_converted(self) -> None:
        html = self._formatter.format_assistant_text("# Plan\n**bold** and *ital* with `a<b`")

        self.assertIn("<b>📋 Plan</b>", html)
        self.assertIn("<b>bold</b>", html)
        self.assertIn("<i>ital</i>", html)
        self.assertIn("<code>a&lt;b</code>", html)

    def test_fenced_code_is_escaped_and_left_alone(self) -> None:
        html = self._formatter.format_assistant_text("Run:\n```python\nprint('<x>')\n**not bold**\n```")

        self.assertIn("<pre>print('&lt;x&gt;')\n**not bold**</pre>", html)

    def test_lists_and_links(self) -> None:
        html = self._formatter.format_assistant_text("- one\n2. two\nsee [docs](https://example.com/a)")

        self.assertIn("• one\n• two", html)
        self.assertIn('<a href="https://example.com/a">docs</a>', html)

    def test_excess_blank_lines_are_collapsed(self) -> None:
        self.assertEqual("a\n\nb", self._formatter.format_assistant_text("a\n\n\n\nb"))


class TodoListTests(unittest.TestCase):
    def test_empty_list(self) -> None:
        self.assertIn("No tasks", HtmlFormatter().format_todo_list([]))

    def test_groups_and_progress(self) -> None:
        html = HtmlFormatter().format_todo_list(
            [
                {"content": "Ship it", "status": "completed", "priority": "low"},
                {"content": "Write <tests>", "status": "in_progress", "priority": "high"},
                {"content": "Document", "status": "someday"},
            ]
        )

        self.assertIn("1/3 (33%)", html)
        self.assertIn("✅ <s>Ship it</s> 🟢", html)
        self.assertIn("🔄 Write &lt;tests&gt; 🔴", html)
        self.assertIn("⭕ Document", html)
        self.assertLess(html.index("In Progress"), html.index("Pending"))
        self.assertLess(html.index("Pending"), html.index("Completed"))

    def test_todos_changed(self) -> None:
        old = [{"content": "a", "status": "pending", "priority": "high", "id": "1"}]
        self.assertFalse(todos_changed(old, [dict(old[0], id="2")]))
        self.assertTrue(todos_changed(old, [dict(old[0], priority="low")]))
        self.assertTrue(todos_changed(old, old + old))
        self.assertTrue(todos_changed(None, old))


class ToolFormattingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._formatter = HtmlFormatter()

    def test_short_shell_command_is_inline(self) -> None:
        html = self._formatter.format_tool(
            _tool("Bash", ToolKind.SHELL_COMMAND, command="ls -la", description="List files")
        )
        self.assertIn("💻 <code>ls -la</code>", html)
        self.assertIn("List files", html)

    def test_multiline_shell_command_is_preformatted(self) -> None:
        html = self._formatter.format_tool(_tool("Bash", ToolKind.SHELL_COMMAND, command="cd src\nmake"))
        self.assertIn("<pre>cd src\nmake</pre>", html)

    def test_edit_shows_escaped_before_and_after(self) -> None:
        html = self._formatter.format_tool(
            _tool("Edit", ToolKind.EDIT_FILE, file_path="app.py", old_string="a < b", new_string="a <= b")
        )
        self.assertIn("<code>app.py</code>", html)
        self.assertIn("<pre>a &lt; b</pre>", html)
        self.assertIn("<pre>a &lt;= b</pre>", html)

    def test_todo_read_is_not_shown(self) -> None:
        self.assertIsNone(self._formatter.format_tool(_tool("TodoRead", ToolKind.TODO_READ)))

    def test_external_tool_lists_parameters(self) -> None:
        html = self._formatter.format_tool(
            _tool("mcp__github__search", ToolKind.EXTERNAL_TOOL, query="bug", limit=5)
        )
        self.assertIn("MCP Tool", html)
        self.assertIn("<code>mcp__github__search</code>", html)
        self.assertIn("<b>limit:</b> <code>5</code>", html)


class ResultFormattingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._formatter = HtmlFormatter()

    def test_success_summary(self) -> None:
        html = self._formatter.format_execution_result(
            ExecutionResult(
                success=True,
                cost_usd=0.0123,
                duration_ms=2500,
                usage={"input_tokens": 10, "output_tokens": 5},
            ),
            "session-12345678",
        )
        self.assertIn("<b>Done</b>", html)
        self.assertIn("<code>12345678</code>", html)
        self.assertIn("2.50s", html)
        self.assertIn("$0.0123", html)
        self.assertIn("15 (10 in, 5 out)", html)

    def test_failure_shows_error(self) -> None:
        html = self._formatter.format_execution_result(ExecutionResult(success=False, error="max turns <reached>"))
        self.assertIn("Execution Failed", html)
        self.assertIn("max turns &lt;reached&gt;", html)

    def test_failed_tool_result_shows_its_output(self) -> None:
        html = self._formatter.format_tool_result(
            ToolResult(tool_use_id="t1", content=[{"type": "text", "text": "rm: <x>: denied"}], is_error=True)
        )
        self.assertIn("❌ <b>Result:</b> Failed", html)
        self.assertIn("<pre>rm: &lt;x&gt;: denied</pre>", html)
        self.assertNotIn("unknown tool call", html)

    def test_orphaned_tool_result_is_flagged(self) -> None:
        html = self._formatter.format_tool_result(ToolResult(tool_use_id="t9", content="late", orphaned=True))
        self.assertIn("✅ <b>Result:</b> Success", html)
        self.assertIn("unknown tool call <code>t9</code>", html)

    def test_unexpected_exit(self) -> None:
        html = self._formatter.format_unexpected_exit(ProcessExited(returncode=137, result_seen=False))
        self.assertIn("<code>137</code>", html)

    def test_session_init(self) -> None:
        html = self._formatter.format_session_init(
            SessionInitialized(session_id="abcdefgh12345678", model="sonnet", tools=("Bash", "Edit"))
        )
        self.assertIn("<code>12345678</code>", html)
        self.assertIn("2 available", html)

    def test_short_id(self) -> None:
        self.assertEqual("12345678", short_id("abcdefgh12345678"))
        self.assertEqual("none", short_id(None))


class StatusFormattingTests(unittest.TestCase):
    def test_loaded_session(self) -> None:
        html = HtmlFormatter().format_status(_status(), model="sonnet", working_directory="/work")

        self.assertIn("Fix &lt;flaky&gt; tests", html)
        self.assertIn("<code>0000abcd</code>", html)
        self.assertIn("💬 <b>Messages:</b> 3", html)
        self.assertIn("170,000 / 200,000 (85.0%)", html)
        self.assertIn("consider /compact", html)
        self.assertIn("📚 <b>History:</b> 4 sessions", html)

    def test_stored_only_session(self) -> None:
        html = HtmlFormatter().format_status(
            _status(is_loaded=False, session_id=None, token_usage=TokenUsage(), summary=None),
            model="sonnet",
            working_directory="/work",
        )

        self.assertIn("not active", html)
        self.assertIn("(can resume)", html)
        self.assertIn("Send a message to resume", html)

    def test_history(self) -> None:
        entries = [
            (HistoryEntry("s-new", "2026-01-02T10:00:00+00:00", "2026-01-02T11:30:00+00:00"), "Refactor"),
            (HistoryEntry("s-old", "2026-01-01T10:00:00+00:00", "2026-01-01T10:00:00+00:00"), None),
        ]

        html = HtmlFormatter().format_history(entries, "s-new")

        self.assertIn("<code>s-new</code> ◀ current", html)
        self.assertIn("No summary available", html)
        self.assertIn("last used 2026-01-02 11:30:00", html)
        self.assertIn("No previous sessions", HtmlFormatter().format_history([], None))


if __name__ == "__main__":
    unittest.main()
