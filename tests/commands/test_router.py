import asyncio
import unittest

from chat_cli_bridge.commands.router import CommandRouter


class CommandRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calls: list[tuple] = []

        def record(name: str):
            async def handler(*args) -> None:
                self.calls.append((name, *args))

            return handler

        self._router = CommandRouter(
            on_help=record("help"),
            on_cancel=record("cancel"),
            on_status=record("status"),
            on_end=record("end"),
            on_new=record("new"),
            on_sessions=record("sessions"),
            on_resume=record("resume"),
            on_invalid=lambda command: self.calls.append(("invalid", command)),
        )

    def _handle(self, text: str) -> bool:
        return asyncio.run(self._router.try_handle(text))

    def test_known_commands_are_handled(self) -> None:
        for command in ("/help", "/cancel", "/status", "/end", "/new", "/sessions"):
            self.assertTrue(self._handle(command))
        self.assertEqual(
            [("help",), ("cancel",), ("status",), ("end",), ("new",), ("sessions",)],
            self.calls,
        )

    def test_resume_passes_the_session_id(self) -> None:
        self.assertTrue(self._handle("  /resume   abc-123 "))
        self.assertEqual([("resume", "abc-123")], self.calls)

    def test_resume_without_id_is_invalid(self) -> None:
        self.assertTrue(self._handle("/resume"))
        self.assertEqual([("invalid", "/resume")], self.calls)

    def test_unknown_commands_reach_the_assistant(self) -> None:
        self.assertFalse(self._handle("/compact"))
        self.assertFalse(self._handle("please /help me"))
        self.assertFalse(self._handle("hello"))
        self.assertEqual([], self.calls)


if __name__ == "__main__":
    unittest.main()
