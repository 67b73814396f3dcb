from __future__ import annotations

from collections.abc import Awaitable, Callable

HELP_TEXT = """Commands:
  /help            show this help
  /cancel          stop the running request
  /status          show the current session
  /end             end the current session
  /new             start a fresh session
  /sessions        list recent sessions
  /resume <id>     continue an earlier session
  exit | quit      leave"""


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_cancel: Callable[[], Awaitable[None]],
        on_status: Callable[[], Awaitable[None]],
        on_end: Callable[[], Awaitable[None]],
        on_new: Callable[[], Awaitable[None]],
        on_sessions: Callable[[], Awaitable[None]],
        on_resume: Callable[[str], Awaitable[None]],
        on_invalid: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_cancel = on_cancel
        self._on_status = on_status
        self._on_end = on_end
        self._on_new = on_new
        self._on_sessions = on_sessions
        self._on_resume = on_resume
        self._on_invalid = on_invalid

    async def try_handle(self, user_message: str) -> bool:
        """Run a slash command; returns False for text meant for the assistant.

        Slash commands the router does not know are passed through as well,
        so CLI commands such as ``/compact`` still reach the assistant.
        """
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, _, argument = trimmed.partition(" ")
        argument = argument.strip()

        if command == "/help":
            await self._on_help()
            return True
        if command == "/cancel":
            await self._on_cancel()
            return True
        if command == "/status":
            await self._on_status()
            return True
        if command == "/end":
            await self._on_end()
            return True
        if command == "/new":
            await self._on_new()
            return True
        if command == "/sessions":
            await self._on_sessions()
            return True
        if command == "/resume":
            if not argument:
                self._on_invalid(trimmed)
                return True
            await self._on_resume(argument)
            return True
        return False
