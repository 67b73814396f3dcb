from __future__ import annotations

import itertools
import sys
from typing import TextIO

from chat_cli_bridge.delivery import MessageRef
from chat_cli_bridge.rendering.plain_text import html_to_text


class ConsoleDelivery:
    """Prints chat messages to a terminal as plain text."""

    def __init__(self, stream: TextIO | None = None, *, line_prefix: str = "assistant> "):
        self._stream = stream or sys.stdout
        self._line_prefix = line_prefix
        self._ids = itertools.count(1)

    async def send(self, chat_id: str, text: str, *, edit_of: MessageRef | None = None) -> MessageRef:
        body = html_to_text(text)
        if edit_of is not None:
            header = f"{self._line_prefix}[update of #{edit_of.message_id}]"
            print(header, file=self._stream)
        else:
            print(self._line_prefix.rstrip(), file=self._stream)
        print(body, file=self._stream)
        print(file=self._stream)
        self._stream.flush()
        return MessageRef(chat_id=str(chat_id), message_id=str(next(self._ids)))
