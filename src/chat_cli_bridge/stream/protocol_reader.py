from __future__ import annotations

import codecs
import json
from enum import Enum
from typing import Any

from loguru import logger

from chat_cli_bridge.stream.events import (
    EXTERNAL_TOOL_PREFIX,
    AssistantText,
    AssistantThinking,
    DomainEvent,
    ExecutionResult,
    ParseFailure,
    SessionInitialized,
    ToolInvocation,
    ToolResult,
    classify_tool,
)


class ReaderState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    CLOSED = "closed"


class StreamProtocolReader:
    """Frames stream-json output into domain events.

    One reader serves one run of the assistant process. Output may arrive in
    arbitrary pieces; lines are only decoded once their newline has been seen,
    so the produced events do not depend on how the bytes were chunked.
    """

    def __init__(self, *, external_tool_prefix: str = EXTERNAL_TOOL_PREFIX):
        self._external_tool_prefix = external_tool_prefix
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._state = ReaderState.IDLE
        self._session_id: str | None = None
        self._seen_tool_ids: set[str] = set()
        self._result_seen = False
        self._event_count = 0

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def result_seen(self) -> bool:
        return self._result_seen

    @property
    def event_count(self) -> int:
        return self._event_count

    def feed(self, data: bytes | str) -> list[DomainEvent]:
        if self._state is ReaderState.CLOSED:
            logger.warning(f"Ignoring {len(data)} bytes received after the stream was closed")
            return []
        if not data:
            return []
        self._state = ReaderState.STREAMING

        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events: list[DomainEvent] = []
        for line in lines:
            events.extend(self._process_line(line))
        return events

    def close(self) -> list[DomainEvent]:
        if self._state is ReaderState.CLOSED:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        self._state = ReaderState.CLOSED
        return self._process_line(tail)

    def _process_line(self, raw_line: str) -> list[DomainEvent]:
        line = raw_line.strip()
        if not line:
            return []

        try:
            message = json.loads(line)
        except json.JSONDecodeError as ex:
            logger.warning(f"Malformed stream line ({ex}): {line[:200]}")
            return self._accept([ParseFailure(line=line, error=str(ex))])

        if not isinstance(message, dict):
            error = f"expected a JSON object, got {type(message).__name__}"
            logger.warning(f"Malformed stream line ({error}): {line[:200]}")
            return self._accept([ParseFailure(line=line, error=error)])

        if self._result_seen:
            logger.debug(f"Dropping '{message.get('type')}' message received after the execution result")
            return []

        return self._accept(self._classify(message))

    def _accept(self, events: list[DomainEvent]) -> list[DomainEvent]:
        self._event_count += len(events)
        return events

    def _classify(self, message: dict[str, Any]) -> list[DomainEvent]:
        message_type = message.get("type")
        session_id = message.get("session_id")

        if message_type == "system":
            if message.get("subtype") == "init" and session_id:
                self._session_id = str(session_id)
                tools = message.get("tools")
                return [
                    SessionInitialized(
                        session_id=self._session_id,
                        model=message.get("model"),
                        cwd=message.get("cwd"),
                        tools=tuple(str(t) for t in tools) if isinstance(tools, list) else (),
                        permission_mode=message.get("permissionMode"),
                    )
                ]
            return []

        if message_type == "assistant":
            return self._assistant_events(message.get("message"), session_id)

        if message_type == "user":
            return self._tool_result_events(message.get("message"), session_id)

        if message_type == "result":
            self._result_seen = True
            cost = message.get("cost_usd")
            if cost is None:
                cost = message.get("total_cost_usd")
            usage = message.get("usage")
            return [
                ExecutionResult(
                    success=not message.get("is_error", False),
                    result=message.get("result"),
                    error=message.get("error"),
                    cost_usd=float(cost) if isinstance(cost, (int, float)) else None,
                    duration_ms=message.get("duration_ms"),
                    usage=usage if isinstance(usage, dict) else None,
                    session_id=session_id,
                )
            ]

        logger.debug(f"Ignoring stream message of type {message_type!r}")
        return []

    def _assistant_events(self, payload: Any, session_id: str | None) -> list[DomainEvent]:
        if not isinstance(payload, dict) or not isinstance(payload.get("content"), list):
            return []

        message_id = payload.get("id")
        events: list[DomainEvent] = []
        for item in payload["content"]:
            if not isinstance(item, dict):
                continue
            item_type = item.get("type")
            if item_type == "text":
                events.append(AssistantText(text=str(item.get("text", "")), message_id=message_id, session_id=session_id))
            elif item_type == "thinking":
                events.append(
                    AssistantThinking(
                        thinking=str(item.get("thinking", "")),
                        signature=item.get("signature"),
                        session_id=session_id,
                    )
                )
            elif item_type == "tool_use":
                tool_id = str(item.get("id", ""))
                name = str(item.get("name", ""))
                tool_input = item.get("input")
                self._seen_tool_ids.add(tool_id)
                events.append(
                    ToolInvocation(
                        tool_id=tool_id,
                        name=name,
                        input=tool_input if isinstance(tool_input, dict) else {},
                        kind=classify_tool(name, self._external_tool_prefix),
                        session_id=session_id,
                    )
                )
        return events

    def _tool_result_events(self, payload: Any, session_id: str | None) -> list[DomainEvent]:
        if not isinstance(payload, dict) or not isinstance(payload.get("content"), list):
            return []

        events: list[DomainEvent] = []
        for item in payload["content"]:
            if not isinstance(item, dict) or item.get("type") != "tool_result":
                continue
            tool_use_id = str(item.get("tool_use_id", ""))
            orphaned = tool_use_id not in self._seen_tool_ids
            if orphaned:
                logger.warning(f"Tool result references unknown invocation {tool_use_id!r}")
            events.append(
                ToolResult(
                    tool_use_id=tool_use_id,
                    content=item.get("content"),
                    is_error=bool(item.get("is_error", False)),
                    session_id=session_id,
                    orphaned=orphaned,
                )
            )
        return events
