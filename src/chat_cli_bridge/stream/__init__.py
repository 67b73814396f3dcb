from chat_cli_bridge.stream.events import (
    AssistantText,
    AssistantThinking,
    DomainEvent,
    ExecutionResult,
    ParseFailure,
    ProcessExited,
    SessionInitialized,
    ToolInvocation,
    ToolKind,
    ToolResult,
)
from chat_cli_bridge.stream.protocol_reader import ReaderState, StreamProtocolReader

__all__ = [
    "AssistantText",
    "AssistantThinking",
    "DomainEvent",
    "ExecutionResult",
    "ParseFailure",
    "ProcessExited",
    "ReaderState",
    "SessionInitialized",
    "StreamProtocolReader",
    "ToolInvocation",
    "ToolKind",
    "ToolResult",
]
