from __future__ import annotations

from enum import Enum


class LaunchMode(Enum):
    NEW = "new"
    CONTINUE = "continue"
    RESUME = "resume"


def build_arguments(
    mode: LaunchMode,
    model: str,
    prompt: str,
    session_id: str | None = None,
) -> list[str]:
    """Build the assistant CLI argument list for one turn.

    The prompt is always the last positional argument. ``CONTINUE`` prefixes
    ``-c`` and ``RESUME`` prefixes ``-r <session_id>``.
    """
    base = [
        "-p",
        "--model",
        model,
        "--output-format",
        "stream-json",
        "--verbose",
        "--dangerously-skip-permissions",
        prompt,
    ]
    if mode is LaunchMode.NEW:
        return base
    if mode is LaunchMode.CONTINUE:
        return ["-c", *base]
    if mode is LaunchMode.RESUME:
        if not session_id:
            raise ValueError("Resuming requires an assistant session id")
        return ["-r", session_id, *base]
    raise ValueError(f"Unknown launch mode: {mode!r}")
