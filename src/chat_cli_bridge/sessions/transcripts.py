from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from chat_cli_bridge.sessions.models import TokenUsage

_SUMMARY_SCAN_LINES = 5
_FIRST_PROMPT_SCAN_LINES = 10
_SUMMARY_MAX_CHARS = 60


def default_projects_root() -> Path:
    return Path.home() / ".claude" / "projects"


def project_dir_name(working_directory: str) -> str:
    """Directory name the CLI uses for a project: path separators become dashes."""
    resolved = Path(working_directory).expanduser().resolve().as_posix()
    return "-" + resolved.replace("/", "-").lstrip("-")


class TranscriptReader:
    """Reads the CLI's own per-session JSONL transcripts for a working directory.

    Missing or unreadable transcripts are not errors; every lookup returns
    None in that case.
    """

    def __init__(self, working_directory: str, projects_root: str | Path | None = None):
        root = Path(projects_root).expanduser() if projects_root else default_projects_root()
        self._sessions_dir = root / project_dir_name(working_directory)

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    def transcript_path(self, session_id: str) -> Path:
        return self._sessions_dir / f"{session_id}.jsonl"

    def token_usage(self, session_id: str) -> TokenUsage | None:
        records = self._read_records(session_id)
        if records is None:
            return None

        usage = TokenUsage()
        for record in records:
            block = _usage_block(record)
            if block is not None:
                usage.add(block)

        if usage.transaction_count == 0:
            return None
        logger.debug(
            f"Recovered token usage for {session_id}: {usage.context_tokens} context tokens "
            f"over {usage.transaction_count} transaction(s)"
        )
        return usage

    def summary(self, session_id: str) -> str | None:
        records = self._read_records(session_id, limit=_FIRST_PROMPT_SCAN_LINES)
        if not records:
            return None

        for record in records[:_SUMMARY_SCAN_LINES]:
            if record.get("type") == "summary" and record.get("summary"):
                return str(record["summary"])

        for record in records:
            text = _first_user_text(record)
            if text is None or "<command-name>" in text:
                continue
            if len(text) > _SUMMARY_MAX_CHARS:
                return text[:_SUMMARY_MAX_CHARS] + "..."
            return text
        return None

    def _read_records(self, session_id: str, limit: int | None = None) -> list[dict[str, Any]] | None:
        path = self.transcript_path(session_id)
        try:
            lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
        except FileNotFoundError:
            return None
        except OSError as ex:
            logger.warning(f"Failed to read transcript {path}: {ex}")
            return None

        if limit is not None:
            lines = lines[:limit]

        records: list[dict[str, Any]] = []
        for line in lines:
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(record, dict):
                records.append(record)
        return records


def _usage_block(record: dict[str, Any]) -> dict[str, Any] | None:
    message = record.get("message")
    if record.get("type") == "assistant" and isinstance(message, dict) and isinstance(message.get("usage"), dict):
        return message["usage"]
    usage = record.get("usage")
    return usage if isinstance(usage, dict) else None


def _first_user_text(record: dict[str, Any]) -> str | None:
    if record.get("type") != "user" or record.get("isMeta"):
        return None
    message = record.get("message")
    if not isinstance(message, dict):
        return None

    content = message.get("content")
    if isinstance(content, list):
        content = next(
            (item.get("text") for item in content if isinstance(item, dict) and item.get("type") == "text"),
            None,
        )
    if isinstance(content, str) and content.strip():
        return content
    return None
