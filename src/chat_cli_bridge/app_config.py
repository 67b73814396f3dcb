from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class AppConfig:
    model: str
    working_directory: str
    assistant_executable: str
    launcher_name: str
    session_db_path: str
    history_limit: int
    max_message_length: int
    cancel_grace_seconds: float
    context_window_tokens: int
    auto_compact_percent: float
    transcripts_root: str | None
    delivery_retry_attempts: int
    console_user_id: str
    show_thinking: bool
    log_level: str
    log_consumers: list | None


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path is not None else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        model=str(config.get("Model", "sonnet")).strip(),
        working_directory=str(config.get("WorkingDirectory") or os.getcwd()),
        assistant_executable=str(config.get("AssistantExecutable", "claude")).strip(),
        launcher_name=str(config.get("Launcher", "subprocess")).strip().lower(),
        session_db_path=str(config.get("SessionDbPath", ".bridge/sessions.db")),
        history_limit=int(config.get("HistoryLimit", 50)),
        max_message_length=int(config.get("MaxMessageLength", 4000)),
        cancel_grace_seconds=float(config.get("CancelGraceSeconds", 5.0)),
        context_window_tokens=int(config.get("ContextWindowTokens", 200_000)),
        auto_compact_percent=float(config.get("AutoCompactPercent", 95)),
        transcripts_root=str(config.get("TranscriptsRoot", "")).strip() or None,
        delivery_retry_attempts=int(config.get("DeliveryRetryAttempts", 3)),
        console_user_id=str(config.get("ConsoleUserId", "console")).strip() or "console",
        show_thinking=_to_bool(config.get("ShowThinking", True), default=True),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
