from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from chat_cli_bridge.app_config import AppConfig
from chat_cli_bridge.delivery import MessageDelivery, RetryingDelivery
from chat_cli_bridge.logging_config import setup_logging
from chat_cli_bridge.process.launcher import ProcessLauncher, create_launcher
from chat_cli_bridge.rendering.chunker import OutputChunker
from chat_cli_bridge.sessions import SessionOrchestrator, SessionStore, TranscriptReader


@dataclass
class AppRuntime:
    orchestrator: SessionOrchestrator
    store: SessionStore
    log_descriptions: list[str]

    async def close(self) -> None:
        try:
            await self.orchestrator.shutdown()
        finally:
            self.store.close()


def bootstrap_runtime(
    app: AppConfig,
    *,
    delivery: MessageDelivery,
    launcher: ProcessLauncher | None = None,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    db_path = Path(app.session_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    store = SessionStore(str(db_path), history_limit=app.history_limit)

    orchestrator = SessionOrchestrator(
        store=store,
        delivery=RetryingDelivery(delivery, attempts=app.delivery_retry_attempts),
        launcher=launcher or create_launcher(app.launcher_name),
        model=app.model,
        working_directory=app.working_directory,
        executable=app.assistant_executable,
        chunker=OutputChunker(app.max_message_length),
        transcripts=TranscriptReader(app.working_directory, app.transcripts_root),
        context_window_tokens=app.context_window_tokens,
        auto_compact_percent=app.auto_compact_percent,
        cancel_grace_seconds=app.cancel_grace_seconds,
        show_thinking=app.show_thinking,
    )
    logger.info(f"Bridge ready: model={app.model}, cwd={app.working_directory}, db={db_path}")
    return AppRuntime(orchestrator=orchestrator, store=store, log_descriptions=log_descriptions)
