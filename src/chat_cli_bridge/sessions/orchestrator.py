from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime

from loguru import logger

from chat_cli_bridge.delivery import MessageDelivery, MessageRef, ResourceCleanup, TempFileCleanup
from chat_cli_bridge.errors import AlreadyRunningError, LaunchError
from chat_cli_bridge.process.arguments import LaunchMode
from chat_cli_bridge.process.launcher import ProcessLauncher
from chat_cli_bridge.process.supervisor import AssistantProcessSupervisor
from chat_cli_bridge.rendering.chunker import OutputChunker
from chat_cli_bridge.rendering.formatter import HtmlFormatter, todos_changed
from chat_cli_bridge.sessions.models import (
    CancelOutcome,
    HistoryEntry,
    SendResult,
    SendStatus,
    Session,
    SessionStatus,
    TokenUsage,
)
from chat_cli_bridge.sessions.registry import ActiveProcessRegistry
from chat_cli_bridge.sessions.store import SessionStore
from chat_cli_bridge.sessions.transcripts import TranscriptReader
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

COMPACT_PROMPT = "/compact"


class SessionOrchestrator:
    """Owns one session per user and turns assistant events into chat messages.

    ``send``, ``end``, ``new_session``, ``attach`` and compaction turns are
    serialized per user. A user never has two assistant processes: a send
    while a turn is still running is rejected with ``SendStatus.BUSY``.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        delivery: MessageDelivery,
        launcher: ProcessLauncher,
        model: str,
        working_directory: str | None = None,
        executable: str = "claude",
        formatter: HtmlFormatter | None = None,
        chunker: OutputChunker | None = None,
        transcripts: TranscriptReader | None = None,
        resource_cleanup: ResourceCleanup | None = None,
        registry: ActiveProcessRegistry | None = None,
        context_window_tokens: int = 200_000,
        auto_compact_percent: float = 95.0,
        cancel_grace_seconds: float = 5.0,
        show_thinking: bool = True,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._launcher = launcher
        self._model = model
        self._working_directory = working_directory
        self._executable = executable
        self._formatter = formatter or HtmlFormatter()
        self._chunker = chunker or OutputChunker()
        self._transcripts = transcripts
        self._resource_cleanup = resource_cleanup or TempFileCleanup()
        self._registry = registry or ActiveProcessRegistry()
        self._context_window_tokens = context_window_tokens
        self._auto_compact_percent = auto_compact_percent
        self._cancel_grace_seconds = cancel_grace_seconds
        self._show_thinking = show_thinking
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._compactions: dict[str, asyncio.Task] = {}
        self._closing = False

    @property
    def registry(self) -> ActiveProcessRegistry:
        return self._registry

    @property
    def model(self) -> str:
        return self._model

    @property
    def working_directory(self) -> str | None:
        return self._working_directory

    @property
    def context_window_tokens(self) -> int:
        return self._context_window_tokens

    def get_session(self, user_id: str) -> Session | None:
        return self._sessions.get(str(user_id))

    def get_or_create(self, user_id: str, chat_id: str) -> Session:
        key = str(user_id)
        session = self._sessions.get(key)
        if session is not None:
            return session

        session = self._create_session(key, str(chat_id))
        self._sessions[key] = session
        self._registry.register(key, session.supervisor)

        stored = self._store.get_current(key)
        if stored:
            session.is_continuation = True
            usage = self._transcripts.token_usage(stored) if self._transcripts is not None else None
            if usage is not None:
                session.token_usage = usage
                logger.info(
                    f"User {key}: continuing {stored[-8:]} at "
                    f"{usage.usage_percent(self._context_window_tokens):.1f}% context usage"
                )
        logger.info(f"Created session for user {key}")
        return session

    async def send(
        self,
        user_id: str,
        prompt: str,
        *,
        chat_id: str | None = None,
        attachment: str | None = None,
    ) -> SendResult:
        """Start one assistant turn for the user.

        Returns once the process produced output or failed to launch.
        ``attachment`` names a temporary file the prompt refers to; it is
        released when the turn ends.
        """
        key = str(user_id)
        async with self._lock_for(key):
            session = self.get_or_create(key, chat_id if chat_id is not None else key)
            if chat_id is not None:
                session.chat_id = str(chat_id)

            if session.supervisor.is_cancelling:
                # A cancelled turn is reaped within the grace period; wait for it.
                await session.supervisor.wait()

            if session.supervisor.is_running:
                logger.info(f"User {key}: rejecting message, a request is still running")
                if attachment:
                    self._resource_cleanup.release(key, attachment)
                return SendResult(SendStatus.BUSY, error="Already processing a request")

            self._release_resource(session)
            session.pending_resource = attachment
            mode, session_id = self._resolve(session)
            logger.info(f"User {key}: sending message ({mode.value}, {len(prompt)} chars)")

            try:
                await self._launch(session, mode, prompt, session_id)
            except AlreadyRunningError as ex:
                self._release_resource(session)
                return SendResult(SendStatus.BUSY, mode=mode, error=str(ex))
            except LaunchError as ex:
                logger.error(f"User {key}: failed to start the assistant: {ex}")
                self._release_resource(session)
                await self._deliver(session, self._formatter.format_error(ex, "launch"))
                return SendResult(SendStatus.FAILED, mode=mode, error=str(ex))

            session.message_count += 1
            session.touch()
            return SendResult(SendStatus.ACCEPTED, mode=mode)

    def cancel(self, user_id: str) -> CancelOutcome:
        session = self._sessions.get(str(user_id))
        if session is None or not session.supervisor.cancel():
            return CancelOutcome.NO_ACTIVE_SESSION
        session.compact_requested = False
        logger.info(f"User {session.user_id}: cancellation requested")
        return CancelOutcome.CANCELLED

    async def end(self, user_id: str) -> SessionStatus | None:
        """Tear the session down and forget its current id; returns its final status."""
        key = str(user_id)
        async with self._lock_for(key):
            snapshot = self.status(key)
            if snapshot is None:
                return None

            session = self._sessions.get(key)
            if session is not None:
                self._retire(session)
            stored = self._store.get_current(key)
            if stored:
                self._store.add_to_history(key, stored)
            self._store.clear_current(key)
            logger.info(f"User {key}: session ended")
            return snapshot

    async def new_session(self, user_id: str, chat_id: str) -> Session:
        key = str(user_id)
        async with self._lock_for(key):
            existing = self._sessions.get(key)
            if existing is not None:
                self._retire(existing)
            stored = self._store.get_current(key)
            if stored:
                self._store.add_to_history(key, stored)
            self._store.clear_current(key)
            logger.info(f"User {key}: starting a fresh session")
            return self.get_or_create(key, chat_id)

    async def attach(self, user_id: str, session_id: str, chat_id: str | None = None) -> bool:
        """Make an earlier assistant session current; the next send resumes it.

        Returns False while a turn is still running.
        """
        key = str(user_id)
        async with self._lock_for(key):
            existing = self._sessions.get(key)
            if existing is not None:
                if existing.supervisor.is_running:
                    return False
                chat_id = chat_id if chat_id is not None else existing.chat_id
                self._retire(existing)
            self._store.set_current(key, session_id)
            self.get_or_create(key, chat_id if chat_id is not None else key)
            logger.info(f"User {key}: attached to session {session_id}")
            return True

    def status(self, user_id: str) -> SessionStatus | None:
        key = str(user_id)
        session = self._sessions.get(key)
        stored = self._store.get_current(key)
        if session is None and stored is None:
            return None

        target = (session.session_id if session is not None else None) or stored
        summary = self.summary(target) if target else None
        history_size = self._store.history_size(key)

        if session is None:
            usage = self._transcripts.token_usage(stored) if self._transcripts is not None else None
            return SessionStatus(
                user_id=key,
                session_id=None,
                stored_session_id=stored,
                is_loaded=False,
                is_active=False,
                message_count=0,
                elapsed_seconds=0.0,
                idle_seconds=0.0,
                token_usage=usage or TokenUsage(),
                context_limit=self._context_window_tokens,
                history_size=history_size,
                is_continuation=True,
                summary=summary,
            )

        now = datetime.now(UTC)
        return SessionStatus(
            user_id=key,
            session_id=session.session_id,
            stored_session_id=stored,
            is_loaded=True,
            is_active=session.is_active,
            message_count=session.message_count,
            elapsed_seconds=(now - session.created_at).total_seconds(),
            idle_seconds=(now - session.last_activity_at).total_seconds(),
            token_usage=replace(session.token_usage),
            context_limit=self._context_window_tokens,
            history_size=history_size,
            is_continuation=session.is_continuation,
            summary=summary,
        )

    def history(self, user_id: str, limit: int = 10) -> list[HistoryEntry]:
        return self._store.recent(str(user_id), limit)

    def summary(self, session_id: str) -> str | None:
        if self._transcripts is None:
            return None
        return self._transcripts.summary(session_id)

    async def join(self, user_id: str) -> None:
        """Wait until the user's running turn, and any compaction it triggered, has finished."""
        key = str(user_id)
        while True:
            session = self._sessions.get(key)
            if session is not None:
                await session.supervisor.wait()
            task = self._compactions.get(key)
            if task is None or task.done():
                return
            await task

    async def shutdown(self) -> None:
        self._closing = True
        for task in list(self._compactions.values()):
            task.cancel()
        for session in list(self._sessions.values()):
            if session.session_id:
                self._store.add_to_history(session.user_id, session.session_id)
            self._release_resource(session)
        await self._registry.shutdown()
        self._sessions.clear()
        logger.info("Session orchestrator shut down")

    def _create_session(self, user_id: str, chat_id: str) -> Session:
        session: Session | None = None

        # Callbacks are bound to this session object, never looked up by user id,
        # so a replaced session's late events cannot reach its successor.
        async def on_event(event: DomainEvent) -> None:
            await self._on_event(session, event)

        async def on_stderr(text: str) -> None:
            await self._on_stderr(session, text)

        async def on_exit(exited: ProcessExited) -> None:
            await self._on_exit(session, exited)

        supervisor = AssistantProcessSupervisor(
            launcher=self._launcher,
            model=self._model,
            on_event=on_event,
            on_stderr=on_stderr,
            on_exit=on_exit,
            executable=self._executable,
            working_directory=self._working_directory,
            grace_period_seconds=self._cancel_grace_seconds,
        )
        session = Session(user_id=user_id, chat_id=chat_id, supervisor=supervisor)
        return session

    def _resolve(self, session: Session) -> tuple[LaunchMode, str | None]:
        session_id = self._store.get_current(session.user_id) or session.session_id
        if session_id:
            return LaunchMode.RESUME, session_id
        if session.message_count > 0:
            return LaunchMode.CONTINUE, None
        return LaunchMode.NEW, None

    async def _launch(self, session: Session, mode: LaunchMode, prompt: str, session_id: str | None) -> None:
        supervisor = session.supervisor
        if mode is LaunchMode.RESUME:
            await supervisor.resume(prompt, session_id)
        elif mode is LaunchMode.CONTINUE:
            await supervisor.continue_last(prompt)
        else:
            await supervisor.start_new(prompt)

    def _retire(self, session: Session) -> None:
        session.supervisor.cancel()
        session.compact_requested = False
        self._registry.unregister(session.user_id)
        if self._sessions.get(session.user_id) is session:
            del self._sessions[session.user_id]
        if session.session_id:
            self._store.add_to_history(session.user_id, session.session_id)
        self._release_resource(session)

    def _is_current(self, session: Session) -> bool:
        return self._sessions.get(session.user_id) is session

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _release_resource(self, session: Session) -> None:
        resource = session.pending_resource
        if resource is None:
            return
        session.pending_resource = None
        try:
            self._resource_cleanup.release(session.user_id, resource)
        except Exception as ex:
            logger.warning(f"User {session.user_id}: failed to release {resource}: {ex}")

    async def _on_event(self, session: Session, event: DomainEvent) -> None:
        if not self._is_current(session):
            logger.debug(f"User {session.user_id}: dropping {type(event).__name__} from a retired session")
            return
        session.touch()

        if isinstance(event, SessionInitialized):
            is_new = event.session_id != session.session_id
            session.session_id = event.session_id
            self._store.set_current(session.user_id, event.session_id)
            logger.info(f"User {session.user_id}: assistant session {event.session_id}")
            if is_new and session.message_count == 0 and not session.is_continuation:
                await self._deliver(session, self._formatter.format_session_init(event))
        elif isinstance(event, AssistantText):
            if event.text.strip():
                await self._deliver(session, self._formatter.format_assistant_text(event.text))
        elif isinstance(event, AssistantThinking):
            if self._show_thinking and event.thinking.strip():
                await self._deliver(session, self._formatter.format_thinking(event))
        elif isinstance(event, ToolInvocation):
            await self._on_tool(session, event)
        elif isinstance(event, ToolResult):
            if event.orphaned:
                logger.warning(f"User {session.user_id}: result for unknown tool call {event.tool_use_id}")
            else:
                logger.debug(
                    f"User {session.user_id}: tool result {event.tool_use_id} (error={event.is_error})"
                )
            # Successful results are not shown.
            if event.is_error:
                await self._deliver(session, self._formatter.format_tool_result(event))
        elif isinstance(event, ExecutionResult):
            await self._on_result(session, event)
        elif isinstance(event, ParseFailure):
            logger.warning(f"User {session.user_id}: unreadable assistant output: {event.error}")
            await self._deliver(session, self._formatter.format_parse_failure(event))

    async def _on_tool(self, session: Session, event: ToolInvocation) -> None:
        logger.debug(f"User {session.user_id}: tool {event.name} ({event.kind.value})")
        if event.kind is ToolKind.TODO_WRITE:
            await self._deliver_todos(session, event.todos)
            return
        text = self._formatter.format_tool(event)
        if text:
            await self._deliver(session, text)

    async def _on_result(self, session: Session, event: ExecutionResult) -> None:
        session.token_usage.add(event.usage, event.cost_usd)
        percent = session.token_usage.usage_percent(self._context_window_tokens)
        logger.info(
            f"User {session.user_id}: turn finished (success={event.success}, "
            f"context={percent:.1f}%)"
        )
        await self._deliver(session, self._formatter.format_execution_result(event, session.session_id))
        self._release_resource(session)

        if (
            self._auto_compact_percent > 0
            and not session.is_compacting
            and percent >= self._auto_compact_percent
        ):
            logger.info(f"User {session.user_id}: auto-compaction requested at {percent:.1f}%")
            session.compact_requested = True

    async def _on_stderr(self, session: Session, text: str) -> None:
        if not self._is_current(session):
            return
        await self._deliver(session, self._formatter.format_error(text, "assistant"))

    async def _on_exit(self, session: Session, exited: ProcessExited) -> None:
        self._release_resource(session)
        if not self._is_current(session):
            return

        session.is_compacting = False
        if not exited.result_seen and not exited.cancelled:
            logger.warning(f"User {session.user_id}: assistant exited with {exited.returncode} before a result")
            await self._deliver(session, self._formatter.format_unexpected_exit(exited))

        if exited.cancelled:
            session.compact_requested = False
        if session.compact_requested and not self._closing:
            session.compact_requested = False
            self._schedule_compaction(session)

    def _schedule_compaction(self, session: Session) -> None:
        key = session.user_id
        task = asyncio.create_task(self._compact(session))
        self._compactions[key] = task

        def forget(done: asyncio.Task) -> None:
            if self._compactions.get(key) is done:
                del self._compactions[key]

        task.add_done_callback(forget)

    async def _compact(self, session: Session) -> None:
        key = session.user_id
        async with self._lock_for(key):
            if not self._is_current(session) or session.supervisor.is_running:
                return
            target = session.session_id or self._store.get_current(key)
            if not target:
                logger.warning(f"User {key}: cannot compact without an assistant session id")
                return

            percent = session.token_usage.usage_percent(self._context_window_tokens)
            await self._deliver(session, self._formatter.format_compaction(percent))
            session.is_compacting = True
            session.token_usage = TokenUsage()
            try:
                await session.supervisor.resume(COMPACT_PROMPT, target)
            except (AlreadyRunningError, LaunchError) as ex:
                session.is_compacting = False
                logger.error(f"User {key}: auto-compaction failed: {ex}")
                await self._deliver(session, self._formatter.format_error(ex, "auto-compaction"))

    async def _deliver_todos(self, session: Session, todos: list[dict]) -> None:
        if session.last_todos is not None and not todos_changed(session.last_todos, todos):
            logger.debug(f"User {session.user_id}: todo list unchanged")
            return

        text = self._formatter.format_todo_list(todos)
        chunks = self._chunker.split(text)
        if session.last_todo_ref is not None and len(chunks) == 1:
            try:
                session.last_todo_ref = await self._delivery.send(session.chat_id, text, edit_of=session.last_todo_ref)
                session.last_todos = [dict(todo) for todo in todos]
                return
            except Exception as ex:
                logger.warning(f"User {session.user_id}: editing the todo message failed, sending a new one: {ex}")

        ref = await self._deliver(session, text)
        session.last_todo_ref = ref if len(chunks) == 1 else None
        session.last_todos = [dict(todo) for todo in todos]

    async def _deliver(self, session: Session, text: str) -> MessageRef | None:
        first: MessageRef | None = None
        chunks = self._chunker.split(text)
        for index, chunk in enumerate(chunks, start=1):
            try:
                ref = await self._delivery.send(session.chat_id, chunk)
            except Exception as ex:
                logger.error(
                    f"User {session.user_id}: delivering part {index}/{len(chunks)} "
                    f"({len(chunk)} chars) failed: {ex}"
                )
                continue
            if first is None:
                first = ref
        return first
