from __future__ import annotations

import asyncio
import codecs
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from chat_cli_bridge.errors import AlreadyRunningError, LaunchError
from chat_cli_bridge.process.arguments import LaunchMode, build_arguments
from chat_cli_bridge.process.launcher import ProcessHandle, ProcessLauncher
from chat_cli_bridge.stream.events import DomainEvent, ProcessExited
from chat_cli_bridge.stream.protocol_reader import StreamProtocolReader

_DEFAULT_GRACE_SECONDS = 5.0


class AssistantProcessSupervisor:
    """Runs at most one assistant process at a time and streams its events.

    Launching goes exclusively through the injected launcher. Every ``start``
    call returns once the process produced its first stdout bytes (or ended
    without any); the rest of the run is pumped in a background task which
    hands events, stderr text and the final exit report to the callbacks in
    order.
    """

    _READ_CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        *,
        launcher: ProcessLauncher,
        model: str,
        on_event: Callable[[DomainEvent], Awaitable[None]],
        on_stderr: Callable[[str], Awaitable[None]] | None = None,
        on_exit: Callable[[ProcessExited], Awaitable[None]] | None = None,
        executable: str = "claude",
        working_directory: str | None = None,
        grace_period_seconds: float = _DEFAULT_GRACE_SECONDS,
    ) -> None:
        self._launcher = launcher
        self._model = model
        self._on_event = on_event
        self._on_stderr = on_stderr
        self._on_exit = on_exit
        self._executable = executable
        self._working_directory = working_directory
        self._grace_period_seconds = grace_period_seconds
        self._process: ProcessHandle | None = None
        self._reader: StreamProtocolReader | None = None
        self._launching = False
        self._cancel_requested = False
        self._run_task: asyncio.Task | None = None
        self._escalation_task: asyncio.Task | None = None
        self._last_arguments: list[str] | None = None

    @property
    def is_running(self) -> bool:
        return self._launching or self._process is not None

    @property
    def is_cancelling(self) -> bool:
        return self._cancel_requested and self._process is not None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def reader(self) -> StreamProtocolReader | None:
        return self._reader

    @property
    def last_arguments(self) -> list[str] | None:
        return list(self._last_arguments) if self._last_arguments is not None else None

    async def start_new(self, prompt: str) -> None:
        await self._launch(build_arguments(LaunchMode.NEW, self._model, prompt))

    async def continue_last(self, prompt: str) -> None:
        await self._launch(build_arguments(LaunchMode.CONTINUE, self._model, prompt))

    async def resume(self, prompt: str, session_id: str) -> None:
        await self._launch(build_arguments(LaunchMode.RESUME, self._model, prompt, session_id))

    def cancel(self) -> bool:
        """Ask the running process to stop; returns False when nothing is running.

        Does not wait for the exit. A background task kills the process if it
        is still alive when the grace period runs out. A cancel that arrives
        while the launcher is still starting the process is applied as soon as
        the process exists.
        """
        process = self._process
        if process is None:
            if not self._launching:
                return False
            self._cancel_requested = True
            logger.info("Cancel requested while the assistant process is starting")
            return True
        if process.returncode is not None:
            return False

        self._cancel_requested = True
        self._terminate(process)
        return True

    async def wait(self) -> None:
        task = self._run_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def _launch(self, args: list[str]) -> None:
        if self.is_running:
            raise AlreadyRunningError("Already processing a request")

        self._launching = True
        self._cancel_requested = False
        self._last_arguments = list(args)
        try:
            logger.info(
                f"Launching {self._executable} {' '.join(args[:-1])} "
                f"(prompt: {len(args[-1])} chars)"
            )
            try:
                process = await self._launcher.launch(self._executable, list(args), cwd=self._working_directory)
            except LaunchError:
                raise
            except Exception as ex:
                raise LaunchError(f"Failed to start {self._executable}: {ex}") from ex

            self._process = process
            self._reader = StreamProtocolReader()
            accepted = asyncio.Event()
            self._run_task = asyncio.create_task(self._run(process, self._reader, accepted))
            if self._cancel_requested:
                self._terminate(process)
        finally:
            self._launching = False

        await accepted.wait()

    async def _run(self, process: ProcessHandle, reader: StreamProtocolReader, accepted: asyncio.Event) -> None:
        stderr_task = asyncio.create_task(self._pump_stderr(process))
        returncode: int | None = None
        cancelled = False
        try:
            await self._pump_stdout(process, reader, accepted)
            for event in reader.close():
                await self._dispatch(self._on_event, event)
            await stderr_task
            returncode = await process.wait()
        finally:
            accepted.set()
            if not stderr_task.done():
                stderr_task.cancel()
            cancelled = self._cancel_requested
            if self._process is process:
                self._process = None
            escalation = self._escalation_task
            self._escalation_task = None
            if escalation is not None and not escalation.done():
                escalation.cancel()

        logger.info(
            f"Assistant process exited with code {returncode} "
            f"(events={reader.event_count}, result={reader.result_seen}, cancelled={cancelled})"
        )
        await self._dispatch(
            self._on_exit,
            ProcessExited(returncode=returncode, result_seen=reader.result_seen, cancelled=cancelled),
        )

    async def _pump_stdout(self, process: ProcessHandle, reader: StreamProtocolReader, accepted: asyncio.Event) -> None:
        stream = process.stdout
        if stream is None:
            return
        try:
            while True:
                data = await stream.read(self._READ_CHUNK_SIZE)
                if not data:
                    return
                accepted.set()
                for event in reader.feed(data):
                    await self._dispatch(self._on_event, event)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.error(f"Reading assistant stdout failed: {ex}")

    async def _pump_stderr(self, process: ProcessHandle) -> None:
        stream = process.stderr
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = await stream.read(self._READ_CHUNK_SIZE)
                if not data:
                    return
                text = decoder.decode(data)
                if text.strip():
                    logger.warning(f"Assistant stderr: {text.strip()[:500]}")
                    await self._dispatch(self._on_stderr, text)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.error(f"Reading assistant stderr failed: {ex}")

    def _terminate(self, process: ProcessHandle) -> None:
        logger.info(f"Cancelling assistant process {process.pid}")
        try:
            process.terminate()
        except ProcessLookupError:
            return

        if self._escalation_task is None or self._escalation_task.done():
            self._escalation_task = asyncio.create_task(self._escalate(process))

    async def _escalate(self, process: ProcessHandle) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=self._grace_period_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Assistant process {process.pid} still running {self._grace_period_seconds}s "
                f"after termination; killing it"
            )
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    async def _dispatch(self, callback: Callable[[Any], Awaitable[None]] | None, payload: Any) -> None:
        if callback is None:
            return
        try:
            await callback(payload)
        except Exception as ex:
            # One failing handler must not stop the rest of the stream.
            logger.error(f"{type(payload).__name__} handler failed: {ex}")
