from __future__ import annotations

import asyncio
import subprocess
from typing import Protocol, runtime_checkable

from loguru import logger

from chat_cli_bridge.errors import LaunchError


class ByteStream(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


@runtime_checkable
class ProcessHandle(Protocol):
    """The subset of ``asyncio.subprocess.Process`` the supervisor relies on."""

    @property
    def pid(self) -> int | None: ...

    @property
    def returncode(self) -> int | None: ...

    @property
    def stdout(self) -> ByteStream | None: ...

    @property
    def stderr(self) -> ByteStream | None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    async def wait(self) -> int: ...


@runtime_checkable
class ProcessLauncher(Protocol):
    async def launch(self, program: str, args: list[str], *, cwd: str | None = None) -> ProcessHandle: ...


class SubprocessLauncher:
    """Starts the real assistant CLI as an OS process."""

    async def launch(self, program: str, args: list[str], *, cwd: str | None = None) -> ProcessHandle:
        logger.debug(f"Spawning {program} with {len(args)} argument(s) in {cwd or '.'}")
        return await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )


class DisabledLauncher:
    """Refuses every launch. Used where the real CLI must stay unreachable."""

    async def launch(self, program: str, args: list[str], *, cwd: str | None = None) -> ProcessHandle:
        raise LaunchError(f"Process launching is disabled; refusing to start {program}")


def create_launcher(name: str) -> ProcessLauncher:
    key = name.strip().lower()
    if key == "subprocess":
        return SubprocessLauncher()
    if key == "disabled":
        return DisabledLauncher()
    raise ValueError(f"Unknown launcher: {name!r}. Supported: 'subprocess', 'disabled'")
