"""Local subprocess execution with process-group aware termination."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import sys
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Protocol

from borgpilot.models import CommandResult

__all__ = [
    "LocalExecutor",
    "LocalProcess",
    "ProcessGroupTerminator",
    "ProcessTreeTerminator",
    "Terminator",
    "default_terminator",
]

# borg emits long JSON lines (file paths); asyncio's default limit is 64 KiB
STREAM_LIMIT = 4 * 1024 * 1024

# Seconds borg gets to exit after the interrupt before it is killed
TERMINATE_GRACE_SECONDS = 10.0


class Terminator(Protocol):
    """OS-specific strategy for stopping a process and everything it spawned.

    borg starts an ssh child for remote repositories, so signalling only the
    direct child would leave the transport running.
    """

    def spawn_options(self) -> dict[str, Any]:
        """Extra keyword arguments for asyncio.create_subprocess_exec."""
        ...

    async def interrupt(self, proc: asyncio.subprocess.Process) -> None:
        """Ask the process tree to stop gracefully."""
        ...

    async def kill(self, proc: asyncio.subprocess.Process) -> None:
        """Stop the process tree immediately."""
        ...


class ProcessGroupTerminator:
    """POSIX: run the child as a session leader and signal its process group."""

    def spawn_options(self) -> dict[str, Any]:
        return {"start_new_session": True}

    async def interrupt(self, proc: asyncio.subprocess.Process) -> None:
        self._signal_group(proc, signal.SIGINT)

    async def kill(self, proc: asyncio.subprocess.Process) -> None:
        self._signal_group(proc, signal.SIGKILL)

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass  # already gone


class ProcessTreeTerminator:
    """Windows: new process group, tree termination through taskkill."""

    def spawn_options(self) -> dict[str, Any]:
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}

    async def interrupt(self, proc: asyncio.subprocess.Process) -> None:
        await self._taskkill(proc, force=False)

    async def kill(self, proc: asyncio.subprocess.Process) -> None:
        await self._taskkill(proc, force=True)

    @staticmethod
    async def _taskkill(proc: asyncio.subprocess.Process, *, force: bool) -> None:
        args = ["taskkill", "/T", "/PID", str(proc.pid)]
        if force:
            args.insert(1, "/F")
        killer = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await killer.wait()


def default_terminator() -> Terminator:
    """Terminator matching the current platform."""
    if sys.platform == "win32":
        return ProcessTreeTerminator()
    return ProcessGroupTerminator()


class LocalProcess:
    """Process wrapper for a local asyncio subprocess.

    Note: stdin is intentionally not supported. borg must never prompt; the
    passphrase always comes from the environment.
    """

    def __init__(self, proc: asyncio.subprocess.Process, terminator: Terminator) -> None:
        self._proc = proc
        self._terminator = terminator

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    async def stderr(self) -> AsyncIterator[str]:
        """Iterate over stderr lines as they arrive."""
        if self._proc.stderr is None:
            return
        async for line in self._proc.stderr:
            yield line.decode(errors="replace")

    async def communicate(self) -> CommandResult:
        """Collect all output and wait for the process to exit."""
        stdout_bytes, stderr_bytes = await self._proc.communicate()
        return CommandResult(
            exit_code=self._proc.returncode if self._proc.returncode is not None else 0,
            stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
        )

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await self._proc.wait()

    async def terminate(self, grace: float = TERMINATE_GRACE_SECONDS) -> None:
        """Stop the whole process tree and wait until the process has exited.

        Sends an interrupt first (borg writes a checkpoint on SIGINT) and kills
        the tree if it is still alive after ``grace`` seconds.
        """
        if self._proc.returncode is not None:
            return
        await self._terminator.interrupt(self._proc)
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=grace)
        except TimeoutError:
            await self._terminator.kill(self._proc)
            await self._proc.wait()


class LocalExecutor:
    """Starts borg on the local machine and tracks the running processes."""

    def __init__(self, terminator: Terminator | None = None) -> None:
        self._terminator = terminator or default_terminator()
        self._processes: list[LocalProcess] = []

    async def start_process(
        self,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        *,
        capture_stdout: bool = False,
    ) -> LocalProcess:
        """Start a long-running process with streaming stderr.

        Args:
            args: Program and arguments
            env: Complete environment for the child
            capture_stdout: Pipe stdout too; otherwise it is discarded

        Returns:
            LocalProcess wrapper for the subprocess
        """
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if capture_stdout else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
            limit=STREAM_LIMIT,
            **self._terminator.spawn_options(),
        )
        process = LocalProcess(proc, self._terminator)
        self._processes.append(process)
        return process

    def release(self, process: LocalProcess) -> None:
        """Stop tracking a process that has exited."""
        if process in self._processes:
            self._processes.remove(process)

    async def terminate_all_processes(self) -> None:
        """Terminate all tracked processes."""
        await asyncio.gather(
            *(process.terminate() for process in self._processes if process.returncode is None),
            return_exceptions=True,
        )
        self._processes.clear()
