"""Command runner: executes borg and converts the outcome into a Status.

Two modes exist:

- ``run``: buffered; the complete stdout/stderr is collected (info, list,
  init, rename, delete, mount, ...).
- ``stream``: stderr is decoded line by line into typed log records while borg
  is still running (create, check, prune). stdout is discarded.

Both modes take an optional ``cancel`` event. When it is set before borg has
exited, the whole process tree is interrupted, the runner waits for the
process to exit and drains its remaining output, and the returned Status has
``cancelled`` set. Cancelling the awaiting task itself also stops the process
tree before the CancelledError propagates.
"""

from __future__ import annotations

import asyncio
import inspect
import shlex
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence

import structlog

from borgpilot.executor import LocalExecutor, LocalProcess
from borgpilot.logger import get_logger, log_command_start, log_command_status
from borgpilot.messages import LogMessage, LogRecord, decode_stream
from borgpilot.models import CommandResult, LogLevel
from borgpilot.status import WARNING_GENERIC, Status

__all__ = ["CommandRunner", "RecordHandler"]

type RecordHandler = Callable[[LogRecord], Awaitable[None] | None]


class CommandRunner:
    """Single place where borg processes are started and their exit codes classified."""

    def __init__(
        self,
        executor: LocalExecutor | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._executor = executor or LocalExecutor()
        self._logger = logger or get_logger("borgpilot.runner")

    @property
    def executor(self) -> LocalExecutor:
        return self._executor

    async def run(
        self,
        binary: str,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> tuple[CommandResult, Status]:
        """Run borg to completion and collect its output.

        Args:
            binary: Path of the borg executable
            args: Arguments after the executable
            env: Complete child environment (see :class:`borgpilot.env.Env`)
            cancel: Set to stop the command early

        Returns:
            Tuple of the raw CommandResult and the classified Status. When the
            program could not be started the result has exit code -1 and the
            OSError text on stderr.
        """
        argv = [binary, *args]
        cmd = shlex.join(argv)
        log_command_start(self._logger, cmd)
        started = time.monotonic()

        try:
            process = await self._executor.start_process(argv, env, capture_stdout=True)
        except OSError as e:
            status = Status.from_exception(e)
            return CommandResult(exit_code=-1, stdout="", stderr=str(e)), self._finish(status, cmd, started)

        try:
            communicate = asyncio.create_task(process.communicate())
            cancelled = await self._supervise(process, communicate, cancel)
            result = communicate.result()
        finally:
            self._executor.release(process)

        if cancelled:
            status = Status.cancelled_status()
        else:
            status = Status.from_exit_code(result.exit_code)
            if status.has_error():
                self._logger.debug("Command output", cmd=cmd, output=result.output)
        return result, self._finish(status, cmd, started)

    async def stream(
        self,
        binary: str,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        *,
        on_record: RecordHandler | None = None,
        cancel: asyncio.Event | None = None,
        findings_level: LogLevel | None = None,
    ) -> Status:
        """Run borg while decoding its ``--log-json`` stderr stream.

        Records reach ``on_record`` in the order borg emitted them. A coroutine
        handler is awaited before the next line is read, so a slow consumer
        slows down decoding rather than losing records. The stream is drained
        to EOF before the exit code is collected.

        Args:
            binary: Path of the borg executable
            args: Arguments after the executable (should include ``--log-json``)
            env: Complete child environment
            on_record: Called for every decoded record
            cancel: Set to stop the command early
            findings_level: When given, exit code 1 together with at least one
                log message at or above this level is reported as plain success
                (``borg check`` uses exit 1 to say "found problems")

        Returns:
            The classified Status
        """
        argv = [binary, *args]
        cmd = shlex.join(argv)
        log_command_start(self._logger, cmd)
        started = time.monotonic()

        try:
            process = await self._executor.start_process(argv, env)
        except OSError as e:
            return self._finish(Status.from_exception(e), cmd, started)

        findings = 0

        async def pump() -> None:
            nonlocal findings
            async for record in decode_stream(process.stderr()):
                if findings_level is not None and isinstance(record, LogMessage) and record.level >= findings_level:
                    findings += 1
                if on_record is not None:
                    outcome = on_record(record)
                    if inspect.isawaitable(outcome):
                        await outcome

        try:
            cancelled = await self._supervise(process, asyncio.create_task(pump()), cancel)
            exit_code = await process.wait()
        finally:
            self._executor.release(process)

        if cancelled:
            status = Status.cancelled_status()
        elif exit_code == WARNING_GENERIC.exit_code and findings:
            status = Status.ok()
        else:
            status = Status.from_exit_code(exit_code)
        return self._finish(status, cmd, started)

    async def _supervise(
        self,
        process: LocalProcess,
        work: asyncio.Task[object],
        cancel: asyncio.Event | None,
    ) -> bool:
        """Wait for ``work`` while watching ``cancel``.

        Returns:
            True when the process tree was stopped because ``cancel`` was set
        """
        waiter = asyncio.create_task(cancel.wait()) if cancel is not None else None
        try:
            if waiter is None:
                await asyncio.wait({work})
            else:
                await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if work.done() or process.returncode is not None:
                await work  # borg already exited; drain the rest of its output
                return False
            self._logger.info("Cancelling command", pid=process.pid)
            await process.terminate()
            await work  # drain what borg wrote before it exited
            return True
        except asyncio.CancelledError:
            await process.terminate()
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise
        except Exception:
            # record handler failed; do not leave borg running
            await process.terminate()
            raise
        finally:
            if waiter is not None:
                waiter.cancel()

    def _finish(self, status: Status, cmd: str, started: float) -> Status:
        return log_command_status(self._logger, status, cmd, time.monotonic() - started)
