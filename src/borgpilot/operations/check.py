"""borg check."""

from __future__ import annotations

import asyncio

from borgpilot.messages import LogMessage, LogRecord
from borgpilot.models import CheckResult, LogLevel

from .context import BorgContext

__all__ = ["check_repository"]


async def check_repository(
    ctx: BorgContext,
    repo_url: str,
    passphrase: str,
    *,
    quick: bool = True,
    cancel: asyncio.Event | None = None,
) -> CheckResult:
    """Verify repository consistency.

    Args:
        ctx: Borg context
        repo_url: Repository location
        passphrase: Repository passphrase
        quick: Only check the repository structure (``--repository-only``);
            otherwise read and verify all data (``--verify-data``)
        cancel: Set to stop the check

    Returns:
        CheckResult with the ERROR/CRITICAL messages borg logged. Warnings are
        not collected. Exit code 1 with collected messages counts as success:
        the check itself ran, and the findings are in ``error_logs``.
    """
    error_logs: list[str] = []

    def collect(record: LogRecord) -> None:
        if isinstance(record, LogMessage) and record.level >= LogLevel.ERROR:
            error_logs.append(record.message)

    args = ["check", "--repository-only" if quick else "--verify-data", "--log-json", repo_url]
    status = await ctx.runner.stream(
        ctx.borg_path,
        args,
        ctx.env(passphrase).as_dict(),
        on_record=collect,
        cancel=cancel,
        findings_level=LogLevel.ERROR,
    )
    return CheckResult(status=status, error_logs=tuple(error_logs))
