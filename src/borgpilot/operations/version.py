"""borg --version."""

from __future__ import annotations

from packaging.version import InvalidVersion, Version

from borgpilot.status import ERROR_INVALID_OUTPUT, Status

from .context import BorgContext

__all__ = ["mount_version", "parse_version", "version"]


def parse_version(output: str) -> Version:
    """Parse ``borg 1.4.3`` style output.

    Raises:
        ValueError: If the output has no parseable version field
    """
    fields = output.split()
    if len(fields) < 2:
        raise ValueError(f"unexpected version output: {output!r}")
    try:
        return Version(fields[1])
    except InvalidVersion as e:
        raise ValueError(f"failed to parse version {fields[1]!r}") from e


async def _version_at(ctx: BorgContext, binary: str) -> tuple[Version | None, Status]:
    result, status = await ctx.runner.run(binary, ["--version"])
    if status.has_error():
        return None, status
    try:
        return parse_version(result.stdout or result.output), status
    except ValueError as e:
        return None, Status.from_exception(e, ERROR_INVALID_OUTPUT)


async def version(ctx: BorgContext) -> tuple[Version | None, Status]:
    return await _version_at(ctx, ctx.borg_path)


async def mount_version(ctx: BorgContext) -> tuple[Version | None, Status]:
    """Version of the FUSE-capable binary used for mount/umount."""
    return await _version_at(ctx, ctx.mount_binary)
