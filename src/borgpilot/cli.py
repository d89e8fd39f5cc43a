"""CLI entry point for borg-pilot using Typer."""

from __future__ import annotations

import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable
from importlib.resources import files
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from borgpilot import __version__
from borgpilot.config import Configuration, ConfigurationError
from borgpilot.logger import configure_logging
from borgpilot.models import BackupProgress
from borgpilot.operations import (
    BorgContext,
    break_lock,
    check_repository,
    create_archive,
    info,
    init_repository,
    list_archives,
    mount_archive,
    mount_repository,
    prune_archives,
    umount,
    version,
)
from borgpilot.paths import default_log_dir, is_mounted
from borgpilot.runner import CommandRunner
from borgpilot.status import Status

app = typer.Typer(
    name="borg-pilot",
    help="Run and supervise borg backups",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file (default: ~/.config/borg-pilot/config.yaml)"),
]
PassphraseOption = Annotated[
    str,
    typer.Option("--passphrase", envvar="BORG_PILOT_PASSPHRASE", help="Repository passphrase", show_default=False),
]
RepoArgument = Annotated[str, typer.Argument(help="Repository location (path or ssh:// URL)")]


def _version_callback(value: bool) -> None:
    """Print version and exit if --version flag is provided."""
    if value:
        console.print(f"borg-pilot {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version_flag: Annotated[
        bool,
        typer.Option("--version", "-v", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """borg-pilot backup orchestration."""


def _load_config(config: Path | None) -> Configuration:
    """Load configuration; a missing default config file means defaults."""
    config_path = config or Configuration.get_default_config_path()
    if config is None and not config_path.exists():
        cfg = Configuration()
    else:
        try:
            cfg = Configuration.from_yaml(config_path)
        except ConfigurationError as e:
            console.print("[bold red]Configuration error:[/bold red]")
            for error in e.errors:
                console.print(f"  {error.path}: {error.message}")
            sys.exit(1)
    configure_logging(cfg.log_file_level, cfg.log_cli_level, default_log_dir() / "borg-pilot.log")
    return cfg


def _context(cfg: Configuration) -> BorgContext:
    return BorgContext(
        runner=CommandRunner(),
        borg_path=cfg.borg_path,
        borg_mount_path=cfg.borg_mount_path,
        ssh_private_keys=tuple(cfg.ssh_private_keys),
        mount_root=cfg.mount_root,
    )


def _run_cancellable[T](operation: Callable[[asyncio.Event], Awaitable[T]]) -> T:
    """Run an operation; Ctrl+C sets its cancel event so borg can stop cleanly."""

    async def runner() -> T:
        loop = asyncio.get_running_loop()
        cancel = asyncio.Event()

        def sigint_handler() -> None:
            if not cancel.is_set():
                console.print("\n[yellow]Interrupt received, stopping borg...[/yellow]")
            cancel.set()

        loop.add_signal_handler(signal.SIGINT, sigint_handler)
        try:
            return await operation(cancel)
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(runner())


def _report(status: Status) -> int:
    """Print the status and return the process exit code."""
    if status.cancelled:
        console.print("[yellow]Cancelled[/yellow]")
        return 130
    if status.error is not None:
        console.print(
            f"[bold red]Error ({status.error.category.value}, exit {status.error.exit_code}):[/bold red] "
            f"{status.error_message}"
        )
        return 1
    if status.warning is not None:
        console.print(f"[yellow]Warning:[/yellow] {status.warning_message}")
    return 0


@app.command("info")
def info_command(
    repo: RepoArgument,
    archive: Annotated[str | None, typer.Option("--archive", "-a", help="Show a single archive")] = None,
    passphrase: PassphraseOption = "",
    config: ConfigOption = None,
) -> None:
    """Show repository information."""
    ctx = _context(_load_config(config))
    response, status = asyncio.run(info(ctx, repo, passphrase, archive))
    if response is not None:
        console.print(f"[bold]Repository:[/bold] {response.repository.location}")
        console.print(f"  id: {response.repository.id}")
        console.print(f"  last modified: {response.repository.last_modified}")
        console.print(f"  encryption: {response.encryption_mode}")
        stats = response.cache.stats
        console.print(f"  unique size: {stats.unique_csize} bytes (compressed), {stats.unique_size} bytes")
        for item in response.archives:
            console.print(f"  archive {item.name}: {item.stats.nfiles} files, {item.duration:.1f}s")
    sys.exit(_report(status))


@app.command("list")
def list_command(repo: RepoArgument, passphrase: PassphraseOption = "", config: ConfigOption = None) -> None:
    """List the archives of a repository."""
    ctx = _context(_load_config(config))
    response, status = asyncio.run(list_archives(ctx, repo, passphrase))
    if response is not None:
        table = Table(title=response.repository.location)
        table.add_column("Name")
        table.add_column("Start")
        table.add_column("End")
        for item in response.archives:
            table.add_row(item.name, str(item.start or ""), str(item.end or ""))
        console.print(table)
    sys.exit(_report(status))


@app.command("check")
def check_command(
    repo: RepoArgument,
    full: Annotated[bool, typer.Option("--full", help="Verify all data instead of the repository structure")] = False,
    passphrase: PassphraseOption = "",
    config: ConfigOption = None,
) -> None:
    """Check repository consistency."""
    ctx = _context(_load_config(config))
    result = _run_cancellable(lambda cancel: check_repository(ctx, repo, passphrase, quick=not full, cancel=cancel))
    for line in result.error_logs:
        console.print(f"[red]{line}[/red]")
    if result.has_findings:
        console.print(f"[bold red]{len(result.error_logs)} problem(s) found[/bold red]")
    sys.exit(_report(result.status) or (1 if result.has_findings else 0))


@app.command("version")
def version_command(config: ConfigOption = None) -> None:
    """Show the borg version."""
    ctx = _context(_load_config(config))
    borg_version, status = asyncio.run(version(ctx))
    if borg_version is not None:
        console.print(f"borg {borg_version}")
    sys.exit(_report(status))


@app.command("create")
def create_command(
    repo: RepoArgument,
    paths: Annotated[list[str], typer.Argument(help="Paths to back up")],
    prefix: Annotated[str, typer.Option("--prefix", "-p", help="Archive name prefix")] = "",
    exclude: Annotated[list[str] | None, typer.Option("--exclude", "-e", help="Exclude pattern")] = None,
    passphrase: PassphraseOption = "",
    config: ConfigOption = None,
) -> None:
    """Create a new archive."""
    ctx = _context(_load_config(config))

    async def operation(cancel: asyncio.Event) -> tuple[str, Status]:
        queue: asyncio.Queue[BackupProgress | None] = asyncio.Queue()
        with Progress(
            TextColumn("[bold]Backing up"), BarColumn(), MofNCompleteColumn(), TimeElapsedColumn(), console=console
        ) as progress:
            task = progress.add_task("backup", total=None)

            async def show() -> None:
                while (tick := await queue.get()) is not None:
                    progress.update(task, total=tick.total_files, completed=tick.processed_files)

            shower = asyncio.create_task(show())
            result = await create_archive(
                ctx, repo, passphrase, prefix, paths, exclude or [], progress=queue, cancel=cancel
            )
            await shower
            return result

    name, status = _run_cancellable(operation)
    console.print(f"Archive: {name}")
    sys.exit(_report(status))


@app.command("prune")
def prune_command(
    repo: RepoArgument,
    prefix: Annotated[str, typer.Option("--prefix", "-p", help="Only archives starting with this prefix")],
    keep_daily: Annotated[int | None, typer.Option("--keep-daily")] = None,
    keep_weekly: Annotated[int | None, typer.Option("--keep-weekly")] = None,
    keep_monthly: Annotated[int | None, typer.Option("--keep-monthly")] = None,
    keep_yearly: Annotated[int | None, typer.Option("--keep-yearly")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show what would be pruned")] = False,
    passphrase: PassphraseOption = "",
    config: ConfigOption = None,
) -> None:
    """Prune archives by retention rules, then compact."""
    options: list[str] = []
    for flag, value in (
        ("--keep-daily", keep_daily),
        ("--keep-weekly", keep_weekly),
        ("--keep-monthly", keep_monthly),
        ("--keep-yearly", keep_yearly),
    ):
        if value is not None:
            options.extend([flag, str(value)])
    if not options:
        console.print("[bold red]Error:[/bold red] at least one --keep-* option is required")
        raise typer.Exit(2)

    ctx = _context(_load_config(config))
    result, status = _run_cancellable(
        lambda cancel: prune_archives(ctx, repo, passphrase, prefix, options, dry_run=dry_run, cancel=cancel)
    )
    verb = "Would prune" if result.is_dry_run else "Pruned"
    for pruned in result.pruned:
        console.print(f"[red]{verb}:[/red] {pruned.name}")
    for kept in result.kept:
        console.print(f"[green]Keeping:[/green] {kept.name} [dim]({kept.reason})[/dim]")
    sys.exit(_report(status))


@app.command("mount")
def mount_command(
    repo: RepoArgument,
    mount_id: Annotated[int, typer.Argument(help="Repository or archive id used for the mount directory")],
    archive: Annotated[str | None, typer.Option("--archive", "-a", help="Mount a single archive")] = None,
    passphrase: PassphraseOption = "",
    config: ConfigOption = None,
) -> None:
    """Mount a repository or an archive via FUSE."""
    ctx = _context(_load_config(config))
    if archive is None:
        path, status = asyncio.run(mount_repository(ctx, mount_id, repo, passphrase))
    else:
        path, status = asyncio.run(mount_archive(ctx, mount_id, repo, archive, passphrase))
    if status.is_completed_with_success():
        console.print(f"Mounted at {path}")
    sys.exit(_report(status))


@app.command("umount")
def umount_command(
    path: Annotated[Path, typer.Argument(help="Mount point")],
    config: ConfigOption = None,
) -> None:
    """Unmount a FUSE mount created by borg-pilot."""
    if not is_mounted(path):
        console.print(f"[yellow]Not mounted:[/yellow] {path}")
        raise typer.Exit(1)
    ctx = _context(_load_config(config))
    sys.exit(_report(asyncio.run(umount(ctx, path))))


@app.command("break-lock")
def break_lock_command(repo: RepoArgument, passphrase: PassphraseOption = "", config: ConfigOption = None) -> None:
    """Remove a stale repository lock."""
    ctx = _context(_load_config(config))
    sys.exit(_report(asyncio.run(break_lock(ctx, repo, passphrase))))


@app.command("init")
def init_command(
    repo: RepoArgument,
    no_passphrase: Annotated[bool, typer.Option("--no-passphrase", help="Create an unencrypted repository")] = False,
    passphrase: PassphraseOption = "",
    config: ConfigOption = None,
) -> None:
    """Create a new repository."""
    ctx = _context(_load_config(config))
    sys.exit(_report(asyncio.run(init_repository(ctx, repo, passphrase, no_passphrase=no_passphrase))))


@app.command("init-config")
def init_config(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing configuration file"),
    ] = False,
) -> None:
    """Initialize default configuration file.

    Creates ~/.config/borg-pilot/config.yaml with default settings.
    Use --force to overwrite an existing configuration.
    """
    config_path = Configuration.get_default_config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration file already exists:[/yellow] {config_path}")
        console.print("Use --force to overwrite")
        raise typer.Exit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    default_config = files("borgpilot").joinpath("default-config.yaml").read_text()
    config_path.write_text(default_config)

    console.print(f"[green]Created configuration file:[/green] {config_path}")


if __name__ == "__main__":
    app()
