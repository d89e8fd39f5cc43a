"""One async function per borg verb, all sharing a BorgContext."""

from __future__ import annotations

from .archive import rename_archive, set_archive_comment
from .check import check_repository
from .context import BorgContext, archive_path
from .create import archive_name, count_backup_files, create_archive
from .delete import delete_archive, delete_archives, delete_repository
from .mount import mount_archive, mount_repository, umount
from .prune import prune_archives
from .repository import (
    break_lock,
    change_passphrase,
    compact,
    info,
    init_repository,
    list_archives,
)
from .version import mount_version, version

__all__ = [
    "BorgContext",
    "archive_name",
    "archive_path",
    "break_lock",
    "change_passphrase",
    "check_repository",
    "compact",
    "count_backup_files",
    "create_archive",
    "delete_archive",
    "delete_archives",
    "delete_repository",
    "info",
    "init_repository",
    "list_archives",
    "mount_archive",
    "mount_repository",
    "mount_version",
    "prune_archives",
    "rename_archive",
    "set_archive_comment",
    "umount",
    "version",
]
