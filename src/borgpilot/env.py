"""Subprocess environment for borg invocations."""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace

__all__ = ["Env", "build_env"]

PASSPHRASE_VAR = "BORG_PASSPHRASE"
NEW_PASSPHRASE_VAR = "BORG_NEW_PASSPHRASE"
RSH_VAR = "BORG_RSH"
EXIT_CODES_VAR = "BORG_EXIT_CODES"
DELETE_CONFIRMATION_VAR = "BORG_DELETE_I_KNOW_WHAT_I_AM_DOING"

_SSH_OPTIONS = ("-oBatchMode=yes", "-oStrictHostKeyChecking=accept-new")


@dataclass(frozen=True)
class Env:
    """Immutable builder for the borg process environment.

    Example:
        env = Env(ssh_private_keys=keys).with_passphrase(pw).as_dict()
    """

    ssh_private_keys: tuple[str, ...] = ()
    passphrase: str = ""
    new_passphrase: str = ""
    delete_confirmation: bool = False

    def with_passphrase(self, passphrase: str) -> Env:
        return replace(self, passphrase=passphrase)

    def with_new_passphrase(self, new_passphrase: str) -> Env:
        return replace(self, new_passphrase=new_passphrase)

    def with_delete_confirmation(self) -> Env:
        return replace(self, delete_confirmation=True)

    def rsh_command(self) -> str:
        """Remote shell command borg uses for ssh:// repositories."""
        parts = ["ssh", *_SSH_OPTIONS]
        for key in self.ssh_private_keys:
            parts.extend(["-i", shlex.quote(key)])
        return " ".join(parts)

    def as_dict(self, parent: Mapping[str, str] | None = None) -> dict[str, str]:
        """Build the full environment on top of the parent process environment.

        Args:
            parent: Base environment (defaults to ``os.environ``)

        Returns:
            New dict; the parent mapping is never modified
        """
        env = dict(os.environ if parent is None else parent)
        env.pop(PASSPHRASE_VAR, None)
        env.pop(NEW_PASSPHRASE_VAR, None)
        env[RSH_VAR] = self.rsh_command()
        env[EXIT_CODES_VAR] = "modern"
        # Unencrypted repositories must not receive a passphrase at all
        if self.passphrase:
            env[PASSPHRASE_VAR] = self.passphrase
        if self.new_passphrase:
            env[NEW_PASSPHRASE_VAR] = self.new_passphrase
        if self.delete_confirmation:
            env[DELETE_CONFIRMATION_VAR] = "YES"
        return env


def build_env(
    passphrase: str,
    ssh_private_keys: Sequence[str] = (),
    parent: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment for a plain borg call with an optional passphrase."""
    return Env(ssh_private_keys=tuple(ssh_private_keys)).with_passphrase(passphrase).as_dict(parent)
