"""Running install/remove commands and guarding against dependency loops."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from typing import Any

from .options import substitute_cmdline_opts

INSMOD_RECURSION_STEP = 15


class CommandError(Exception):
    """An install or remove command could not run or exited with failure."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def has_recursion_loop(module: Any, recursion: Sequence[Any]) -> bool:
    """Tell whether module already appears in the chain of modules being inserted.

    The chain is only searched every INSMOD_RECURSION_STEP levels, so normal
    short chains cost nothing.
    """
    if (len(recursion) + 1) % INSMOD_RECURSION_STEP != 0:
        return False
    return module in recursion


def run_command(
    modname: str,
    kind: str,
    command: str,
    cmdline_opts: str | None,
    dry_run: bool,
) -> str:
    """Run an install or remove command through the shell.

    $CMDLINE_OPTS is replaced by the given options and MODPROBE_MODULE is
    set to the module name for the command. Returns the expanded command;
    with dry_run nothing is executed.
    """
    cmd = substitute_cmdline_opts(command, cmdline_opts)
    if dry_run:
        return cmd

    env = dict(os.environ)
    env["MODPROBE_MODULE"] = modname
    message = f"Error running {kind} command for {modname}"
    try:
        result = subprocess.run(cmd, shell=True, env=env, check=False)
    except OSError as exc:
        raise CommandError(message) from exc
    if result.returncode > 0:
        raise CommandError(message, result.returncode)
    return cmd