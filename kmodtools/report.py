"""Prioritised diagnostics for the module tools."""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TextIO


class Priority(IntEnum):
    """Message priorities, numbered as syslog numbers them."""

    CRIT = 2
    ERR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7


DEFAULT_VERBOSE = Priority.WARNING

_NAMES = {
    Priority.CRIT: "FATAL",
    Priority.ERR: "ERROR",
    Priority.WARNING: "WARNING",
    Priority.NOTICE: "NOTICE",
    Priority.INFO: "INFO",
    Priority.DEBUG: "DEBUG",
}


class FatalError(Exception):
    """Raised after a critical message has been reported."""


def priority_name(prio: int) -> str:
    """Return the label printed in front of a message of this priority."""
    try:
        return _NAMES[Priority(prio)]
    except ValueError:
        return f"LOG-{int(prio):03d}"


class Reporter:
    """Writes messages whose priority is within the verbosity level."""

    def __init__(
        self,
        verbose: int = DEFAULT_VERBOSE,
        stream: TextIO | None = None,
        show_stream: TextIO | None = None,
    ) -> None:
        self.verbose = int(verbose)
        self.stream = stream
        self.show_stream = show_stream
        self.always_show = False

    def _err(self) -> TextIO:
        return self.stream if self.stream is not None else sys.stderr

    def _out(self) -> TextIO:
        return self.show_stream if self.show_stream is not None else sys.stdout

    def log(self, prio: int, message: str) -> None:
        """Report a message; a critical one raises FatalError afterwards."""
        if prio > self.verbose:
            return
        self._err().write(f"{priority_name(prio)}: {message}")
        if prio <= Priority.CRIT:
            raise FatalError(message.rstrip("\n"))

    def show(self, message: str) -> None:
        """Print a progress message when verbose or when showing is forced."""
        if not self.always_show and self.verbose <= DEFAULT_VERBOSE:
            return
        out = self._out()
        out.write(message)
        out.flush()

    def critical(self, message: str) -> None:
        self.log(Priority.CRIT, message)

    def error(self, message: str) -> None:
        self.log(Priority.ERR, message)

    def warning(self, message: str) -> None:
        self.log(Priority.WARNING, message)

    def info(self, message: str) -> None:
        self.log(Priority.INFO, message)

    def debug(self, message: str) -> None:
        self.log(Priority.DEBUG, message)