"""Command line of the module loader and its plain-text reports."""

from __future__ import annotations

import getopt
import os
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .report import DEFAULT_VERBOSE, Priority

CONFIG_SECTIONS = ("blacklist", "install", "remove", "alias", "option", "softdep")

_SHORT = "arRibfDcnC:d:S:sqvVh"
_LONG_MAP = {
    "all": "a",
    "remove": "r",
    "remove-dependencies": "remove-dependencies",
    "resolve-alias": "R",
    "first-time": "first-time",
    "ignore-install": "i",
    "ignore-remove": "i",
    "use-blacklist": "b",
    "force": "f",
    "force-modversion": "force-modversion",
    "force-vermagic": "force-vermagic",
    "show-depends": "D",
    "showconfig": "c",
    "show-config": "c",
    "show-modversions": "show-modversions",
    "dump-modversions": "show-modversions",
    "dry-run": "n",
    "show": "n",
    "config=": "C",
    "dirname=": "d",
    "set-version=": "S",
    "syslog": "s",
    "quiet": "q",
    "verbose": "v",
    "version": "V",
    "help": "h",
}
_ACTIONS = {f"--{name.rstrip('=')}": key for name, key in _LONG_MAP.items()}
_ACTIONS.update({f"-{ch}": ch for ch in _SHORT if ch != ":"})


class UsageError(Exception):
    """The command line cannot be used."""


@dataclass
class ModprobeSettings:
    """Everything the command line asks for."""

    use_all: bool = False
    remove: bool = False
    remove_dependencies: bool = False
    lookup_only: bool = False
    first_time: bool = False
    ignore_commands: bool = False
    use_blacklist: bool = False
    force: bool = False
    strip_modversion: bool = False
    strip_vermagic: bool = False
    ignore_loaded: bool = False
    dry_run: bool = False
    do_show: bool = False
    show_config: bool = False
    show_modversions: bool = False
    config_paths: list[str] = field(default_factory=list)
    root: str | None = None
    kversion: str | None = None
    use_syslog: bool = False
    verbose: int = int(DEFAULT_VERBOSE)
    log_priority: int = int(Priority.CRIT)
    env_options: list[str] = field(default_factory=list)
    show_help: bool = False
    show_version: bool = False
    args: list[str] = field(default_factory=list)


def parse_args(argv: Sequence[str]) -> ModprobeSettings:
    """Parse the arguments that follow the program name.

    Options may be mixed with module names. Options that are passed on to
    nested invocations are collected in env_options.
    """
    s = ModprobeSettings()
    try:
        opts, rest = getopt.gnu_getopt(list(argv), _SHORT, list(_LONG_MAP))
    except getopt.GetoptError as exc:
        raise UsageError(str(exc)) from exc

    for opt, arg in opts:
        key = _ACTIONS[opt]
        if key == "a":
            s.log_priority = int(Priority.WARNING)
            s.use_all = True
        elif key == "r":
            s.remove = True
        elif key == "remove-dependencies":
            s.remove_dependencies = True
        elif key == "R":
            s.lookup_only = True
        elif key == "first-time":
            s.first_time = True
        elif key == "i":
            s.ignore_commands = True
        elif key == "b":
            s.use_blacklist = True
        elif key == "f":
            s.force = True
        elif key == "force-modversion":
            s.strip_modversion = True
        elif key == "force-vermagic":
            s.strip_vermagic = True
        elif key == "D":
            s.ignore_loaded = True
            s.dry_run = True
            s.do_show = True
        elif key == "c":
            s.show_config = True
        elif key == "show-modversions":
            s.show_modversions = True
        elif key == "n":
            s.dry_run = True
        elif key == "C":
            s.config_paths.append(arg)
            s.env_options.extend(("-C", arg))
        elif key == "d":
            s.root = arg
        elif key == "S":
            s.kversion = arg
        elif key == "s":
            s.env_options.append("-s")
            s.use_syslog = True
        elif key == "q":
            s.env_options.append("-q")
            s.verbose -= 1
        elif key == "v":
            s.env_options.append("-v")
            s.verbose += 1
        elif key == "V":
            s.show_version = True
            return s
        elif key == "h":
            s.show_help = True
            return s

    s.args = rest
    if not s.show_config and not rest:
        raise UsageError("missing parameters. See -h.")
    return s


def usage(progname: str) -> str:
    """Return the help text."""
    p = progname
    return (
        "Usage:\n"
        f"\t{p} [options] [-i] [-b] modulename\n"
        f"\t{p} [options] -a [-i] [-b] modulename [modulename...]\n"
        f"\t{p} [options] -r [-i] modulename\n"
        f"\t{p} [options] -r -a [-i] modulename [modulename...]\n"
        f"\t{p} [options] -c\n"
        f"\t{p} [options] --dump-modversions filename\n"
        "Management Options:\n"
        "\t-a, --all                   Consider every non-argument to\n"
        "\t                            be a module name to be inserted\n"
        "\t                            or removed (-r)\n"
        "\t-r, --remove                Remove modules instead of inserting\n"
        "\t    --remove-dependencies   Also remove modules depending on it\n"
        "\t-R, --resolve-alias         Only lookup and print alias and exit\n"
        "\t    --first-time            Fail if module already inserted or removed\n"
        "\t-i, --ignore-install        Ignore install commands\n"
        "\t-i, --ignore-remove         Ignore remove commands\n"
        "\t-b, --use-blacklist         Apply blacklist to resolved alias.\n"
        "\t-f, --force                 Force module insertion or removal.\n"
        "\t                            implies --force-modversions and\n"
        "\t                            --force-vermagic\n"
        "\t    --force-modversion      Ignore module's version\n"
        "\t    --force-vermagic        Ignore module's version magic\n"
        "\n"
        "Query Options:\n"
        "\t-D, --show-depends          Only print module dependencies and exit\n"
        "\t-c, --showconfig            Print out known configuration and exit\n"
        "\t-c, --show-config           Same as --showconfig\n"
        "\t    --show-modversions      Dump module symbol version and exit\n"
        "\t    --dump-modversions      Same as --show-modversions\n"
        "\n"
        "General Options:\n"
        "\t-n, --dry-run               Do not execute operations, just print out\n"
        "\t-n, --show                  Same as --dry-run\n"
        "\t-C, --config=FILE           Use FILE instead of default search paths\n"
        "\t-d, --dirname=DIR           Use DIR as filesystem root for /lib/modules\n"
        "\t-S, --set-version=VERSION   Use VERSION instead of `uname -r`\n"
        "\t-s, --syslog                print to syslog, not stderr\n"
        "\t-q, --quiet                 disable messages\n"
        "\t-v, --verbose               enables more messages\n"
        "\t-V, --version               show version\n"
        "\t-h, --help                  show this help\n"
    )


def module_dirname(
    root: str | None, kversion: str | None, release: str | None = None
) -> str | None:
    """Return the module directory, or None when neither root nor version is set.

    Without a version the running kernel's release is used.
    """
    if root is None and kversion is None:
        return None
    if kversion is None:
        kversion = release if release is not None else os.uname().release
    return f"{root or ''}/lib/modules/{kversion}"


def format_modversions(versions: Iterable[tuple[str, int]]) -> str:
    """Format (symbol, crc) pairs as the symbol version dump prints them."""
    return "".join(f"0x{crc:08x}\t{symbol}\n" for symbol, crc in versions)


def format_config(
    sections: Mapping[str, Iterable[tuple[str, str | None]]]
    | Iterable[tuple[str, Iterable[tuple[str, str | None]]]],
) -> str:
    """Format configuration entries grouped by section name.

    Each entry is a (key, value) pair; a value of None prints the key alone.
    """
    items = sections.items() if isinstance(sections, Mapping) else sections
    lines: list[str] = []
    for name, entries in items:
        for key, value in entries:
            if value is None:
                lines.append(f"{name} {key}\n")
            else:
                lines.append(f"{name} {key} {value}\n")
    lines.append("\n# End of configuration files. Dumping indexes now:\n\n")
    return "".join(lines)