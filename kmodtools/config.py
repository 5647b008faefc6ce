"""Configuration for module dependency generation: search order and overrides."""

from __future__ import annotations

import os
import re
import stat
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import TextIO

from .report import Reporter

CFG_BUILTIN_KEY = "built-in"
DEFAULT_CFG_PATHS = ("/run/depmod.d", "/etc/depmod.d", "/lib/depmod.d")
_SEPARATORS = re.compile(r"[\t ]+")


def underscores(text: str) -> str:
    """Turn dashes into underscores, leaving bracketed ranges untouched.

    Raises ValueError when a bracket is unmatched.
    """
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "-":
            out.append("_")
        elif ch == "]":
            raise ValueError(f"Unmatched bracket in {text}")
        elif ch == "[":
            end = text.find("]", i)
            if end < 0:
                raise ValueError(f"Unmatched bracket in {text}")
            out.append(text[i:end + 1])
            i = end
        else:
            out.append(ch)
        i += 1
    return "".join(out)


@dataclass
class Search:
    """A directory searched for modules, or the place of the built-in tree."""

    path: str
    builtin: bool = False


@dataclass
class Override:
    """A module forced to come from a given subdirectory (no extension)."""

    path: str


def _is_conf_name(name: str) -> bool:
    return len(name) >= 6 and name.endswith(".conf")


def list_config_files(
    paths: Iterable[str], reporter: Reporter | None = None
) -> list[str]:
    """Collect configuration files from files and directories.

    The result is sorted by file name; a name seen before in an earlier path
    is ignored.
    """
    reporter = reporter or Reporter()
    found: dict[str, str] = {}

    def insert(path: str, name: str) -> None:
        if name in found:
            reporter.debug(f"Ignoring duplicate config file: {path}\n")
            return
        found[name] = path

    for path in paths:
        try:
            st = os.stat(path)
        except OSError as exc:
            reporter.debug(f"could not stat '{path}': {exc.strerror}\n")
            continue

        if stat.S_ISREG(st.st_mode):
            insert(path, os.path.basename(path))
            continue
        if not stat.S_ISDIR(st.st_mode):
            reporter.error(f"unsupported file mode {path}: {st.st_mode:#x}\n")
            continue

        try:
            entries = os.listdir(path)
        except OSError as exc:
            reporter.error(f"files list {path}: {exc.strerror}\n")
            continue

        for name in entries:
            if name.startswith("."):
                continue
            if not _is_conf_name(name):
                reporter.info(f"All cfg files need .conf: {path}/{name}\n")
                continue
            full = os.path.join(path, name)
            if os.path.isdir(full):
                reporter.error(
                    "Directories inside directories are not supported: "
                    f"{path}/{name}\n"
                )
                continue
            insert(full, name)
        reporter.debug(f"parsed configuration files from {path}\n")

    return [found[name] for name in sorted(found)]


def _logical_lines(fp: TextIO) -> Iterator[tuple[int, str]]:
    """Yield (line number, line) with backslash-newline joining lines."""
    chars = iter(fp.read())
    buf: list[str] = []
    linenum = 0
    for ch in chars:
        if ch == "\n":
            linenum += 1
            yield linenum, "".join(buf)
            buf = []
        elif ch == "\\":
            nxt = next(chars, None)
            if nxt is None:
                break
            if nxt == "\n":
                linenum += 1
                continue
            buf.append(nxt)
        else:
            buf.append(ch)
    if buf:
        linenum += 1
        yield linenum, "".join(buf)


@dataclass
class DepmodConfig:
    """Settings for one run of dependency generation."""

    kversion: str = ""
    dirname: str = ""
    sym_prefix: str = ""
    check_symvers: bool = False
    print_unknown: bool = False
    warn_dups: bool = False
    overrides: list[Override] = field(default_factory=list)
    searches: list[Search] = field(default_factory=list)
    reporter: Reporter = field(default_factory=Reporter)

    def add_search(self, path: str, builtin: bool = False) -> Search:
        """Put a search entry at the head of the search list."""
        search = Search("" if builtin else path, builtin)
        self.reporter.debug(f"search add: {path}, builtin={int(builtin)}\n")
        self.searches.insert(0, search)
        return search

    def add_override(self, modname: str, subdir: str) -> Override:
        """Put an override at the head of the override list."""
        override = Override(f"{subdir}/{modname}")
        self.reporter.debug(f"override add: {override.path}\n")
        self.overrides.insert(0, override)
        return override

    def kernel_matches(self, pattern: str) -> bool:
        """Tell whether the kernel version matches an override pattern."""
        if pattern == "*":
            return True
        try:
            return re.search(pattern, self.kversion) is not None
        except re.error:
            return False

    def parse_file(self, filename: str) -> None:
        """Read search and override commands from one configuration file."""
        try:
            fp = open(filename, encoding="utf-8", errors="replace")
        except OSError as exc:
            self.reporter.error(f"file parse {filename}: {exc.strerror}\n")
            raise

        with fp:
            for linenum, line in _logical_lines(fp):
                if not line or line.startswith("#"):
                    continue
                tokens = [t for t in _SEPARATORS.split(line) if t]
                if not tokens:
                    continue
                cmd, args = tokens[0], tokens[1:]

                if cmd == "search":
                    for sp in args:
                        self.add_search(sp, sp == CFG_BUILTIN_KEY)
                elif cmd == "override" and len(args) >= 3:
                    modname, version, subdir = args[:3]
                    if not self.kernel_matches(version):
                        self.reporter.info(
                            f"{filename}:{linenum}: override kernel did not "
                            f"match {version}\n"
                        )
                        continue
                    self.add_override(modname, subdir)
                elif cmd in ("include", "make_map_files"):
                    self.reporter.info(
                        f"{filename}:{linenum}: command {cmd} not implemented yet\n"
                    )
                else:
                    self.reporter.error(
                        f"{filename}:{linenum}: ignoring bad line starting "
                        f"with '{cmd}'\n"
                    )

    def load(self, paths: Iterable[str] | None = None) -> None:
        """Parse every configuration file found under the given paths.

        Without any search command, "updates" becomes the only search entry.
        """
        if paths is None:
            paths = DEFAULT_CFG_PATHS
        for filename in list_config_files(paths, self.reporter):
            try:
                self.parse_file(filename)
            except OSError:
                continue
        if not self.searches:
            self.add_search("updates", False)