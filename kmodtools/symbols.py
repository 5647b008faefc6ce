"""Exported kernel symbols and the modules that provide them."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .report import Reporter

KSYMTAB_PREFIX = "__ksymtab_"
_VERSION = re.compile(r"(0[xX])?[0-9a-fA-F]+")
_SYMVERS_SEPARATORS = re.compile(r"[ \t]+")


@dataclass
class Symbol:
    """A symbol with its version checksum and the module exporting it.

    An owner of None means the symbol comes from the kernel image itself.
    """

    name: str
    crc: int = 0
    owner: Any = None


def _owner_path(owner: Any) -> str:
    return getattr(owner, "path", "") if owner is not None else ""


class SymbolTable:
    """Symbols by name; adding a name again replaces the earlier entry."""

    def __init__(self, prefix: str = "", reporter: Reporter | None = None) -> None:
        self.prefix = prefix
        self.reporter = reporter or Reporter()
        self._symbols: dict[str, Symbol] = {}

    def __len__(self) -> int:
        return len(self._symbols)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self._symbols.values())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.find(name) is not None

    def _strip_prefix(self, name: str) -> str:
        if self.prefix and name.startswith(self.prefix):
            return name[len(self.prefix):]
        return name

    def add(self, name: str, crc: int = 0, owner: Any = None) -> Symbol:
        """Record a symbol, dropping the architecture prefix from its name."""
        name = self._strip_prefix(name)
        symbol = Symbol(name, crc, owner)
        self._symbols[name] = symbol
        self.reporter.debug(f"add sym={name}, owner={_owner_path(owner)}\n")
        return symbol

    def find(self, name: str) -> Symbol | None:
        """Look a symbol up; a leading dot and the prefix are ignored."""
        if name.startswith("."):
            name = name[1:]
        name = self._strip_prefix(name)
        return self._symbols.get(name)

    def add_fake_symbols(self) -> None:
        """Add the symbols the kernel loader provides by itself."""
        self.add("__this_module", 0, None)
        self.add("_GLOBAL_OFFSET_TABLE_", 0, None)

    def load_symvers(self, filename: str) -> None:
        """Load the kernel image's symbols from a Module.symvers file.

        Lines look like "0xb352177e\\tfind_first_bit\\tvmlinux\\tEXPORT_SYMBOL";
        only symbols whose third field is vmlinux are taken. Raises OSError
        when the file cannot be opened.
        """
        with open(filename, encoding="utf-8", errors="replace", newline="") as fp:
            self.reporter.debug(f"load symvers: {filename}\n")
            for linenum, line in enumerate(fp, start=1):
                fields = [f for f in _SYMVERS_SEPARATORS.split(line) if f]
                if len(fields) < 3:
                    continue
                ver, sym, where = fields[:3]
                if where != "vmlinux":
                    continue
                if not _VERSION.fullmatch(ver):
                    self.reporter.error(
                        f"{filename}:{linenum} Invalid symbol version {ver}\n"
                    )
                    continue
                self.add(sym, int(ver, 16), None)
        self.add_fake_symbols()
        self.reporter.debug(f"loaded symvers: {filename}\n")

    def load_system_map(self, filename: str) -> None:
        """Load exported symbols from a System.map file.

        Lines look like "c0294200 R __ksymtab_devfs_alloc_devnum". Raises
        OSError when the file cannot be opened.
        """
        with open(filename, encoding="utf-8", errors="replace", newline="") as fp:
            self.reporter.debug(f"load System.map: {filename}\n")
            for linenum, line in enumerate(fp, start=1):
                first = line.find(" ")
                second = line.find(" ", first + 1) if first >= 0 else -1
                if second < 0:
                    self.reporter.error(
                        f"{filename}:{linenum}: invalid line: {line}\n"
                    )
                    continue
                rest = line[second + 1:]
                if not rest.startswith(KSYMTAB_PREFIX):
                    continue
                rest = rest.split("\n", 1)[0]
                self.add(rest[len(KSYMTAB_PREFIX):], 0, None)
        self.add_fake_symbols()
        self.reporter.debug(f"loaded System.map: {filename}\n")