"""Writing the module index files: dependencies, aliases, symbols and more."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Iterator
from typing import BinaryIO, TextIO

from .config import underscores
from .depmod import Depmod, Mod
from .index import IndexCharacterError, IndexNode

_CHAR_MAJOR = re.compile(r"char-major-(\d+)-(\d+)")
_BLOCK_MAJOR = re.compile(r"block-major-(\d+)-(\d+)")
_DEVNAME = "devname:"
_SYMBOL = "symbol:"


def _insert(depmod: Depmod, index: IndexNode, key: str, value: str, prio: int) -> bool:
    try:
        return index.insert(key, value, prio)
    except IndexCharacterError as exc:
        depmod.reporter.critical(f"{exc}\n")
        raise


def _info(mod: Mod, wanted: str) -> Iterator[str]:
    for key, value in mod.module.info:
        if key == wanted:
            yield value


def _dependency_line(depmod: Depmod, mod: Mod) -> str:
    p = mod.compressed_path()
    parts = [f"{p}:"]
    for dep in mod.all_sorted_dependencies():
        if dep.dep_loop:
            depmod.reporter.debug(
                f"Ignored {dep.compressed_path()} (dependency of {p}) "
                "due dependency loops\n"
            )
            continue
        parts.append(f" {dep.compressed_path()}")
    return "".join(parts)


def output_deps(depmod: Depmod, out: TextIO) -> None:
    """Write modules.dep: each module followed by all its dependencies."""
    for mod in depmod.modules:
        if mod.dep_loop:
            depmod.reporter.debug(
                f"Ignored {mod.compressed_path()} due dependency loops\n"
            )
            continue
        out.write(_dependency_line(depmod, mod) + "\n")


def output_deps_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.dep.bin, keyed by module name."""
    index = IndexNode()
    for mod in depmod.modules:
        if mod.dep_loop:
            depmod.reporter.debug(
                f"Ignored {mod.compressed_path()} due dependency loops\n"
            )
            continue
        line = _dependency_line(depmod, mod)
        duplicate = _insert(depmod, index, mod.modname, line, mod.idx)
        if duplicate and depmod.config.warn_dups:
            depmod.reporter.warning(f"duplicate module deps:\n{line}\n")
    index.write(out)


def output_aliases(depmod: Depmod, out: TextIO) -> None:
    """Write modules.alias from the aliases the modules declare."""
    out.write("# Aliases extracted from modules themselves.\n")
    for mod in depmod.modules:
        for value in _info(mod, "alias"):
            out.write(f"alias {value} {mod.modname}\n")


def output_aliases_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.alias.bin; dashes in aliases become underscores."""
    index = IndexNode()
    for mod in depmod.modules:
        for value in _info(mod, "alias"):
            try:
                alias = underscores(value)
            except ValueError as exc:
                depmod.reporter.warning(f"{exc}\n")
                continue
            duplicate = _insert(depmod, index, alias, mod.modname, mod.idx)
            if duplicate and depmod.config.warn_dups:
                depmod.reporter.warning(
                    f"duplicate module alias:\n{alias} {mod.modname}\n"
                )
    index.write(out)


def output_softdeps(depmod: Depmod, out: TextIO) -> None:
    """Write modules.softdep from the soft dependencies the modules declare."""
    out.write("# Soft dependencies extracted from modules themselves.\n")
    out.write(
        "# Copy, with a .conf extension, to /etc/modprobe.d to use "
        "it with modprobe.\n"
    )
    for mod in depmod.modules:
        for value in _info(mod, "softdep"):
            out.write(f"softdep {mod.modname} {value}\n")


def output_symbols(depmod: Depmod, out: TextIO) -> None:
    """Write modules.symbols: aliases naming the module exporting each symbol."""
    out.write("# Aliases for symbols, used by symbol_request().\n")
    for sym in depmod.symbols:
        if sym.owner is None:
            continue
        out.write(f"alias {_SYMBOL}{sym.name} {sym.owner.modname}\n")


def output_symbols_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.symbols.bin, keyed by "symbol:" and the symbol name."""
    index = IndexNode()
    for sym in depmod.symbols:
        if sym.owner is None:
            continue
        alias = _SYMBOL + sym.name
        duplicate = _insert(depmod, index, alias, sym.owner.modname, sym.owner.idx)
        if duplicate and depmod.config.warn_dups:
            depmod.reporter.warning(
                f"duplicate module syms:\n{alias} {sym.owner.modname}\n"
            )
    index.write(out)


def _builtin_name(line: str) -> str:
    base = line.rstrip("\n").rsplit("/", 1)[-1]
    return base.split(".", 1)[0].replace("-", "_")


def output_builtin_bin(depmod: Depmod, out: BinaryIO) -> None:
    """Write modules.builtin.bin from modules.builtin.

    Raises OSError when modules.builtin cannot be opened.
    """
    infile = f"{depmod.config.dirname}/modules.builtin"
    try:
        fp = open(infile, encoding="utf-8", errors="replace", newline="")
    except OSError as exc:
        depmod.reporter.warning(f"could not open {infile}: {exc.strerror}\n")
        raise

    index = IndexNode()
    with fp:
        for line in fp:
            first = line[:1]
            if not (first.isascii() and first.isalpha()):
                depmod.reporter.error(f"Invalid modules.builtin line: {line}\n")
                continue
            _insert(depmod, index, _builtin_name(line), "", 0)
    index.write(out)


def output_devname(depmod: Depmod, out: TextIO) -> None:
    """Write modules.devname: device nodes that trigger module loading."""
    out.write("# Device nodes to trigger on-demand module loading.\n")
    for mod in depmod.modules:
        devname: str | None = None
        kind = ""
        major = minor = 0
        for value in _info(mod, "alias"):
            if value.startswith(_DEVNAME):
                devname = value[len(_DEVNAME):]
            else:
                match = _CHAR_MAJOR.match(value)
                if match:
                    kind = "c"
                else:
                    match = _BLOCK_MAJOR.match(value)
                    if match:
                        kind = "b"
                if match:
                    major, minor = int(match.group(1)), int(match.group(2))

            if kind and devname is not None:
                out.write(f"{mod.modname} {devname} {kind}{major}:{minor}\n")
                break


_OutputFn = Callable[[Depmod, object], None]

_DEPFILES: tuple[tuple[str, _OutputFn, bool], ...] = (
    ("modules.dep", output_deps, False),
    ("modules.dep.bin", output_deps_bin, True),
    ("modules.alias", output_aliases, False),
    ("modules.alias.bin", output_aliases_bin, True),
    ("modules.softdep", output_softdeps, False),
    ("modules.symbols", output_symbols, False),
    ("modules.symbols.bin", output_symbols_bin, True),
    ("modules.builtin.bin", output_builtin_bin, True),
    ("modules.devname", output_devname, False),
)


def _opener(path: str, flags: int) -> int:
    return os.open(path, flags, 0o644)


def write_outputs(depmod: Depmod, stream: TextIO | None = None) -> None:
    """Write every index file into the module directory.

    With a stream, only the text files are written, one after another, to
    that stream. Otherwise each file is written to a temporary name and
    renamed into place; a file whose writer fails is left out.
    """
    if stream is not None:
        for _name, func, binary in _DEPFILES:
            if not binary:
                func(depmod, stream)
        return

    dname = depmod.config.dirname
    reporter = depmod.reporter
    try:
        os.listdir(dname)
    except OSError as exc:
        reporter.critical(f"could not open directory {dname}: {exc.strerror}\n")
        raise

    for name, func, binary in _DEPFILES:
        final = os.path.join(dname, name)
        tmp = os.path.join(dname, f"{name}.tmp")
        try:
            if binary:
                fp = open(tmp, "wb", opener=_opener)
            else:
                fp = open(tmp, "w", encoding="utf-8", newline="", opener=_opener)
        except OSError as exc:
            reporter.error(f"open({dname}, {name}.tmp): {exc.strerror}\n")
            continue

        try:
            with fp:
                func(depmod, fp)
        except OSError:
            try:
                os.unlink(tmp)
            except OSError as exc:
                reporter.error(f"unlinkat({dname}, {name}.tmp): {exc.strerror}\n")
            continue

        try:
            os.replace(tmp, final)
        except OSError as exc:
            reporter.critical(
                f"renameat({dname}, {name}.tmp, {dname}, {name}): {exc.strerror}\n"
            )
            raise