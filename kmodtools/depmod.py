"""Module discovery, symbol resolution and dependency ordering."""

from __future__ import annotations

import errno
import os
import re
import stat
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from .config import DepmodConfig
from .report import Reporter
from .symbols import Symbol, SymbolTable

INT32_MAX = 2**31 - 1
MAX_MODULES = 0xFFFF
KMOD_EXTENSIONS = (".ko", ".ko.gz", ".ko.xz")
SYMBOL_WEAK = "W"
_SKIPPED_DIRS = ("build", "source")
_VERSION_NUMBER = re.compile(r"\s*[+-]?\d+\.\s*[+-]?\d+")


def modname_from_path(path: str) -> str:
    """Derive a module name from a file path: basename up to the first dot,
    with dashes turned into underscores."""
    base = path.rsplit("/", 1)[-1]
    name = base.split(".", 1)[0].replace("-", "_")
    if not name:
        raise ValueError(f"could not get modname from path {path}")
    return name


def has_module_extension(name: str) -> bool:
    """Tell whether a file name ends in a module extension after a non-empty stem."""
    return any(len(name) > len(ext) and name.endswith(ext) for ext in KMOD_EXTENSIONS)


def is_version_number(version: str) -> bool:
    """Tell whether text starts like a kernel version: two numbers and a dot."""
    return _VERSION_NUMBER.match(version) is not None


def _scan(path: str) -> list[os.DirEntry]:
    with os.scandir(path) as it:
        return sorted(it, key=lambda entry: entry.name)


def _dir_up_to_date(path: str, mtime: int, reporter: Reporter) -> bool:
    for entry in _scan(path):
        name = entry.name
        if name in _SKIPPED_DIRS:
            continue
        full = f"{path}/{name}"
        try:
            st = os.stat(full)
        except OSError as exc:
            reporter.error(f"fstatat({path}, {name}): {exc.strerror}\n")
            continue

        if stat.S_ISDIR(st.st_mode):
            try:
                fresh = _dir_up_to_date(full, mtime, reporter)
            except OSError as exc:
                reporter.error(f"openat({path}, {name}, O_RDONLY): {exc.strerror}\n")
                continue
            if not fresh:
                return False
        elif stat.S_ISREG(st.st_mode):
            if not has_module_extension(name):
                continue
            if int(st.st_mtime) > mtime:
                reporter.debug(f"{full} {int(st.st_mtime)} is newer than {mtime}\n")
                return False
        else:
            reporter.error(
                f"unsupported file type {full}: {stat.S_IFMT(st.st_mode):o}\n"
            )
    return True


def depfile_up_to_date(dirname: str, reporter: Reporter | None = None) -> bool:
    """Tell whether modules.dep is newer than every module file below dirname.

    Raises OSError when the directory or modules.dep cannot be read.
    """
    reporter = reporter or Reporter()
    try:
        os.listdir(dirname)
    except OSError as exc:
        reporter.error(f"could not open directory {dirname}: {exc.strerror}\n")
        raise
    try:
        mtime = int(os.stat(os.path.join(dirname, "modules.dep")).st_mtime)
    except OSError as exc:
        reporter.error(f"could not fstatat({dirname}, modules.dep): {exc.strerror}\n")
        raise
    return _dir_up_to_date(dirname, mtime, reporter)


@dataclass
class ModuleData:
    """What is known about one module file.

    symbols are exported (name, crc) pairs; dependency_symbols are the
    (name, crc, bind) triples the module needs, bind "W" marking weak ones;
    info holds the (key, value) pairs of the module's information section.
    """

    name: str
    path: str
    symbols: list[tuple[str, int]] = field(default_factory=list)
    dependency_symbols: list[tuple[str, int, str]] = field(default_factory=list)
    info: list[tuple[str, str]] = field(default_factory=list)


def _sort_key(mod: Mod) -> tuple[bool, int]:
    return (mod.dep_loop, mod.sort_idx)


def _dep_key(mod: Mod) -> tuple[bool, int]:
    return (mod.dep_loop, mod.dep_sort_idx)


@dataclass(eq=False)
class Mod:
    """A module taking part in dependency generation."""

    module: ModuleData
    path: str
    modname: str
    relpath: str | None = None
    sort_idx: int = 0
    dep_sort_idx: int = INT32_MAX
    idx: int = 0
    users: int = 0
    dep_loop: bool = False
    deps: list[Mod] = field(default_factory=list)

    @property
    def baselen(self) -> int:
        """Position of the last slash in the path."""
        return self.path.rfind("/")

    def compressed_path(self) -> str:
        """The path relative to the module directory, or the full path."""
        return self.relpath if self.relpath is not None else self.path

    def all_sorted_dependencies(self) -> list[Mod]:
        """Every direct and indirect dependency once, in dependency order."""
        found: list[Mod] = []
        seen: set[int] = set()
        stack: list[Iterator[Mod]] = [iter(self.deps)]
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                continue
            if id(dep) in seen:
                continue
            seen.add(id(dep))
            found.append(dep)
            stack.append(iter(dep.deps))
        return sorted(found, key=_dep_key)


class Depmod:
    """Collects modules, resolves their symbols and orders their dependencies."""

    def __init__(
        self,
        config: DepmodConfig,
        loader: Callable[[str], ModuleData],
        reporter: Reporter | None = None,
    ) -> None:
        self.config = config
        self.loader = loader
        self.reporter = reporter or config.reporter
        self.modules: list[Mod] = []
        self.by_name: dict[str, Mod] = {}
        self.by_relpath: dict[str, Mod] = {}
        self.symbols = SymbolTable(config.sym_prefix, self.reporter)
        self.dep_loops = 0

    def add_module(self, module: ModuleData) -> Mod:
        """Register a module; raises FileExistsError for a duplicate name or path."""
        prefix = self.config.dirname + "/"
        path = module.path
        relpath = path[len(prefix):] if path.startswith(prefix) else None
        mod = Mod(
            module,
            path,
            module.name,
            relpath,
            sort_idx=len(self.modules) + 1,
        )

        if mod.modname in self.by_name:
            self.reporter.error(f"hash_add_unique {mod.modname}: File exists\n")
            raise FileExistsError(errno.EEXIST, "File exists", mod.modname)
        if relpath is not None and relpath in self.by_relpath:
            self.reporter.error(f"hash_add_unique {relpath}: File exists\n")
            raise FileExistsError(errno.EEXIST, "File exists", relpath)

        self.by_name[mod.modname] = mod
        if relpath is not None:
            self.by_relpath[relpath] = mod
        self.reporter.debug(f"add path={path}\n")
        return mod

    def _remove_module(self, mod: Mod) -> None:
        self.reporter.debug(f"del path={mod.path}\n")
        if mod.relpath is not None:
            self.by_relpath.pop(mod.relpath, None)
        self.by_name.pop(mod.modname, None)

    def _priority_key(self, path: str, modname: str) -> str:
        prefix = self.config.dirname + "/"
        if not path.startswith(prefix):
            raise ValueError(f"{path} is not under {self.config.dirname}")
        rel = path[len(prefix):]
        return rel[: rel.rfind("/") + 1 + len(modname)]

    def is_higher_priority(self, mod: Mod, newpath: str) -> bool:
        """Tell whether the registered module wins over the file at newpath."""
        new_key = self._priority_key(newpath, modname_from_path(newpath))
        old_key = self._priority_key(mod.path, mod.modname)
        self.reporter.debug(f"comparing priorities of {old_key} and {new_key}\n")

        for override in self.config.overrides:
            if new_key == override.path:
                return False
            if old_key == override.path:
                return True

        bprio = oldprio = newprio = -1
        for i, search in enumerate(self.config.searches):
            if search.builtin:
                bprio = i
            elif new_key.startswith(search.path):
                newprio = i
            elif old_key.startswith(search.path):
                oldprio = i

        if newprio < 0:
            newprio = bprio
        if oldprio < 0:
            oldprio = bprio
        self.reporter.debug(
            f"priorities: built-in: {bprio}, old: {oldprio}, new: {newprio}\n"
        )
        return newprio <= oldprio

    def search_file(self, path: str) -> Mod | None:
        """Consider one file; returns the module added for it, if any."""
        name = path.rsplit("/", 1)[-1]
        if not has_module_extension(name):
            return None
        modname = modname_from_path(path)
        self.reporter.debug(f"try {path} ({modname})\n")

        old = self.by_name.get(modname)
        if old is not None:
            if self.is_higher_priority(old, path):
                self.reporter.debug(
                    f"Ignored lower priority: {path}, higher: {old.path}\n"
                )
                return None
            self.reporter.debug(
                f"Replace lower priority {old.relpath} with new module {path}\n"
            )
            self._remove_module(old)

        return self.add_module(self.loader(path))

    def _search_dir(self, path: str, entries: list[os.DirEntry]) -> None:
        for entry in entries:
            name = entry.name
            if name in _SKIPPED_DIRS:
                continue
            full = f"{path}/{name}"
            try:
                is_dir = entry.is_dir()
                is_file = entry.is_file()
            except OSError as exc:
                self.reporter.error(f"fstatat({path}, {name}): {exc.strerror}\n")
                continue

            if is_dir:
                try:
                    sub = _scan(full)
                except OSError as exc:
                    self.reporter.error(
                        f"openat({path}, {name}, O_RDONLY): {exc.strerror}\n"
                    )
                    continue
                self._search_dir(full, sub)
            elif is_file:
                try:
                    self.search_file(full)
                except (OSError, ValueError) as exc:
                    self.reporter.error(f"failed {full}: {exc}\n")
            else:
                self.reporter.error(f"unsupported file type {full}\n")

    def search_modules(self) -> None:
        """Find module files below the module directory.

        Raises OSError when the directory cannot be opened.
        """
        root = self.config.dirname
        try:
            entries = _scan(root)
        except OSError as exc:
            self.reporter.error(f"could not open directory {root}: {exc.strerror}\n")
            raise
        self._search_dir(root, entries)

    def build_array(self) -> list[Mod]:
        """Fix the list of modules, numbering them in order."""
        self.modules = []
        for mod in self.by_name.values():
            mod.idx = len(self.modules)
            self.modules.append(mod)
        return self.modules

    def sort_modules(self) -> None:
        """Order modules as listed in modules.order; unlisted ones follow."""
        order_file = f"{self.config.dirname}/modules.order"
        try:
            with open(order_file, encoding="utf-8", errors="replace", newline="") as fp:
                content = fp.read()
        except OSError as exc:
            self.reporter.warning(f"could not open {order_file}: {exc.strerror}\n")
            return

        parts = content.split("\n")
        if parts[-1]:
            self.reporter.error(
                f"{order_file}:{len(parts)} corrupted line misses '\\n'\n"
            )
            return
        lines = parts[:-1]
        total = len(lines) + 1

        for idx, line in enumerate(lines, start=1):
            mod = self.by_relpath.get(line)
            if mod is not None:
                mod.sort_idx = idx - total

        self.modules.sort(key=_sort_key)
        for idx, mod in enumerate(self.modules):
            mod.idx = idx

    def _load_symbols(self) -> None:
        self.reporter.debug(f"load symbols ({len(self.modules)} modules)\n")
        for mod in self.modules:
            for name, crc in mod.module.symbols:
                self.symbols.add(name, crc, mod)
        self.reporter.debug(
            f"loaded symbols ({len(self.modules)} modules, "
            f"{len(self.symbols)} symbols)\n"
        )

    def _add_dependency(self, mod: Mod, sym: Symbol) -> None:
        owner = sym.owner
        self.reporter.debug(
            f"{mod.path} depends on {sym.name} "
            f"{owner.path if owner is not None else '(unknown)'}\n"
        )
        if owner is None or any(dep is owner for dep in mod.deps):
            return
        mod.deps.append(owner)
        owner.users += 1
        self.reporter.show(f'{mod.path} needs "{sym.name}": {owner.path}\n')

    def _load_module_dependencies(self, mod: Mod) -> None:
        cfg = self.config
        self.reporter.debug(f"do dependencies of {mod.path}\n")
        for name, crc, bind in mod.module.dependency_symbols:
            sym = self.symbols.find(name)
            is_weak = bind == SYMBOL_WEAK
            if sym is None:
                self.reporter.debug(f"{mod.path} needs ({bind}) unknown symbol {name}\n")
                if cfg.print_unknown and not is_weak:
                    self.reporter.warning(f"{mod.path} needs unknown symbol {name}\n")
                continue

            if cfg.check_symvers and sym.crc != crc and not is_weak:
                self.reporter.debug(
                    f"symbol {sym.name} ({sym.crc:#x}) module {mod.path} ({crc:#x})\n"
                )
                if cfg.print_unknown:
                    self.reporter.warning(
                        f"{mod.path} disagrees about version of symbol {name}\n"
                    )

            self._add_dependency(mod, sym)

    def _calculate_dependencies(self) -> None:
        n_mods = len(self.modules)
        if n_mods >= MAX_MODULES:
            raise ValueError(f"too many modules: {n_mods}")

        users = [mod.users for mod in self.modules]
        roots = [i for i, count in enumerate(users) if count == 0]
        n_sorted = 0

        while roots:
            src = self.modules[roots.pop()]
            src.dep_sort_idx = n_sorted
            n_sorted += 1
            for dst in src.deps:
                users[dst.idx] -= 1
                if users[dst.idx] == 0:
                    roots.append(dst.idx)

        if n_sorted < n_mods:
            self.reporter.warning(
                f"found {n_mods - n_sorted} modules in dependency cycles!\n"
            )
            for mod, count in zip(self.modules, users):
                if count == 0:
                    continue
                self.reporter.warning(f"{mod.path} in dependency cycle!\n")
                mod.dep_loop = True
                mod.dep_sort_idx = INT32_MAX
                self.dep_loops += 1

        for mod in self.modules:
            if len(mod.deps) > 1:
                mod.deps.sort(key=_dep_key)

        self.reporter.debug(
            f"calculated dependencies and ordering ({self.dep_loops} loops, "
            f"{n_mods} modules)\n"
        )

    def load(self) -> None:
        """Load symbols, resolve dependencies and compute their order."""
        self._load_symbols()
        for mod in self.modules:
            self._load_module_dependencies(mod)
        self._calculate_dependencies()