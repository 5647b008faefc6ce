import io
import os

import pytest

from kmodtools.config import DepmodConfig
from kmodtools.depmod import (
    Depmod,
    ModuleData,
    depfile_up_to_date,
    has_module_extension,
    is_version_number,
    modname_from_path,
)
from kmodtools.report import Reporter


def make_tree(tmp_path, files):
    root = tmp_path / "lib" / "modules" / "1.0"
    root.mkdir(parents=True)
    for rel in files:
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"")
    return root


def make_loader(specs, failing=()):
    def loader(path):
        name = modname_from_path(path)
        if name in failing:
            raise OSError(f"cannot read {path}")
        symbols, needs = specs.get(name, ([], []))
        return ModuleData(name, path, list(symbols), list(needs))

    return loader


def make_depmod(root, specs=None, failing=(), **cfg):
    stream = io.StringIO()
    reporter = Reporter(stream=stream)
    config = DepmodConfig(kversion="1.0", dirname=str(root), reporter=reporter, **cfg)
    return Depmod(config, make_loader(specs or {}, failing), reporter), stream


def run(depmod):
    depmod.config.load([])
    depmod.search_modules()
    depmod.build_array()
    depmod.sort_modules()
    depmod.load()
    return depmod


def test_modname_from_path():
    assert modname_from_path("/lib/modules/x/kernel/foo-bar.ko") == "foo_bar"
    assert modname_from_path("kernel/foo.ko.gz") == "foo"


def test_has_module_extension():
    assert has_module_extension("a.ko")
    assert has_module_extension("a.ko.xz")
    assert not has_module_extension(".ko")
    assert not has_module_extension("a.txt")


def test_is_version_number():
    assert is_version_number("3.5.0-rc1")
    assert not is_version_number("foo")
    assert not is_version_number("3")


def test_add_module_relpath_and_compressed_path(tmp_path):
    root = make_tree(tmp_path, [])
    depmod, _ = make_depmod(root)
    inside = depmod.add_module(ModuleData("a", f"{root}/kernel/a.ko"))
    outside = depmod.add_module(ModuleData("b", "/elsewhere/b.ko"))
    assert inside.compressed_path() == "kernel/a.ko"
    assert outside.compressed_path() == "/elsewhere/b.ko"
    assert depmod.by_relpath == {"kernel/a.ko": inside}


def test_add_module_duplicate_name(tmp_path):
    root = make_tree(tmp_path, [])
    depmod, _ = make_depmod(root)
    depmod.add_module(ModuleData("a", f"{root}/kernel/a.ko"))
    with pytest.raises(FileExistsError):
        depmod.add_module(ModuleData("a", f"{root}/extra/a.ko"))


def test_is_higher_priority_outside_dir(tmp_path):
    root = make_tree(tmp_path, [])
    depmod, _ = make_depmod(root)
    mod = depmod.add_module(ModuleData("a", "/elsewhere/a.ko"))
    with pytest.raises(ValueError):
        depmod.is_higher_priority(mod, f"{root}/kernel/a.ko")


def test_updates_wins_by_default(tmp_path):
    root = make_tree(tmp_path, ["kernel/foo.ko", "updates/foo.ko"])
    depmod, _ = make_depmod(root)
    depmod.config.load([])
    depmod.search_modules()
    assert depmod.by_name["foo"].relpath == "updates/foo.ko"
    assert list(depmod.by_relpath) == ["updates/foo.ko"]


def test_override_wins(tmp_path):
    root = make_tree(tmp_path, ["kernel/foo.ko", "updates/foo.ko"])
    depmod, _ = make_depmod(root)
    depmod.config.add_override("foo", "kernel")
    depmod.config.load([])
    depmod.search_modules()
    assert depmod.by_name["foo"].relpath == "kernel/foo.ko"


def test_search_skips_build_and_non_modules(tmp_path):
    root = make_tree(
        tmp_path, ["build/skip.ko", "source/skip2.ko", "kernel/ok.ko", "kernel/readme.txt"]
    )
    depmod, _ = make_depmod(root)
    depmod.config.load([])
    depmod.search_modules()
    assert set(depmod.by_name) == {"ok"}


def test_search_continues_after_loader_failure(tmp_path):
    root = make_tree(tmp_path, ["kernel/bad.ko", "kernel/good.ko"])
    depmod, stream = make_depmod(root, failing=("bad",))
    depmod.config.load([])
    depmod.search_modules()
    assert set(depmod.by_name) == {"good"}
    assert "failed" in stream.getvalue()


def test_search_missing_dir(tmp_path):
    depmod, _ = make_depmod(tmp_path / "missing")
    with pytest.raises(FileNotFoundError):
        depmod.search_modules()


CHAIN = {
    "a": ([("sym_a", 1)], []),
    "b": ([("sym_b", 2)], [("sym_a", 1, "U")]),
    "c": ([], [("sym_b", 2, "U")]),
}


def test_dependency_chain(tmp_path):
    root = make_tree(tmp_path, ["kernel/a.ko", "kernel/b.ko", "kernel/c.ko"])
    depmod, _ = make_depmod(root, CHAIN)
    run(depmod)
    a, b, c = (depmod.by_name[n] for n in "abc")
    assert b.deps == [a]
    assert c.deps == [b]
    assert a.users == 1 and b.users == 1 and c.users == 0
    deps = c.all_sorted_dependencies()
    assert deps == [b, a]
    for mod in depmod.modules:
        for dep in mod.deps:
            assert dep.dep_sort_idx > mod.dep_sort_idx
    assert depmod.dep_loops == 0


def test_dependency_cycle(tmp_path):
    specs = {
        "a": ([("sym_a", 0)], [("sym_b", 0, "U")]),
        "b": ([("sym_b", 0)], [("sym_a", 0, "U")]),
        "c": ([], []),
    }
    root = make_tree(tmp_path, ["kernel/a.ko", "kernel/b.ko", "kernel/c.ko"])
    depmod, stream = make_depmod(root, specs)
    run(depmod)
    assert depmod.dep_loops == 2
    assert depmod.by_name["a"].dep_loop and depmod.by_name["b"].dep_loop
    assert not depmod.by_name["c"].dep_loop
    assert "dependency cycle" in stream.getvalue()


def test_sort_modules_by_order_file(tmp_path):
    root = make_tree(tmp_path, ["kernel/a.ko", "kernel/b.ko"])
    (root / "modules.order").write_text("kernel/b.ko\nkernel/a.ko\n")
    depmod, _ = make_depmod(root)
    depmod.config.load([])
    depmod.search_modules()
    depmod.build_array()
    depmod.sort_modules()
    assert [m.modname for m in depmod.modules] == ["b", "a"]
    assert [m.idx for m in depmod.modules] == list(range(len(depmod.modules)))


def test_sort_modules_corrupted_order_file(tmp_path):
    root = make_tree(tmp_path, ["kernel/a.ko", "kernel/b.ko"])
    (root / "modules.order").write_text("kernel/b.ko\nkernel/a.ko")
    depmod, stream = make_depmod(root)
    depmod.config.load([])
    depmod.search_modules()
    before = [m.modname for m in depmod.build_array()]
    depmod.sort_modules()
    assert [m.modname for m in depmod.modules] == before
    assert "corrupted line" in stream.getvalue()


def test_unknown_symbol_warning(tmp_path):
    specs = {"c": ([], [("nosuch", 0, "U"), ("weaksym", 0, "W")])}
    root = make_tree(tmp_path, ["kernel/c.ko"])
    depmod, stream = make_depmod(root, specs, print_unknown=True)
    run(depmod)
    out = stream.getvalue()
    assert "needs unknown symbol nosuch" in out
    assert "weaksym" not in out


def test_symbol_version_mismatch(tmp_path):
    specs = {
        "a": ([("sym_a", 1)], []),
        "b": ([], [("sym_a", 99, "U")]),
    }
    root = make_tree(tmp_path, ["kernel/a.ko", "kernel/b.ko"])
    depmod, stream = make_depmod(root, specs, print_unknown=True, check_symvers=True)
    run(depmod)
    assert "disagrees about version of symbol sym_a" in stream.getvalue()
    assert depmod.by_name["b"].deps == [depmod.by_name["a"]]


def test_depfile_up_to_date(tmp_path):
    root = make_tree(tmp_path, ["kernel/a.ko"])
    (root / "modules.dep").write_text("")
    os.utime(root / "modules.dep", (2000, 2000))
    os.utime(root / "kernel" / "a.ko", (1000, 1000))
    reporter = Reporter(stream=io.StringIO())
    assert depfile_up_to_date(str(root), reporter) is True
    os.utime(root / "kernel" / "a.ko", (3000, 3000))
    assert depfile_up_to_date(str(root), reporter) is False


def test_depfile_up_to_date_missing_dep(tmp_path):
    root = make_tree(tmp_path, ["kernel/a.ko"])
    with pytest.raises(OSError):
        depfile_up_to_date(str(root), Reporter(stream=io.StringIO()))