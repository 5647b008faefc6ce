# kmodtools

A Python library for working with Linux kernel module trees
(`lib/modules/<version>`):

- generating the dependency and index files that a module loader reads
  (`modules.dep`, `modules.alias`, `modules.symbols`, `modules.softdep`,
  `modules.devname` and the binary `modules.*.bin` tries);
- formatting a module's information entries the way `modinfo` shows them;
- parsing modprobe-style command lines, building module option strings,
  handling `MODPROBE_OPTIONS` and running install/remove commands.

It has no dependencies outside the standard library and supports Python
3.10 and later.

## Modules

| Module | Contents |
| --- | --- |
| `kmodtools.report` | `Priority`, `Reporter`, `FatalError`, `priority_name` |
| `kmodtools.options` | `concat_options`, `options_from_array`, `substitute_cmdline_opts`, `split_env_options`, `prepend_options_from_env`, `append_env_option` |
| `kmodtools.index` | `IndexNode` (binary trie index), `check_string`, `IndexCharacterError` |
| `kmodtools.commands` | `run_command`, `has_recursion_loop`, `CommandError` |
| `kmodtools.config` | `DepmodConfig` (`search` / `override` configuration), `Search`, `Override`, `list_config_files`, `underscores` |
| `kmodtools.modprobe_args` | `parse_args`, `ModprobeSettings`, `UsageError`, `usage`, `module_dirname`, `format_modversions`, `format_config` |
| `kmodtools.symbols` | `SymbolTable`, `Symbol`; loading `Module.symvers` and `System.map` |
| `kmodtools.modinfo` | `format_module_info`, `format_params`, `collect_params`, `ParamInfo` |
| `kmodtools.depmod` | `Depmod`, `Mod`, `ModuleData`, `modname_from_path`, `has_module_extension`, `is_version_number`, `depfile_up_to_date` |
| `kmodtools.depmod_output` | `write_outputs` and one `output_*` function per generated file |

## Generating the index files

`Depmod` does not read module files itself. You give it a *loader*: a
callable that takes a module path and returns a `ModuleData` with the
module's name, path, exported symbols `(name, crc)`, required symbols
`(name, crc, bind)` (bind `"W"` marks a weak symbol) and information
entries `(key, value)`.

```python
from kmodtools.config import DepmodConfig
from kmodtools.depmod import Depmod, ModuleData, modname_from_path
from kmodtools.depmod_output import write_outputs

def loader(path):
    # Fill in from your own reader of module files.
    return ModuleData(name=modname_from_path(path), path=path)

config = DepmodConfig(kversion="6.1.0", dirname="/lib/modules/6.1.0")
config.load()              # reads depmod.d directories; adds "updates" if no search
depmod = Depmod(config, loader)
depmod.search_modules()    # finds .ko, .ko.gz and .ko.xz files
depmod.build_array()
depmod.sort_modules()      # follows modules.order when present
depmod.load()              # resolves symbols, orders dependencies
write_outputs(depmod)      # writes each file via a .tmp name, then renames
```

`write_outputs(depmod, stream)` writes only the text files to the given
stream instead. Symbols provided by the kernel image can be loaded first
with `depmod.symbols.load_symvers(...)` or
`depmod.symbols.load_system_map(...)`. `depfile_up_to_date(dirname)` tells
whether `modules.dep` is newer than every module file.

Modules caught in a dependency cycle are reported and left out of the
dependency files.

## Binary index

```python
from kmodtools.index import IndexNode

root = IndexNode()
root.insert("snd_hda_intel", "kernel/sound/snd-hda-intel.ko:", 0)
root.insert("snd_pcm", "kernel/sound/snd-pcm.ko:", 1)
with open("modules.dep.bin", "wb") as out:
    root.write(out)
```

`insert` returns `True` when the same value was already stored under the
key. Keys and values are limited to 7-bit ASCII; anything else raises
`IndexCharacterError`.

## modinfo formatting

```python
from kmodtools.modinfo import format_module_info

info = [("license", "GPL"), ("parm", "debug:Enable debugging"), ("parmtype", "debug:int")]
print(format_module_info("/lib/modules/6.1.0/kernel/foo.ko", info), end="")
# filename:       /lib/modules/6.1.0/kernel/foo.ko
# license:        GPL
# parm:           debug:Enable debugging (int)
```

Pass `field=` to print a single field's values, and `separator="\0"` for
NUL-separated `key=value` output.

## modprobe helpers

```python
from kmodtools.options import concat_options, options_from_array, substitute_cmdline_opts
from kmodtools.modprobe_args import parse_args, format_modversions

concat_options("debug=1", "mode=fast")            # "debug=1 mode=fast"
options_from_array(["snd", "name=a b"])           # 'name="a b"'
substitute_cmdline_opts("/sbin/loader $CMDLINE_OPTS", "debug=1")
settings = parse_args(["-v", "--first-time", "snd"])
format_modversions([("printk", 0x1234)])          # "0x00001234\tprintk\n"
```

`parse_args` raises `UsageError` for unknown options or when no module is
named (unless `-c` is given). `run_command` runs an install or remove
command through the shell with `MODPROBE_MODULE` set, and raises
`CommandError` when it fails.

## Diagnostics

A `Reporter` writes `PRIORITY: message` to stderr (or a given stream) for
messages whose priority is no less urgent than its verbosity level, and
raises `FatalError` after a critical one. `show` prints progress messages
only when the verbosity is above the default.

## What this package does not do

- It provides no command-line programs; everything is used as a library.
- It does not read module (ELF) files: the symbols and information entries
  of each module come from the loader you supply.
- It does not insert modules into or remove them from the running kernel,
  list loaded modules, or resolve aliases and blacklists; the modprobe
  helpers cover argument parsing, option strings and command execution only.
- It writes the binary indexes but does not read or search them.