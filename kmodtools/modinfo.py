"""Formatting of module information for display."""

from __future__ import annotations

import sys
from collections.abc import Iterable
from dataclasses import dataclass

_PARAM_KEYS = ("parm", "parmtype")


@dataclass
class ParamInfo:
    """A module parameter with its description and type, either may be missing."""

    name: str
    param: str | None = None
    type: str | None = None


def collect_params(info: Iterable[tuple[str, str]]) -> list[ParamInfo]:
    """Gather parm and parmtype entries into parameters.

    The result lists the most recently introduced parameter first. Entries
    without a ':' are reported on stderr and skipped.
    """
    params: dict[str, ParamInfo] = {}
    for key, value in info:
        if key not in _PARAM_KEYS:
            continue
        name, colon, rest = value.partition(":")
        if not colon:
            sys.stderr.write(f'ERROR: Found invalid "{key}={value}": missing \':\'\n')
            continue
        entry = params.setdefault(name, ParamInfo(name))
        if key == "parm":
            entry.param = rest
        else:
            entry.type = rest
    return list(reversed(params.values()))


def format_params(info: Iterable[tuple[str, str]], separator: str = "\n") -> str:
    """Format only the parameters, as printed when the parm field is asked for."""
    out: list[str] = []
    for p in collect_params(info):
        if p.param is None:
            out.append(f"{p.name}: ({p.type}){separator}")
        elif p.type is not None:
            out.append(f"{p.name}:{p.param} ({p.type}){separator}")
        else:
            out.append(f"{p.name}:{p.param}{separator}")
    return "".join(out)


def format_module_info(
    path: str,
    info: Iterable[tuple[str, str]],
    field: str | None = None,
    separator: str = "\n",
) -> str:
    """Format a module's information, or only one field of it."""
    if field == "filename":
        return f"{path}{separator}"
    if field == "parm":
        return format_params(info, separator)

    out: list[str] = []
    if field is None:
        out.append(f"{'filename:':<16}{path}{separator}")

    param_entries: list[tuple[str, str]] = []
    for key, value in info:
        if field is not None:
            if key == field:
                out.append(f"{value}{separator}")
            continue
        if key in _PARAM_KEYS:
            param_entries.append((key, value))
            continue
        if separator == "\0":
            out.append(f"{key}={value}{separator}")
            continue
        pad = " " * abs(15 - len(key))
        out.append(f"{key}:{pad}{value}{separator}")

    if field is not None:
        return "".join(out)

    label = f"{'parm:':<16}"
    for p in collect_params(param_entries):
        if p.param is None:
            out.append(f"{label}{p.name}:{p.type}{separator}")
        elif p.type is not None:
            out.append(f"{label}{p.name}:{p.param} ({p.type}){separator}")
        else:
            out.append(f"{label}{p.name}:{p.param}{separator}")
    return "".join(out)