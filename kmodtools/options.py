"""Module option strings and the MODPROBE_OPTIONS environment variable."""

from __future__ import annotations

from collections.abc import MutableMapping, Mapping, Sequence

CMDLINE_OPTS_VAR = "$CMDLINE_OPTS"
ENV_OPTIONS = "MODPROBE_OPTIONS"
_QUOTES = "\"'"


def substitute_cmdline_opts(command: str, cmdline_opts: str | None) -> str:
    """Replace every $CMDLINE_OPTS in an install/remove command."""
    return command.replace(CMDLINE_OPTS_VAR, cmdline_opts or "")


def concat_options(conf_opts: str | None, extra_opts: str | None) -> str | None:
    """Join configured options and extra options with a space."""
    if conf_opts is None:
        return extra_opts
    if extra_opts is None:
        return conf_opts
    return f"{conf_opts} {extra_opts}"


def _quote_option(arg: str) -> str:
    key, sep, value = arg.partition("=")
    if sep and value[:1] not in _QUOTES and " " in value:
        return f'{key}="{value}"'
    return arg


def options_from_array(args: Sequence[str]) -> str | None:
    """Build an option string from the arguments after the module name.

    Values holding spaces are wrapped in double quotes unless already quoted.
    Returns None when there are no options.
    """
    opts = [_quote_option(arg) for arg in args[1:]]
    return " ".join(opts) if opts else None


def split_env_options(env: str) -> list[str]:
    """Split a MODPROBE_OPTIONS value into arguments.

    Every space outside quotes ends an argument, so consecutive spaces give
    empty arguments. A quoted argument loses its quotes; quotes in the middle
    of an argument are dropped while the text between them is kept.
    """
    tokens: list[str] = []
    current: list[str] = []
    quote: str | None = None
    quote_index = 0

    for ch in env:
        if quote is None:
            if ch == " ":
                tokens.append("".join(current))
                current = []
            else:
                if ch in _QUOTES:
                    quote = ch
                    quote_index = len(current)
                current.append(ch)
        elif ch == quote:
            if quote_index == 0:
                tokens.append("".join(current[1:]))
                current = []
            else:
                del current[quote_index]
            quote = None
        else:
            current.append(ch)

    if current:
        tokens.append("".join(current))
    return tokens


def prepend_options_from_env(
    argv: Sequence[str], environ: Mapping[str, str]
) -> list[str]:
    """Insert the arguments from MODPROBE_OPTIONS right after argv[0]."""
    env = environ.get(ENV_OPTIONS)
    if env is None:
        return list(argv)
    return [argv[0], *split_env_options(env), *argv[1:]]


def append_env_option(environ: MutableMapping[str, str], value: str) -> str:
    """Append a value to MODPROBE_OPTIONS and return the new setting."""
    old = environ.get(ENV_OPTIONS)
    new = value if old is None else f"{old} {value}"
    environ[ENV_OPTIONS] = new
    return new