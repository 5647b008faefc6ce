"""Kernel module tree tooling: dependency index generation, modinfo formatting
and modprobe option handling."""

__version__ = "0.1.0"

__all__ = [
    "commands",
    "config",
    "depmod",
    "depmod_output",
    "index",
    "modinfo",
    "modprobe_args",
    "options",
    "report",
    "symbols",
]