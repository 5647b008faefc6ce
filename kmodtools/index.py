"""In-memory radix tree written out as a binary module index."""

from __future__ import annotations

import bisect
import struct
from dataclasses import dataclass, field
from typing import BinaryIO

INDEX_MAGIC = 0xB007F457
INDEX_VERSION_MAJOR = 0x0002
INDEX_VERSION_MINOR = 0x0001
INDEX_VERSION = (INDEX_VERSION_MAJOR << 16) | INDEX_VERSION_MINOR

INDEX_CHILDMAX = 128

INDEX_NODE_FLAGS = 0xF0000000
INDEX_NODE_PREFIX = 0x80000000
INDEX_NODE_VALUES = 0x40000000
INDEX_NODE_CHILDS = 0x20000000
INDEX_NODE_MASK = 0x0FFFFFFF

_U32 = struct.Struct(">I")


class IndexCharacterError(ValueError):
    """Raised when a key or value holds a character outside 7-bit ASCII."""


def check_string(text: str) -> None:
    """Reject strings the index format cannot store."""
    for ch in text:
        if ord(ch) >= INDEX_CHILDMAX:
            raise IndexCharacterError(
                f"Module index: bad character '{ch}'=0x{ord(ch):x} - "
                f"only 7-bit ASCII is supported:\n{text}"
            )


@dataclass
class IndexNode:
    """A node of a path-compressed trie mapping keys to prioritised values.

    The children are keyed by the character on the arc leading to them; the
    rest of that arc's label is the child's prefix.
    """

    prefix: str = ""
    values: list[tuple[int, str]] = field(default_factory=list)
    children: dict[str, IndexNode] = field(default_factory=dict)

    def _add_value(self, value: str, priority: int) -> bool:
        duplicate = any(v == value for _, v in self.values)
        pos = bisect.bisect_left(self.values, priority, key=lambda item: item[0])
        self.values.insert(pos, (priority, value))
        return duplicate

    def insert(self, key: str, value: str, priority: int) -> bool:
        """Add a value under key; return True if that value was already there."""
        check_string(key)
        check_string(value)

        node = self
        i = 0
        while True:
            prefix = node.prefix
            rest = key[i:]
            j = 0
            for a, b in zip(prefix, rest):
                if a != b:
                    break
                j += 1
            if j < len(prefix):
                child = IndexNode(prefix[j + 1:], node.values, node.children)
                node.prefix = prefix[:j]
                node.values = []
                node.children = {prefix[j]: child}
            i += j

            if i == len(key):
                return node._add_value(value, priority)

            ch = key[i]
            child = node.children.get(ch)
            if child is None:
                child = IndexNode(prefix=key[i + 1:])
                child._add_value(value, priority)
                node.children[ch] = child
                return False

            node = child
            i += 1

    def _write_node(self, out: BinaryIO) -> int:
        offsets: list[int] = []
        first = last = 0
        if self.children:
            codes = [ord(ch) for ch in self.children]
            first, last = min(codes), max(codes)
            for code in range(first, last + 1):
                child = self.children.get(chr(code))
                offsets.append(child._write_node(out) if child is not None else 0)

        offset = out.tell()

        if self.prefix:
            out.write(self.prefix.encode("ascii") + b"\0")
            offset |= INDEX_NODE_PREFIX

        if offsets:
            out.write(bytes((first, last)))
            out.write(struct.pack(f">{len(offsets)}I", *offsets))
            offset |= INDEX_NODE_CHILDS

        if self.values:
            out.write(_U32.pack(len(self.values)))
            for priority, value in self.values:
                out.write(_U32.pack(priority))
                out.write(value.encode("ascii") + b"\0")
            offset |= INDEX_NODE_VALUES

        return offset

    def write(self, out: BinaryIO) -> None:
        """Write the tree to a seekable binary stream in index format.

        Nodes are written in post-order; the root offset in the header is
        filled in once the tree has been written.
        """
        out.write(_U32.pack(INDEX_MAGIC))
        out.write(_U32.pack(INDEX_VERSION))
        root_pos = out.tell()
        out.write(_U32.pack(0))

        root = self._write_node(out)

        end = out.tell()
        out.seek(root_pos)
        out.write(_U32.pack(root))
        out.seek(end)