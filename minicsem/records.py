"""Symbol-table entries, semantic records and helpers shared by the compiler."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Iterator, Optional

MAX_ARGS = 50
MAX_LOCALS = 50


class CompileError(Exception):
    """Raised for errors found in the program being compiled."""


class TypeFlag(enum.IntFlag):
    """Internal type codes; a value may combine a base type with modifiers."""

    INT = 1 << 0
    STR = 1 << 1
    DOUBLE = 1 << 2
    PROC = 1 << 3
    ARRAY = 1 << 4
    ADDR = 1 << 5
    LBL = 1 << 6


class Scope(enum.IntEnum):
    """Storage scope of an identifier."""

    LOCAL = 0
    PARAM = 1
    GLOBAL = 2


@dataclass(eq=False)
class IdEntry:
    """One entry of the identifier table."""

    name: str
    blevel: int
    type: int = 0
    value: Any = None
    defined: bool = False
    width: int = 0
    scope: Scope = Scope.LOCAL
    offset: int = 0


@dataclass(eq=False)
class SemRec:
    """Semantic record: an expression result or a node of a backpatch list."""

    value: Any = None
    bb: Any = None
    type: int = 0
    link: Optional[SemRec] = None
    true_list: Optional[SemRec] = None
    false_list: Optional[SemRec] = None

    def __iter__(self) -> Iterator[SemRec]:
        node: Optional[SemRec] = self
        while node is not None:
            yield node
            node = node.link


def merge(p1: Optional[SemRec], p2: Optional[SemRec]) -> Optional[SemRec]:
    """Append list p2 to the end of list p1 and return the combined list."""
    if p1 is None:
        return p2
    if p2 is None:
        return p1
    last = p1
    while last.link is not None:
        last = last.link
    last.link = p2
    return p1


_ESCAPES = {
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    '"': '"',
    "\\": "\\",
}


def parse_escape_chars(s: str) -> str:
    """Strip the surrounding quotes of a string literal and expand its escapes."""
    last = len(s) - 1
    out = []
    chars = iter(enumerate(s))
    for index, ch in chars:
        if index in (0, last) and ch == '"':
            continue
        if ch != "\\":
            out.append(ch)
            continue
        escaped = next(chars, None)
        if escaped is None or escaped[1] not in _ESCAPES:
            raise CompileError("invalid escape sequence")
        out.append(_ESCAPES[escaped[1]])
    return "".join(out)