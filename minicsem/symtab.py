"""Block-structured identifier table and string interning."""

from __future__ import annotations

from typing import Optional

from .records import IdEntry


class SymbolTable:
    """Identifiers by name, each name holding entries ordered by block level."""

    def __init__(self) -> None:
        self.level = 0
        self._entries: dict[str, list[IdEntry]] = {}
        self._strings: dict[str, str] = {}

    def enter_block(self) -> None:
        """Open a new, deeper block."""
        self.level += 1

    def leave_block(self) -> None:
        """Close the current block, dropping the identifiers declared in it."""
        if self.level <= 0:
            return
        for name in list(self._entries):
            kept = [e for e in self._entries[name] if e.blevel < self.level]
            if kept:
                self._entries[name] = kept
            else:
                del self._entries[name]
        self.level -= 1

    def install(self, name: str, blev: int = -1) -> IdEntry:
        """Add a new entry for name at level blev (current level if negative)."""
        if blev < 0:
            blev = self.level
        entry = IdEntry(name, blev)
        chain = self._entries.setdefault(name, [])
        position = next(
            (i for i, other in enumerate(chain) if blev >= other.blevel), len(chain)
        )
        chain.insert(position, entry)
        return entry

    def lookup(self, name: str, blev: int = 0) -> Optional[IdEntry]:
        """Return the innermost entry for name, or the one at level blev if nonzero."""
        return next(
            (e for e in self._entries.get(name, ()) if blev == 0 or e.blevel == blev),
            None,
        )

    def intern(self, text: str) -> str:
        """Return the canonical copy of text, storing it on first sight."""
        return self._strings.setdefault(text, text)

    def dump(self, blev: int = 0) -> str:
        """Describe every identifier with block level at least blev."""
        lines = ["Dumping identifier table"]
        lines.extend(
            f"{e.name}\t{e.blevel}\t{int(e.type)}\t{int(e.defined)}"
            for chain in self._entries.values()
            for e in chain
            if e.blevel >= blev
        )
        return "\n".join(lines) + "\n"

    def sdump(self) -> str:
        """Describe every interned string."""
        return "\n".join(["Dumping string table", *self._strings]) + "\n"