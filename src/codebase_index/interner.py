# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""String interning for token-optimized indexes.

A StringInterner is a deduplication side-table owned by one optimization
session. It assigns small positive integer identifiers to distinct strings in
first-seen order, starting at 1. Identifier 0 is reserved for "absent"
(None or empty string) and is never assigned.

Usage:
    interner = StringInterner()
    interner.intern("System.String")   # -> 1
    interner.intern("int")             # -> 2
    interner.intern("System.String")   # -> 1
    interner.export_table()            # -> ["System.String", "int"]

Thread Safety:
    NOT thread-safe. One writer per session; sessions are not shared.
"""

from typing import Dict, List, Optional

ABSENT_ID = 0


class StringInterner:
    """Maps distinct non-empty strings to sequential integer identifiers."""

    def __init__(self) -> None:
        self._ids: Dict[str, int] = {}
        self._strings: List[str] = []

    def intern(self, value: Optional[str]) -> int:
        """Return the identifier for a string, allocating one if unseen.

        Args:
            value: String to intern. None and "" map to ABSENT_ID.

        Returns:
            Positive identifier, or 0 for absent input.
        """
        if not value:
            return ABSENT_ID

        existing = self._ids.get(value)
        if existing is not None:
            return existing

        self._strings.append(value)
        new_id = len(self._strings)
        self._ids[value] = new_id
        return new_id

    def reset(self) -> None:
        """Clear every mapping; the next allocated identifier is 1 again."""
        self._ids.clear()
        self._strings.clear()

    def export_table(self) -> List[str]:
        """Return the table ordered by identifier.

        Position i holds the string assigned identifier i + 1.
        """
        return list(self._strings)

    def resolve(self, string_id: int) -> str:
        """Resolve an identifier back to its string.

        Raises:
            KeyError: If the identifier was never assigned in this session.
        """
        if string_id == ABSENT_ID:
            return ""
        if string_id < 0 or string_id > len(self._strings):
            raise KeyError(f"Unknown string id: {string_id}")
        return self._strings[string_id - 1]

    def __len__(self) -> int:
        return len(self._strings)

    def __contains__(self, value: object) -> bool:
        return value in self._ids
