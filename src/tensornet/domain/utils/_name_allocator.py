"""
Layer name allocation scoped to one graph-build session.

Layers without an explicit name receive ``<prefix><n>`` where ``n`` counts the
layers of that prefix created so far in the *same* allocator. Two graphs built
with two allocators therefore produce identical names, independent of how many
layers were created elsewhere in the process.
"""

from __future__ import annotations

from typing import Dict, Set


class NameAllocator:
    """
    Per-session counter of auto-generated layer names.

    Attributes
    ----------
    _counters : Dict[str, int]
        Last number handed out for each prefix.
    _taken : Set[str]
        Every name already in use (generated or reserved).
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._taken: Set[str] = set()

    def next(self, prefix: str) -> str:
        """
        Return a fresh name for `prefix`, skipping names already reserved.
        """
        n = self._counters.get(prefix, 0)
        while True:
            n += 1
            name = f"{prefix}{n}"
            if name not in self._taken:
                break
        self._counters[prefix] = n
        self._taken.add(name)
        return name

    def reserve(self, name: str) -> bool:
        """
        Mark an explicit name as used.

        Returns
        -------
        bool
            False if the name was already taken, True otherwise.
        """
        if name in self._taken:
            return False
        self._taken.add(name)
        return True

    def __contains__(self, name: object) -> bool:
        return name in self._taken
