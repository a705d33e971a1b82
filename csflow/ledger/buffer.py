"""TagBuffer — ledger tags replaced locally but not yet published."""

from __future__ import annotations

from typing import Iterable

ADD = "add"
REMOVE = "rm"


class TagBuffer:
    """Remember which ledger tags need a forced push to the remote.

    A tag queued by both an append and a removal is published once, under
    whichever operation was queued last.
    """

    def __init__(self) -> None:
        self._pending: dict[str, str] = {}

    def queue(self, operation: str, names: Iterable[str]) -> None:
        for name in names:
            self._pending.pop(name, None)
            self._pending[name] = operation

    def pending(self, operation: str | None = None) -> list[str]:
        """Return queued tag names in queue order."""
        return [
            name for name, op in self._pending.items()
            if operation is None or op == operation
        ]

    def discard(self, name: str) -> None:
        self._pending.pop(name, None)

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, name: object) -> bool:
        return name in self._pending
