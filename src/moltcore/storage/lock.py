"""Per-key exclusive locks for storage writers."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class KeyedLock:
    """Exclusive async lock per string key.

    Entries are created on demand and dropped once no task holds or waits on
    them, so the table only ever contains keys under contention.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def write(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def held(self) -> int:
        """Number of keys currently held or awaited."""
        return len(self._entries)
