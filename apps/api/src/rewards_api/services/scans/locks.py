"""Per-member mutual exclusion for the scan ledger."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Hashable


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MemberLockRegistry:
    """Hand out one asyncio lock per key, created on demand.

    Entries are dropped as soon as no coroutine holds or waits on them, so the
    table only ever contains members with a scan in flight.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def is_locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.lock.locked())

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["MemberLockRegistry"]
