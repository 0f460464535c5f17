import asyncio
from collections.abc import Hashable


class KeyedLocks:
    """One asyncio.Lock per key, so work on different keys never contends."""

    def __init__(self) -> None:
        # Never pruned: entries are bounded by the number of subjects, and a
        # dropped lock could be handed out twice while one holder still waits
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        # No await between lookup and insert, so this is race-free on one loop
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)
