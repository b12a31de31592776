"""Per-key async locks used to serialise work on one slot or one queue."""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """
    A family of asyncio locks addressed by key.

    Locks are created on first use and discarded once nobody holds or waits
    on them, so the table only grows with the number of keys in flight.
    """

    def __init__(self) -> None:
        """Initialize an empty lock table."""
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _release(self, key: Hashable) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        """
        Acquire the locks for all keys.

        Keys are deduplicated and taken in sorted order so two callers asking
        for overlapping key sets cannot deadlock.

        Args:
            keys: Keys to lock; must be mutually comparable
        """
        ordered = sorted(set(keys), key=repr)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._release(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release(key)

    def locked(self, key: Hashable) -> bool:
        """Check whether a key is currently held."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide lock tables
slot_locks = KeyedLock()
queue_locks = KeyedLock()
appointment_locks = KeyedLock()
