import logging
from asyncio import Lock
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable


class ResourceLockManager:
    """Per-resource locks for stores that cannot lock rows.

    Keys look like ``user:<id>``, ``pool:<id>`` or ``battle:<id>``. Locks are
    always taken in sorted key order so two operations touching the same pair
    of resources cannot deadlock. An entry lives only while some operation holds
    or waits for it.
    """

    def __init__(self):
        self.locks: Dict[str, Lock] = {}  # one Lock per resource key
        self.holders: Dict[str, int] = {}  # operations holding or waiting per key
        self.lock = Lock()  # protects self.locks and self.holders

    async def get_lock(self, key: str) -> Lock:
        """Get the Lock of the specified resource and count the caller as a holder

        Args:
            key (str): Resource key

        Returns:
            Lock: Lock of the specified resource
        """
        async with self.lock:
            if key not in self.locks:
                self.locks[key] = Lock()
            self.holders[key] = self.holders.get(key, 0) + 1
            return self.locks[key]

    async def release(self, key: str):
        """Stop counting the caller as a holder, forgetting the Lock when nobody is left

        Args:
            key (str): Resource key
        """
        async with self.lock:
            remaining = self.holders.get(key, 0) - 1
            if remaining > 0:
                self.holders[key] = remaining
                return
            self.holders.pop(key, None)
            self.locks.pop(key, None)
            logging.debug(f"Released lock entry for {key}")

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Hold every lock in ``keys`` for the duration of the block.

        Args:
            keys (Iterable[str]): Resource keys, duplicates allowed
        """
        ordered = sorted(set(keys))
        registered = []
        acquired = []
        try:
            for key in ordered:
                resource_lock = await self.get_lock(key)
                registered.append(key)
                await resource_lock.acquire()
                acquired.append(resource_lock)
            yield
        finally:
            for resource_lock in reversed(acquired):
                resource_lock.release()
            for key in reversed(registered):
                await self.release(key)
