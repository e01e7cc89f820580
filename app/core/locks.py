"""In-process advisory locks keyed by resource id."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

from app.utils.exceptions import ConflictException


class KeyedLockRegistry:
    """One asyncio.Lock per key, created on demand and dropped once released.

    `claim` fails fast instead of queueing, so a second caller for the same key
    gets a ConflictException while the first is still inside the block.
    """

    def __init__(self, conflict_code: str = "CONFLICT", conflict_message: str = "Operation already in progress"):
        self.conflict_code = conflict_code
        self.conflict_message = conflict_message
        self._locks: dict[Hashable, asyncio.Lock] = {}

    @asynccontextmanager
    async def claim(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        # check-and-acquire happens without an await in between
        if lock.locked():
            raise ConflictException(self.conflict_message, details={"key": str(key)}, code=self.conflict_code)
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if not lock.locked() and self._locks.get(key) is lock:
                del self._locks[key]


charge_locks = KeyedLockRegistry(
    conflict_code="CHARGE_IN_PROGRESS",
    conflict_message="A charge is already in progress for this subscription",
)
refund_locks = KeyedLockRegistry(
    conflict_code="REFUND_IN_PROGRESS",
    conflict_message="A refund is already in progress for this payment",
)
