from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class InstanceLocks:
    """One ``asyncio.Lock`` per workflow instance id.

    Mutations of a single instance are serialized; different instances never
    wait on each other.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, instance_id: str) -> AsyncIterator[None]:
        async with self._locks[instance_id]:
            yield

    def locked(self, instance_id: str) -> bool:
        lock = self._locks.get(instance_id)
        return lock is not None and lock.locked()

    def discard(self, instance_id: str) -> None:
        """Forget the lock of a finished instance if nobody holds it."""
        lock = self._locks.get(instance_id)
        if lock is not None and not lock.locked():
            del self._locks[instance_id]
