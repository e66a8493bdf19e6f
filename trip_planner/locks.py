"""Per-trip exclusive async locks.

Serializes read-modify-write cycles against one trip record so that
concurrent requests for the same trip cannot silently drop each other's
writes.  Operations on the same key run one at a time, in the order they
asked for the lock; operations on different keys never wait on each other.

``asyncio.Lock`` wakes waiters in FIFO order and does not let a newcomer
jump ahead of queued waiters, which gives us submission-order admission
without a hand-built queue.  A registry entry only lives while someone holds
or awaits its key.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0  # holder + waiters


class LockRegistry:
    """Registry of per-key FIFO locks (one per process, injected where needed)."""

    def __init__(self) -> None:
        self._locks: Dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for *key* for the duration of the ``async with`` block.

        Not reentrant: do not ask for the same key again inside the block.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = _KeyLock()
            self._locks[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                logger.debug("lock acquired key=%s waiting=%d", key, entry.users - 1)
                try:
                    yield
                finally:
                    logger.debug("lock released key=%s", key)
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    async def with_lock(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``await operation()`` while holding the lock for *key*.

        The operation's exception (if any) propagates to this caller only;
        the lock is released either way.
        """
        async with self.hold(key):
            return await operation()

    def active_keys(self) -> List[str]:
        """Keys currently held or awaited."""
        return sorted(self._locks)

    def __len__(self) -> int:
        return len(self._locks)
