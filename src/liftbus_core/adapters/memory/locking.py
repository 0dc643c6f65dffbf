"""InMemoryLockRegistry — single-process stand-in for database advisory locks."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from uuid import uuid4

from ...primitives.locking import advisory_lock_id

logger = logging.getLogger("liftbus.locking.memory")


@dataclass
class _LockState:
    """Holders of one lock id. Counts stack like session-level advisory locks."""

    exclusive: Counter[str] = field(default_factory=Counter)
    shared: Counter[str] = field(default_factory=Counter)

    def exclusive_free_for(self, session_id: str) -> bool:
        others_exclusive = any(s != session_id for s in self.exclusive)
        others_shared = any(s != session_id for s in self.shared)
        return not others_exclusive and not others_shared

    def shared_free_for(self, session_id: str) -> bool:
        return not any(s != session_id for s in self.exclusive)

    @property
    def idle(self) -> bool:
        return not self.exclusive and not self.shared


class InMemoryLockRegistry:
    """
    Lock table shared by every :class:`InMemoryAdvisoryLock` created from it.

    Each lock handle is its own "session": two handles for the same key
    conflict, one handle re-acquiring stacks like PostgreSQL does.
    """

    def __init__(self) -> None:
        self._states: dict[int, _LockState] = {}
        self._condition = asyncio.Condition()

    def lock(self, key: str, session_id: str | None = None) -> InMemoryAdvisoryLock:
        """Return a lock handle for *key* bound to a (new) session."""
        return InMemoryAdvisoryLock(self, key, session_id or str(uuid4()))

    def _state(self, lock_id: int) -> _LockState:
        return self._states.setdefault(lock_id, _LockState())

    def _prune(self, lock_id: int) -> None:
        state = self._states.get(lock_id)
        if state is not None and state.idle:
            del self._states[lock_id]

    def is_locked(self, key: str) -> bool:
        state = self._states.get(advisory_lock_id(key))
        return state is not None and not state.idle


class InMemoryAdvisoryLock:
    """In-memory implementation of IAdvisoryLock."""

    def __init__(self, registry: InMemoryLockRegistry, key: str, session_id: str) -> None:
        self._registry = registry
        self._key = key
        self._lock_id = advisory_lock_id(key)
        self._session_id = session_id

    @property
    def key(self) -> str:
        return self._key

    @property
    def lock_id(self) -> int:
        return self._lock_id

    async def try_acquire(self) -> bool:
        async with self._registry._condition:
            state = self._registry._state(self._lock_id)
            if not state.exclusive_free_for(self._session_id):
                self._registry._prune(self._lock_id)
                logger.warning("Advisory lock not acquired (already held) key=%s", self._key)
                return False
            state.exclusive[self._session_id] += 1
            return True

    async def acquire(self) -> None:
        async with self._registry._condition:
            await self._registry._condition.wait_for(
                lambda: self._registry._state(self._lock_id).exclusive_free_for(
                    self._session_id
                )
            )
            self._registry._state(self._lock_id).exclusive[self._session_id] += 1

    async def release(self) -> bool:
        return await self._release(shared=False)

    async def try_acquire_shared(self) -> bool:
        async with self._registry._condition:
            state = self._registry._state(self._lock_id)
            if not state.shared_free_for(self._session_id):
                self._registry._prune(self._lock_id)
                return False
            state.shared[self._session_id] += 1
            return True

    async def release_shared(self) -> bool:
        return await self._release(shared=True)

    async def _release(self, *, shared: bool) -> bool:
        async with self._registry._condition:
            state = self._registry._state(self._lock_id)
            holders = state.shared if shared else state.exclusive
            if holders.get(self._session_id, 0) <= 0:
                self._registry._prune(self._lock_id)
                logger.warning("Advisory lock not released (was not held) key=%s", self._key)
                return False
            holders[self._session_id] -= 1
            if holders[self._session_id] == 0:
                del holders[self._session_id]
            self._registry._prune(self._lock_id)
            self._registry._condition.notify_all()
            return True
