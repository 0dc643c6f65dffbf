"""IAdvisoryLock — protocol for cooperative, key-scoped mutual exclusion.

An advisory lock is bound to one key and one holder session. Exclusive and
shared modes on the same key conflict with each other; shared holders do not
conflict among themselves. Nothing here blocks table activity: callers that
skip the lock are not stopped.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IAdvisoryLock(Protocol):
    """
    Lock on a single string key, scoped to its holder session.

    Implementations: PostgreSQL ``pg_advisory_lock`` family
    (``liftbus_persistence_sqlalchemy``) and an in-process registry
    (``liftbus_core.adapters.memory``) for tests.
    """

    @property
    def key(self) -> str:
        """The string key this lock protects."""
        ...

    @property
    def lock_id(self) -> int:
        """The 63-bit id derived from :attr:`key`."""
        ...

    async def try_acquire(self) -> bool:
        """Take the exclusive lock without waiting; False if someone holds it."""
        ...

    async def acquire(self) -> None:
        """Take the exclusive lock, waiting until it is granted."""
        ...

    async def release(self) -> bool:
        """Release the exclusive lock; False if this session did not hold it."""
        ...

    async def try_acquire_shared(self) -> bool:
        """Take a shared lock without waiting; False if an exclusive holder exists."""
        ...

    async def release_shared(self) -> bool:
        """Release a shared lock; False if this session did not hold one."""
        ...
