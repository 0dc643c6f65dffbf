"""PostgreSQL session-level advisory locks.

Lock ids come from :func:`liftbus_core.primitives.locking.advisory_lock_id`
(FNV-1a, high bit cleared). Session-level locks belong to the database
connection, so acquire and release must run on the same connection: use an
``AsyncConnection`` (``engine.connect()``), not an ``AsyncSession`` whose
connection returns to the pool on commit.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from liftbus_core.scoped_lock import hold_lock
from liftbus_core.primitives.locking import advisory_lock_id

from .exceptions import AdvisoryLockError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger("liftbus.persistence.locking")

T = TypeVar("T")

_TRY_LOCK = text("SELECT pg_try_advisory_lock(:lock_id)")
_LOCK = text("SELECT pg_advisory_lock(:lock_id)")
_UNLOCK = text("SELECT pg_advisory_unlock(:lock_id)")
_TRY_LOCK_SHARED = text("SELECT pg_try_advisory_lock_shared(:lock_id)")
_LOCK_SHARED = text("SELECT pg_advisory_lock_shared(:lock_id)")
_UNLOCK_SHARED = text("SELECT pg_advisory_unlock_shared(:lock_id)")


class PostgresAdvisoryLock:
    """
    Advisory lock on one string key, held by one database connection.

    Example:
        ```python
        async with engine.connect() as conn:
            lock = PostgresAdvisoryLock(conn, "relationship:42")
            if await lock.try_acquire():
                try:
                    ...
                finally:
                    await lock.release()
        ```
    """

    def __init__(self, connection: AsyncConnection, key: str) -> None:
        self._connection = connection
        self._key = key
        self._lock_id = advisory_lock_id(key)

    @property
    def key(self) -> str:
        return self._key

    @property
    def lock_id(self) -> int:
        return self._lock_id

    async def _scalar(self, stmt: object, action: str) -> bool:
        try:
            result = await self._connection.execute(stmt, {"lock_id": self._lock_id})  # type: ignore[arg-type]
            return bool(result.scalar())
        except SQLAlchemyError as e:
            raise AdvisoryLockError(f"Failed to {action} lock {self._key!r}: {e}") from e

    async def try_acquire(self) -> bool:
        acquired = await self._scalar(_TRY_LOCK, "try acquire")
        if acquired:
            logger.info("Advisory lock acquired key=%s lock_id=%d", self._key, self._lock_id)
        else:
            logger.warning(
                "Advisory lock not acquired (already held) key=%s lock_id=%d",
                self._key,
                self._lock_id,
            )
        return acquired

    async def acquire(self) -> None:
        await self._scalar(_LOCK, "acquire")
        logger.info(
            "Advisory lock acquired (blocking) key=%s lock_id=%d", self._key, self._lock_id
        )

    async def _unlock(self, stmt: object, action: str) -> bool:
        """Run an unlock statement, recovering from an aborted transaction.

        Work done on the same connection may have left its transaction
        aborted, in which case every statement fails until a rollback. A
        rollback does not release a session-level lock, so the unlock is
        retried afterwards. If it still fails the connection is invalidated:
        the backend session ends and PostgreSQL drops its locks, instead of
        the connection going back to the pool still holding them.
        """
        try:
            return await self._scalar(stmt, action)
        except AdvisoryLockError as e:
            logger.warning(
                "Failed to %s lock, rolling back and retrying key=%s lock_id=%d error=%s",
                action,
                self._key,
                self._lock_id,
                e,
            )
        try:
            await self._connection.rollback()
            return await self._scalar(stmt, action)
        except (SQLAlchemyError, AdvisoryLockError) as e:
            logger.error(
                "Failed to %s lock, invalidating connection key=%s lock_id=%d",
                action,
                self._key,
                self._lock_id,
                exc_info=True,
            )
            await self._connection.invalidate()
            raise AdvisoryLockError(
                f"Failed to {action} lock {self._key!r}; connection invalidated: {e}"
            ) from e

    async def release(self) -> bool:
        released = await self._unlock(_UNLOCK, "release")
        if released:
            logger.info("Advisory lock released key=%s lock_id=%d", self._key, self._lock_id)
        else:
            logger.warning(
                "Advisory lock not released (was not held) key=%s lock_id=%d",
                self._key,
                self._lock_id,
            )
        return released

    async def try_acquire_shared(self) -> bool:
        acquired = await self._scalar(_TRY_LOCK_SHARED, "try acquire shared")
        if acquired:
            logger.info(
                "Shared advisory lock acquired key=%s lock_id=%d", self._key, self._lock_id
            )
        return acquired

    async def acquire_shared(self) -> None:
        await self._scalar(_LOCK_SHARED, "acquire shared")

    async def release_shared(self) -> bool:
        released = await self._unlock(_UNLOCK_SHARED, "release shared")
        if released:
            logger.info(
                "Shared advisory lock released key=%s lock_id=%d", self._key, self._lock_id
            )
        return released


@contextlib.asynccontextmanager
async def advisory_lock(
    engine: AsyncEngine, key: str, *, shared: bool = False
) -> AsyncIterator[AsyncConnection]:
    """Hold the advisory lock for *key* on a dedicated connection.

    Raises :class:`~liftbus_core.primitives.exceptions.LockBusyError` when
    the lock is taken. Yields the connection holding the lock.
    """
    async with engine.connect() as conn:
        async with hold_lock(PostgresAdvisoryLock(conn, key), shared=shared):
            yield conn


async def with_advisory_lock(
    engine: AsyncEngine,
    key: str,
    fn: Callable[[], Awaitable[T]],
    *,
    shared: bool = False,
) -> T:
    """Run ``fn()`` under the advisory lock for *key*."""
    async with advisory_lock(engine, key, shared=shared):
        return await fn()
