"""Scoped use of advisory locks: acquire, run, always release."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, TypeVar

from .primitives.exceptions import LockBusyError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from .ports.locking import IAdvisoryLock

logger = logging.getLogger("liftbus.locking")

T = TypeVar("T")


@contextlib.asynccontextmanager
async def hold_lock(
    lock: IAdvisoryLock, *, shared: bool = False
) -> AsyncIterator[IAdvisoryLock]:
    """Hold *lock* for the duration of the block.

    The lock is tried, never waited for: a conflicting holder raises
    :class:`LockBusyError` before the block runs. Release always happens on
    exit; a failing release is logged and never replaces the block's own
    exception.

    Example:
        ```python
        async with hold_lock(lock):
            await rebuild_program(user_id)
        ```
    """
    acquired = await (lock.try_acquire_shared() if shared else lock.try_acquire())
    if not acquired:
        raise LockBusyError(lock.key, lock.lock_id)
    try:
        yield lock
    finally:
        try:
            if shared:
                await lock.release_shared()
            else:
                await lock.release()
        except Exception:
            logger.error(
                "Failed to release lock key=%s lock_id=%d",
                lock.key,
                lock.lock_id,
                exc_info=True,
            )


async def with_lock(
    lock: IAdvisoryLock,
    fn: Callable[[], Awaitable[T]],
    *,
    shared: bool = False,
) -> T:
    """Run ``fn()`` while holding *lock*; raise :class:`LockBusyError` if taken."""
    async with hold_lock(lock, shared=shared):
        return await fn()
