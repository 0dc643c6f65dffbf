"""Exception hierarchy shared by every liftbus package."""

from __future__ import annotations


class LiftbusError(Exception):
    """Root exception for the entire liftbus toolkit."""


class InfrastructureError(LiftbusError):
    """Base class for all infrastructure-related errors."""


class PersistenceError(InfrastructureError):
    """Base class for all persistence-related errors."""


class ConcurrencyError(LiftbusError):
    """Base class for all concurrency-related conflicts."""


class HandlerError(LiftbusError):
    """Base class for all handler related errors (registration, lookup, execution)."""


class HandlerRegistrationError(HandlerError):
    """Raised when a second handler is registered for the same event type."""

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"A handler is already registered for {event_type!r}")


# ── Locking Exceptions ───────────────────────────────────────────────


class LockBusyError(ConcurrencyError):
    """Raised when a scoped advisory lock is already held by someone else.

    ``with_lock`` never waits: a conflicting holder surfaces immediately
    to the caller, which decides whether to retry later.
    """

    def __init__(self, key: str, lock_id: int | None = None) -> None:
        self.key = key
        self.lock_id = lock_id
        msg = f"Lock already held for key: {key}"
        if lock_id is not None:
            msg += f" (lock_id={lock_id})"
        super().__init__(msg)
