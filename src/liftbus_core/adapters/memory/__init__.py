from .idempotency import InMemoryIdempotencyStore
from .locking import InMemoryAdvisoryLock, InMemoryLockRegistry
from .unit_of_work import InMemoryUnitOfWork

__all__ = [
    "InMemoryAdvisoryLock",
    "InMemoryIdempotencyStore",
    "InMemoryLockRegistry",
    "InMemoryUnitOfWork",
]
