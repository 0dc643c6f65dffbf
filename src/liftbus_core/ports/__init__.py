from .idempotency import DEFAULT_RETENTION_DAYS, IdempotencyStatus, IIdempotencyStore
from .locking import IAdvisoryLock
from .messaging import IMessagePublisher
from .unit_of_work import UnitOfWork

__all__ = [
    "DEFAULT_RETENTION_DAYS",
    "IAdvisoryLock",
    "IIdempotencyStore",
    "IMessagePublisher",
    "IdempotencyStatus",
    "UnitOfWork",
]
