"""SQLAlchemy persistence for the liftbus fabric: ledger, unit of work, advisory locks."""

from __future__ import annotations

from .exceptions import (
    AdvisoryLockError,
    IdempotencyStoreError,
    SessionManagementError,
    SQLAlchemyPersistenceError,
    UnitOfWorkError,
)
from .idempotency import (
    SYSTEM_USER_UUID,
    SQLAlchemyIdempotencyStore,
    ensure_idempotency_table,
)
from .locking import PostgresAdvisoryLock, advisory_lock, with_advisory_lock
from .models import Base, IdempotencyKey
from .uow import SQLAlchemyUnitOfWork, sqlalchemy_uow_factory

__all__ = [
    "AdvisoryLockError",
    "Base",
    "IdempotencyKey",
    "IdempotencyStoreError",
    "PostgresAdvisoryLock",
    "SQLAlchemyIdempotencyStore",
    "SQLAlchemyPersistenceError",
    "SQLAlchemyUnitOfWork",
    "SYSTEM_USER_UUID",
    "SessionManagementError",
    "UnitOfWorkError",
    "advisory_lock",
    "ensure_idempotency_table",
    "sqlalchemy_uow_factory",
    "with_advisory_lock",
]
