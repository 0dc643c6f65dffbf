"""Exceptions for the SQLAlchemy persistence layer."""

from __future__ import annotations

from liftbus_core.primitives.exceptions import PersistenceError


class SQLAlchemyPersistenceError(PersistenceError):
    """Base exception for all SQLAlchemy-specific persistence errors."""


class SessionManagementError(SQLAlchemyPersistenceError):
    """Raised when session creation or management fails."""


class UnitOfWorkError(SQLAlchemyPersistenceError):
    """Raised when Unit of Work operations fail."""


class IdempotencyStoreError(SQLAlchemyPersistenceError):
    """Raised when the idempotency ledger cannot be read or written."""


class AdvisoryLockError(SQLAlchemyPersistenceError):
    """Raised when an advisory lock statement fails (not when the lock is busy)."""


__all__: list[str] = [
    "AdvisoryLockError",
    "IdempotencyStoreError",
    "SQLAlchemyPersistenceError",
    "SessionManagementError",
    "UnitOfWorkError",
]
