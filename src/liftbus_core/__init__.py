"""liftbus-core — foundation of the liftbus event fabric.

Zero infrastructure dependencies: exceptions, lock keys, ports, and
in-memory adapters for tests.
"""

from __future__ import annotations

from .adapters.memory import (
    InMemoryAdvisoryLock,
    InMemoryIdempotencyStore,
    InMemoryLockRegistry,
    InMemoryUnitOfWork,
)
from .correlation import (
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from .scoped_lock import hold_lock, with_lock
from .ports import (
    DEFAULT_RETENTION_DAYS,
    IAdvisoryLock,
    IdempotencyStatus,
    IIdempotencyStore,
    IMessagePublisher,
    UnitOfWork,
)
from .primitives import (
    ConcurrencyError,
    HandlerError,
    HandlerRegistrationError,
    InfrastructureError,
    LiftbusError,
    LockBusyError,
    PersistenceError,
    ResourceIdentifier,
    advisory_lock_id,
    fnv1a_64,
)

__all__ = [
    # Adapters
    "InMemoryAdvisoryLock",
    "InMemoryIdempotencyStore",
    "InMemoryLockRegistry",
    "InMemoryUnitOfWork",
    # Correlation
    "correlation_scope",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    # Locking
    "hold_lock",
    "with_lock",
    # Ports
    "DEFAULT_RETENTION_DAYS",
    "IAdvisoryLock",
    "IIdempotencyStore",
    "IMessagePublisher",
    "IdempotencyStatus",
    "UnitOfWork",
    # Primitives
    "ConcurrencyError",
    "HandlerError",
    "HandlerRegistrationError",
    "InfrastructureError",
    "LiftbusError",
    "LockBusyError",
    "PersistenceError",
    "ResourceIdentifier",
    "advisory_lock_id",
    "fnv1a_64",
]
