"""Primitives — the lowest layer: exceptions and lock keys."""

from __future__ import annotations

from .exceptions import (
    ConcurrencyError,
    HandlerError,
    HandlerRegistrationError,
    InfrastructureError,
    LiftbusError,
    LockBusyError,
    PersistenceError,
)
from .locking import ResourceIdentifier, advisory_lock_id, fnv1a_64

__all__ = [
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
