"""Lock key primitives: resource identifiers and the key -> lock id hash."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

_FNV64_OFFSET_BASIS = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF
_MASK_63 = 0x7FFFFFFFFFFFFFFF


def fnv1a_64(data: bytes) -> int:
    """Return the 64-bit FNV-1a hash of *data*."""
    h = _FNV64_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK_64
    return h


def advisory_lock_id(key: str) -> int:
    """Map a string key to a stable, non-negative 63-bit advisory lock id.

    Different keys may collide. Prefix keys with the kind of resource they
    protect (see :class:`ResourceIdentifier`) to keep accidental contention
    between unrelated resources unlikely.

    Examples:
        >>> advisory_lock_id("relationship:42") == advisory_lock_id("relationship:42")
        True
        >>> 0 <= advisory_lock_id("user:1") < 2**63
        True
    """
    return fnv1a_64(key.encode("utf-8")) & _MASK_63


@dataclass(frozen=True)
class ResourceIdentifier:
    """
    Identifies a single lockable business resource.

    Examples:
        >>> ResourceIdentifier("relationship", "42").key
        'relationship:42'
        >>> ResourceIdentifier("user", "b74e", lock_mode="read").shared
        True
    """

    resource_type: str
    resource_id: str  # Always store as string for consistent hashing
    lock_mode: Literal["read", "write"] = "write"

    @property
    def key(self) -> str:
        """The string lock key, independent of the lock mode."""
        return f"{self.resource_type}:{self.resource_id}"

    @property
    def lock_id(self) -> int:
        return advisory_lock_id(self.key)

    @property
    def shared(self) -> bool:
        return self.lock_mode == "read"

    def __lt__(self, other: ResourceIdentifier) -> bool:
        """Sort by key so callers locking several resources do it in one order."""
        return (self.resource_type, self.resource_id) < (
            other.resource_type,
            other.resource_id,
        )

    def __str__(self) -> str:
        mode = f":{self.lock_mode}" if self.lock_mode != "write" else ""
        return f"{self.key}{mode}"
