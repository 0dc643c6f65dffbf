"""Transport header helpers: retry count and dead-letter metadata.

Headers are operational metadata and never part of the envelope. Every
helper returns a new mapping; the delivery's own headers are not mutated.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .constants import (
    DEATH_REASON_HEADER,
    ORIGINAL_EXCHANGE_HEADER,
    ORIGINAL_ROUTING_KEY_HEADER,
    RETRY_HEADER,
)

Headers = Mapping[str, Any]


def read_retry_count(headers: Headers | None) -> int:
    """Return the retry count carried in *headers*.

    Brokers and client libraries disagree on header typing, so integers,
    decimal strings and decimal bytes are all accepted. Absent, negative or
    unparseable values read as ``0``.
    """
    if not headers:
        return 0
    value = headers.get(RETRY_HEADER)
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="replace")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdecimal():
            return 0
        return int(value)
    if isinstance(value, int):
        return max(value, 0)
    return 0


def with_incremented_retry_count(headers: Headers | None) -> dict[str, Any]:
    """Shallow copy of *headers* with the retry count incremented by one."""
    updated = dict(headers or {})
    updated[RETRY_HEADER] = read_retry_count(headers) + 1
    return updated


def with_dead_letter_metadata(
    headers: Headers | None,
    *,
    original_exchange: str,
    original_routing_key: str,
    reason: str,
) -> dict[str, Any]:
    """Shallow copy of *headers* annotated with where the message came from and why it died."""
    updated = dict(headers or {})
    updated[ORIGINAL_EXCHANGE_HEADER] = original_exchange
    updated[ORIGINAL_ROUTING_KEY_HEADER] = original_routing_key
    updated[DEATH_REASON_HEADER] = reason
    return updated
