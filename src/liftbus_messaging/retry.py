"""RetryPolicy — bounded republish, then dead-letter."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .constants import MAX_RETRIES
from .headers import read_retry_count, with_incremented_retry_count


class RetryAction(str, enum.Enum):
    REPUBLISH = "republish"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    retry_count: int
    headers: dict[str, Any] = field(default_factory=dict)


class RetryPolicy:
    """Decides what happens to a delivery whose handler failed.

    Retries never go through a broker requeue. A failed delivery is
    republished to its own exchange and routing key with the retry header
    incremented, so every attempt's count is observable. Once the count read
    from the delivery reaches ``max_retries`` the message is dead-lettered
    instead. With the default of 5 a message is attempted six times.
    """

    def __init__(self, *, max_retries: int = MAX_RETRIES) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries

    def should_retry(self, retry_count: int) -> bool:
        """Return True if a delivery carrying *retry_count* may be republished."""
        return retry_count < self.max_retries

    def decide(self, headers: Mapping[str, Any] | None) -> RetryDecision:
        retry_count = read_retry_count(headers)
        if self.should_retry(retry_count):
            return RetryDecision(
                RetryAction.REPUBLISH,
                retry_count,
                with_incremented_retry_count(headers),
            )
        return RetryDecision(RetryAction.DEAD_LETTER, retry_count, dict(headers or {}))
