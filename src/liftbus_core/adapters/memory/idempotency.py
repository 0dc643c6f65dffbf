"""InMemoryIdempotencyStore — process-local ledger with transactional marking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ...ports.idempotency import DEFAULT_RETENTION_DAYS, IdempotencyStatus
from ...ports.unit_of_work import UnitOfWork
from .unit_of_work import InMemoryUnitOfWork

logger = logging.getLogger("liftbus.idempotency.memory")


@dataclass
class IdempotencyRecord:
    client_generated_id: str
    event_type: str
    user_id: str
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryIdempotencyStore:
    """In-memory implementation of IIdempotencyStore for tests.

    Markers are staged on an :class:`InMemoryUnitOfWork` and become visible to
    other units of work only after it commits. A marker reserved by a unit of
    work that has not finished yet counts as seen, mirroring the unique-index
    wait a real database performs.
    """

    def __init__(self) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._reserved: dict[str, int] = {}

    async def check_and_mark_processed(
        self,
        uow: UnitOfWork,
        client_generated_id: str,
        event_type: str,
        user_id: str,
    ) -> IdempotencyStatus:
        if not isinstance(uow, InMemoryUnitOfWork):
            raise TypeError("InMemoryIdempotencyStore requires an InMemoryUnitOfWork")
        if client_generated_id in self._records or client_generated_id in self._reserved:
            logger.warning(
                "Event already processed (duplicate) client_generated_id=%s event_type=%s",
                client_generated_id,
                event_type,
            )
            return IdempotencyStatus.ALREADY_SEEN

        record = IdempotencyRecord(client_generated_id, event_type, user_id)
        self._reserved[client_generated_id] = id(uow)

        def _apply() -> None:
            self._reserved.pop(client_generated_id, None)
            self._records[client_generated_id] = record

        def _discard() -> None:
            self._reserved.pop(client_generated_id, None)

        uow.stage(_apply, _discard)
        return IdempotencyStatus.FRESH

    async def is_processed(self, uow: UnitOfWork, client_generated_id: str) -> bool:  # noqa: ARG002
        return client_generated_id in self._records

    async def cleanup_older_than(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        stale = [k for k, r in self._records.items() if r.created_at < cutoff]
        for key in stale:
            del self._records[key]
        return len(stale)

    # ── Test helpers ─────────────────────────────────────────────

    def get(self, client_generated_id: str) -> IdempotencyRecord | None:
        return self._records.get(client_generated_id)

    def __len__(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        self._records.clear()
        self._reserved.clear()
