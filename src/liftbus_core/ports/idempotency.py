"""IIdempotencyStore — protocol for the per-service processed-event ledger."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .unit_of_work import UnitOfWork

DEFAULT_RETENTION_DAYS = 30


class IdempotencyStatus(str, enum.Enum):
    """Result of :meth:`IIdempotencyStore.check_and_mark_processed`."""

    FRESH = "fresh"
    ALREADY_SEEN = "already_seen"


@runtime_checkable
class IIdempotencyStore(Protocol):
    """
    Ledger of ``client_generated_id`` values a service has processed.

    Marking happens inside the caller's unit of work: a ``FRESH`` marker is
    visible only within that transaction and disappears if it rolls back.
    This is what binds the marker to the handler's side effects.
    """

    async def check_and_mark_processed(
        self,
        uow: UnitOfWork,
        client_generated_id: str,
        event_type: str,
        user_id: str,
    ) -> IdempotencyStatus:
        """
        Insert the marker unless it already exists.

        Returns:
            ``FRESH`` if this call inserted the marker, ``ALREADY_SEEN`` if a
            marker for *client_generated_id* was already present.
        """
        ...

    async def is_processed(self, uow: UnitOfWork, client_generated_id: str) -> bool:
        """Read-only check for an existing marker."""
        ...

    async def cleanup_older_than(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete markers created more than *days* ago; return rows deleted."""
        ...
