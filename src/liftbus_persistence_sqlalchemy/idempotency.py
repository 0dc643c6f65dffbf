"""
SQLAlchemy implementation of the idempotency ledger.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, exists, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from liftbus_core.ports.idempotency import DEFAULT_RETENTION_DAYS, IdempotencyStatus

from .exceptions import IdempotencyStoreError
from .models import Base, IdempotencyKey, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from liftbus_core.ports.unit_of_work import UnitOfWork

logger = logging.getLogger("liftbus.persistence.idempotency")

SYSTEM_USER_ID = "system"
SYSTEM_USER_UUID = uuid.UUID(int=0)

_INSERTS: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _to_uuid(value: str, field: str) -> uuid.UUID:
    if field == "user_id" and value == SYSTEM_USER_ID:
        return SYSTEM_USER_UUID
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise IdempotencyStoreError(f"{field} is not a UUID: {value!r}") from e


def _session_of(uow: UnitOfWork) -> AsyncSession:
    session = getattr(uow, "session", None)
    if session is None:
        raise TypeError(
            "SQLAlchemyIdempotencyStore requires a unit of work exposing a session"
        )
    return session


class SQLAlchemyIdempotencyStore:
    """
    Idempotency ledger stored in the service's own database.

    ``check_and_mark_processed`` issues
    ``INSERT … ON CONFLICT (client_generated_id) DO NOTHING RETURNING id``
    inside the caller's transaction: a returned row means this transaction
    owns the event, no row means another transaction already committed it.
    PostgreSQL and SQLite dialects are supported.

    Args:
        session_factory: Used only by :meth:`cleanup_older_than`, which runs
            in its own transaction.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def check_and_mark_processed(
        self,
        uow: UnitOfWork,
        client_generated_id: str,
        event_type: str,
        user_id: str,
    ) -> IdempotencyStatus:
        session = _session_of(uow)
        dialect = session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise IdempotencyStoreError(f"Unsupported dialect for idempotency: {dialect}")

        now = utcnow()
        stmt = (
            insert(IdempotencyKey)
            .values(
                client_generated_id=_to_uuid(client_generated_id, "client_generated_id"),
                event_type=event_type,
                user_id=_to_uuid(user_id, "user_id"),
                processed_at=now,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=["client_generated_id"])
            .returning(IdempotencyKey.id)
        )
        try:
            result = await session.execute(stmt)
            inserted = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise IdempotencyStoreError(f"Failed to check idempotency: {e}") from e

        if inserted is None:
            logger.warning(
                "Event already processed (duplicate) client_generated_id=%s event_type=%s",
                client_generated_id,
                event_type,
            )
            return IdempotencyStatus.ALREADY_SEEN

        logger.info(
            "Event marked as processed client_generated_id=%s event_type=%s",
            client_generated_id,
            event_type,
        )
        return IdempotencyStatus.FRESH

    async def is_processed(self, uow: UnitOfWork, client_generated_id: str) -> bool:
        session = _session_of(uow)
        key = _to_uuid(client_generated_id, "client_generated_id")
        stmt = select(exists().where(IdempotencyKey.client_generated_id == key))
        try:
            return bool((await session.execute(stmt)).scalar())
        except SQLAlchemyError as e:
            raise IdempotencyStoreError(f"Failed to check if processed: {e}") from e

    async def cleanup_older_than(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete markers whose ``created_at`` is older than *days*."""
        if self._session_factory is None:
            raise IdempotencyStoreError("cleanup_older_than requires a session_factory")
        if days < 0:
            raise ValueError("days must be >= 0")

        cutoff = utcnow() - timedelta(days=days)
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(IdempotencyKey).where(IdempotencyKey.created_at < cutoff)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise IdempotencyStoreError(f"Failed to cleanup old keys: {e}") from e

        logger.info(
            "Cleaned up old idempotency keys rows_deleted=%d older_than_days=%d",
            deleted,
            days,
        )
        return deleted


async def ensure_idempotency_table(engine: AsyncEngine) -> None:
    """Create ``idempotency_keys`` and its indexes if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(
            Base.metadata.create_all, tables=[IdempotencyKey.__table__], checkfirst=True
        )
