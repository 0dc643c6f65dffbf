import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Integer, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for the tables owned by the event fabric.

    Services keep their own schemas; only the ledger below belongs here.
    """


class IdempotencyKey(Base):
    """
    One row per logical event a service has processed.

    Inserted in the same transaction as the handler's writes, never updated,
    purged after the retention window.
    """

    __tablename__ = "idempotency_keys"

    id: Mapped[int] = mapped_column(
        Integer().with_variant(BigInteger, "postgresql"),
        primary_key=True,
        autoincrement=True,
    )
    client_generated_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, unique=True, nullable=False
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )
