"""EventEnvelope — the immutable record carried by every message on the fabric."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .constants import SCHEMA_VERSION, SYSTEM_USER_ID

M = TypeVar("M", bound=BaseModel)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class EventEnvelope(BaseModel):
    """Immutable wire envelope.

    Only ``data`` belongs to the event type; every other field is fixed by
    the fabric. Intermediaries never touch the envelope: operational metadata
    such as the retry count travels in transport headers instead.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    schema_version: str = Field(default=SCHEMA_VERSION, min_length=1)
    event_type: str = Field(..., min_length=1, description="Routing key, e.g. 'user.registered'")
    client_generated_id: str = Field(..., description="Idempotency key, stable across retries")
    user_id: str = Field(..., description="Subject UUID or 'system'")
    timestamp: datetime = Field(default_factory=_utcnow)
    source_service: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("client_generated_id")
    @classmethod
    def _check_client_generated_id(cls, value: str) -> str:
        uuid.UUID(value)
        return value

    @field_validator("user_id")
    @classmethod
    def _check_user_id(cls, value: str) -> str:
        if value != SYSTEM_USER_ID:
            uuid.UUID(value)
        return value

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("timestamp")
    def _rfc3339(self, value: datetime) -> str:
        return value.isoformat().replace("+00:00", "Z")

    @property
    def is_system(self) -> bool:
        return self.user_id == SYSTEM_USER_ID

    def data_as(self, model: type[M]) -> M:
        """Validate ``data`` into the handler's own payload model."""
        return model.model_validate(self.data)


def new_envelope(
    event_type: str,
    data: dict[str, Any] | BaseModel | None = None,
    *,
    source_service: str,
    user_id: str | None = None,
    client_generated_id: str | None = None,
    timestamp: datetime | None = None,
) -> EventEnvelope:
    """Build an envelope for a fresh logical event.

    A new ``client_generated_id`` is generated unless one is given; pass the
    same id when re-emitting the same logical event. ``user_id`` defaults to
    ``"system"``.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    fields: dict[str, Any] = {
        "event_type": event_type,
        "client_generated_id": client_generated_id or str(uuid.uuid4()),
        "user_id": user_id or SYSTEM_USER_ID,
        "source_service": source_service,
        "data": data or {},
    }
    if timestamp is not None:
        fields["timestamp"] = timestamp
    return EventEnvelope(**fields)
