"""Handler registry, per-delivery context and the idempotent handler wrapper."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from liftbus_core.ports.idempotency import IdempotencyStatus
from liftbus_core.primitives.exceptions import HandlerError, HandlerRegistrationError

from .envelope import EventEnvelope, new_envelope

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pydantic import BaseModel

    from liftbus_core.ports.idempotency import IIdempotencyStore
    from liftbus_core.ports.messaging import IMessagePublisher
    from liftbus_core.ports.unit_of_work import UnitOfWork

    EventHandler = Callable[["EventContext", bytes], Awaitable[None]]
    UnitOfWorkFactory = Callable[[], UnitOfWork]

logger = logging.getLogger("liftbus.messaging.handlers")


@dataclass
class EventContext:
    """Everything a handler may use while processing one delivery.

    ``uow`` is the transaction the idempotency marker was written in; the
    handler's own writes must go through it (``ctx.uow.session`` for the
    SQLAlchemy adapter). ``shutdown`` is set when the service is stopping;
    long-running handlers should check it and return early.
    """

    envelope: EventEnvelope
    uow: UnitOfWork
    routing_key: str
    retry_count: int = 0
    queue: str = ""
    source_service: str = ""
    publisher: IMessagePublisher | None = None
    shutdown: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def shutting_down(self) -> bool:
        return self.shutdown.is_set()

    def emit(
        self,
        event_type: str,
        data: dict[str, Any] | BaseModel | None = None,
        *,
        user_id: str | None = None,
        client_generated_id: str | None = None,
    ) -> EventEnvelope:
        """Queue a downstream event; it is published only after the transaction commits.

        The subject defaults to the current event's ``user_id``. Returns the
        envelope that will be published.
        """
        publisher = self.publisher
        if publisher is None:
            raise HandlerError("No publisher configured; cannot emit downstream events")
        envelope = new_envelope(
            event_type,
            data,
            source_service=self.source_service or self.envelope.source_service,
            user_id=user_id or self.envelope.user_id,
            client_generated_id=client_generated_id,
        )

        async def _publish() -> None:
            await publisher.publish(event_type, envelope)

        self.uow.on_commit(_publish)
        return envelope


class HandlerRegistry:
    """Maps an event type to exactly one handler.

    A second registration for the same event type raises
    :class:`HandlerRegistrationError`. The registered event types double as
    the default routing keys a consumer binds its queue with.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        if not event_type:
            raise ValueError("event_type must not be empty")
        existing = self._handlers.get(event_type)
        if existing is not None and existing is not handler:
            raise HandlerRegistrationError(event_type)
        self._handlers[event_type] = handler
        logger.debug(
            "Registered handler %s -> %s",
            event_type,
            getattr(handler, "__qualname__", type(handler).__name__),
        )

    def handler(self, event_type: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of :meth:`register`."""

        def _decorator(fn: EventHandler) -> EventHandler:
            self.register(event_type, fn)
            return fn

        return _decorator

    def get(self, event_type: str) -> EventHandler | None:
        return self._handlers.get(event_type)

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


class IdempotentHandler:
    """Runs a handler at most once per ``client_generated_id``.

    Opens a unit of work, marks the event processed, and invokes the wrapped
    handler inside that same unit of work. A duplicate commits an empty
    transaction and skips the handler. A handler exception rolls the whole
    unit of work back (marker included) and propagates to the caller.

    Example:
        ```python
        run = IdempotentHandler(on_user_registered, store, uow_factory)
        status = await run(envelope, body)
        ```
    """

    def __init__(
        self,
        handler: EventHandler,
        store: IIdempotencyStore,
        uow_factory: UnitOfWorkFactory,
    ) -> None:
        self._handler = handler
        self._store = store
        self._uow_factory = uow_factory

    async def __call__(
        self,
        envelope: EventEnvelope,
        payload: bytes,
        **context: Any,
    ) -> IdempotencyStatus:
        """Process *envelope*; *context* supplies the remaining EventContext fields."""
        context.setdefault("routing_key", envelope.event_type)
        async with self._uow_factory() as uow:
            status = await self._store.check_and_mark_processed(
                uow,
                envelope.client_generated_id,
                envelope.event_type,
                envelope.user_id,
            )
            if status is IdempotencyStatus.ALREADY_SEEN:
                return status
            await self._handler(EventContext(envelope=envelope, uow=uow, **context), payload)
        return status
