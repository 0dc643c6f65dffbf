"""EventPipeline — decode, deduplicate, dispatch, commit.

The pipeline is transport-agnostic: it turns one delivery body into a
:class:`ProcessingResult` and leaves the terminal broker action (ack,
republish, dead-letter, reject) to the consumer.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from liftbus_core.correlation import correlation_scope
from liftbus_core.ports.idempotency import IdempotencyStatus
from liftbus_observability.structured_logging import StructuredEventLogger

from .exceptions import EnvelopeDecodeError
from .handlers import IdempotentHandler
from .headers import read_retry_count
from .serialization import EnvelopeSerializer

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Mapping

    from liftbus_core.ports.idempotency import IIdempotencyStore
    from liftbus_core.ports.messaging import IMessagePublisher

    from .envelope import EventEnvelope
    from .handlers import HandlerRegistry, UnitOfWorkFactory

logger = logging.getLogger("liftbus.messaging.pipeline")


class ProcessingOutcome(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNKNOWN_EVENT = "unknown_event"
    POISON = "poison"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessingResult:
    outcome: ProcessingOutcome
    routing_key: str
    retry_count: int = 0
    envelope: EventEnvelope | None = None
    error: BaseException | None = None
    duration: float = 0.0

    @property
    def should_ack(self) -> bool:
        """True when the delivery is finished and only needs an ack."""
        return self.outcome in (
            ProcessingOutcome.PROCESSED,
            ProcessingOutcome.DUPLICATE,
            ProcessingOutcome.UNKNOWN_EVENT,
        )


class EventPipeline:
    """
    Processes one delivery body for a service.

    Steps:
    1. Decode the envelope. Failure -> ``POISON``; no handler runs.
    2. Look up the handler by ``event_type``. Missing -> ``UNKNOWN_EVENT``.
    3. Open a unit of work and mark ``client_generated_id`` processed.
       Already seen -> commit empty, ``DUPLICATE``.
    4. Run the handler in the same unit of work and commit -> ``PROCESSED``.
       Any exception rolls back the marker together with the handler's
       writes -> ``FAILED``.

    Cancellation is not an outcome: ``asyncio.CancelledError`` rolls the unit
    of work back and propagates so the delivery stays un-acked.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        store: IIdempotencyStore,
        uow_factory: UnitOfWorkFactory,
        *,
        service: str,
        queue: str = "",
        publisher: IMessagePublisher | None = None,
        serializer: EnvelopeSerializer | None = None,
        structured_logger: StructuredEventLogger | None = None,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._uow_factory = uow_factory
        self._service = service
        self._queue = queue
        self._publisher = publisher
        self._serializer = serializer or EnvelopeSerializer()
        self._structured = structured_logger or StructuredEventLogger()
        self._shutdown = shutdown

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    async def process(
        self,
        body: bytes,
        routing_key: str,
        headers: Mapping[str, Any] | None = None,
    ) -> ProcessingResult:
        started = time.perf_counter()
        retry_count = read_retry_count(headers)

        try:
            envelope = self._serializer.decode(body)
        except EnvelopeDecodeError as e:
            logger.error(
                "Failed to decode envelope routing_key=%s queue=%s error=%s",
                routing_key,
                self._queue,
                e,
            )
            return self._finish(
                ProcessingOutcome.POISON, routing_key, retry_count, started, error=e
            )

        with correlation_scope(envelope.client_generated_id):
            return await self._dispatch(envelope, body, routing_key, retry_count, started)

    async def _dispatch(
        self,
        envelope: EventEnvelope,
        body: bytes,
        routing_key: str,
        retry_count: int,
        started: float,
    ) -> ProcessingResult:
        if envelope.event_type != routing_key:
            logger.warning(
                "Envelope event_type does not match routing key event_type=%s routing_key=%s",
                envelope.event_type,
                routing_key,
            )

        handler = self._registry.get(envelope.event_type)
        if handler is None:
            logger.info(
                "No handler registered, acknowledging event_type=%s client_generated_id=%s",
                envelope.event_type,
                envelope.client_generated_id,
            )
            return self._finish(
                ProcessingOutcome.UNKNOWN_EVENT, routing_key, retry_count, started, envelope
            )

        runner = IdempotentHandler(handler, self._store, self._uow_factory)
        context: dict[str, Any] = {
            "routing_key": routing_key,
            "retry_count": retry_count,
            "queue": self._queue,
            "source_service": self._service,
            "publisher": self._publisher,
        }
        if self._shutdown is not None:
            context["shutdown"] = self._shutdown

        try:
            status = await runner(envelope, body, **context)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Handler failed event_type=%s client_generated_id=%s retry_count=%d error=%s",
                envelope.event_type,
                envelope.client_generated_id,
                retry_count,
                e,
                exc_info=True,
            )
            return self._finish(
                ProcessingOutcome.FAILED, routing_key, retry_count, started, envelope, error=e
            )

        if status is IdempotencyStatus.ALREADY_SEEN:
            return self._finish(
                ProcessingOutcome.DUPLICATE, routing_key, retry_count, started, envelope
            )
        return self._finish(
            ProcessingOutcome.PROCESSED, routing_key, retry_count, started, envelope
        )

    def _finish(
        self,
        outcome: ProcessingOutcome,
        routing_key: str,
        retry_count: int,
        started: float,
        envelope: EventEnvelope | None = None,
        *,
        error: BaseException | None = None,
    ) -> ProcessingResult:
        duration = time.perf_counter() - started
        extra: dict[str, Any] = {}
        if error is not None:
            extra["error"] = str(error)
        self._structured.record(
            outcome=outcome.value,
            duration_ms=duration * 1000,
            event_type=envelope.event_type if envelope else None,
            client_generated_id=envelope.client_generated_id if envelope else None,
            routing_key=routing_key,
            queue=self._queue,
            retry_count=retry_count,
            **extra,
        )
        return ProcessingResult(
            outcome=outcome,
            routing_key=routing_key,
            retry_count=retry_count,
            envelope=envelope,
            error=error,
            duration=duration,
        )
