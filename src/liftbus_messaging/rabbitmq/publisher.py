"""RabbitMQPublisher — durable JSON publishes onto the shared topic exchange."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import AMQPError
from pydantic import BaseModel

from liftbus_core.ports.messaging import IMessagePublisher

from ..constants import EVENTS_EXCHANGE, RETRY_HEADER
from ..envelope import EventEnvelope
from ..exceptions import MessagingSerializationError, PublishError
from ..serialization import EnvelopeSerializer

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aio_pika.abc import AbstractExchange

    from liftbus_observability.metrics import BusMetrics

    from .connection import RabbitMQConnectionManager

logger = logging.getLogger("liftbus.messaging.publisher")


class RabbitMQPublisher(IMessagePublisher):
    """RabbitMQ adapter implementing IMessagePublisher.

    The routing key is the event type. Publishes are persistent,
    ``application/json`` and non-mandatory: a message no queue is bound for
    is dropped by the broker. Failed publishes are not retried here; the
    broker error is raised as :class:`PublishError` with the original as
    ``__cause__``.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        *,
        exchange_name: str = EVENTS_EXCHANGE,
        serializer: EnvelopeSerializer | None = None,
        metrics: BusMetrics | None = None,
    ) -> None:
        """Configure publisher.

        Args:
            connection: Shared connection manager; the publisher opens its own channel.
            exchange_name: Topic exchange to publish to.
            serializer: Used for envelopes; default EnvelopeSerializer().
            metrics: Optional metrics sink.
        """
        self._connection = connection
        self._exchange_name = exchange_name
        self._serializer = serializer or EnvelopeSerializer()
        self._metrics = metrics
        self._exchange: AbstractExchange | None = None
        self._lock = asyncio.Lock()

    @property
    def exchange_name(self) -> str:
        return self._exchange_name

    async def _ensure_exchange(self) -> AbstractExchange:
        """Open a channel and declare the exchange once per publisher."""
        if self._exchange is not None:
            return self._exchange
        async with self._lock:
            if self._exchange is None:
                channel = await self._connection.open_channel()
                self._exchange = await channel.declare_exchange(
                    self._exchange_name,
                    aio_pika.ExchangeType.TOPIC,
                    durable=True,
                    auto_delete=False,
                )
        return self._exchange

    def _encode(self, payload: Any) -> tuple[bytes, str | None]:
        if isinstance(payload, EventEnvelope):
            return self._serializer.encode(payload), payload.client_generated_id
        if isinstance(payload, bytes):
            return payload, None
        try:
            if isinstance(payload, BaseModel):
                payload = payload.model_dump(mode="json")
            return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8"), None
        except (TypeError, ValueError) as e:
            raise MessagingSerializationError(str(e)) from e

    async def publish(
        self,
        routing_key: str,
        payload: Any,
        *,
        headers: Mapping[str, Any] | None = None,
        **kwargs: Any,  # noqa: ARG002
    ) -> None:
        """Publish *payload* under *routing_key*.

        *payload* may be an :class:`EventEnvelope`, a pydantic model, a
        JSON-serializable value, or already encoded bytes.
        """
        body, message_id = self._encode(payload)
        message_headers = {k: v for k, v in (headers or {}).items() if k != RETRY_HEADER}
        message = aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            headers=message_headers,
            message_id=message_id,
        )
        try:
            exchange = await self._ensure_exchange()
            await exchange.publish(message, routing_key=routing_key, mandatory=False)
        except (AMQPError, ConnectionError, OSError, asyncio.TimeoutError) as e:
            logger.error(
                "Failed to publish message exchange=%s routing_key=%s error=%s",
                self._exchange_name,
                routing_key,
                e,
            )
            if self._metrics is not None:
                self._metrics.publish_error(self._exchange_name, routing_key)
            raise PublishError(f"Failed to publish to {routing_key!r}: {e}", routing_key) from e

        logger.debug(
            "Published message exchange=%s routing_key=%s", self._exchange_name, routing_key
        )
        if self._metrics is not None:
            self._metrics.message_published(self._exchange_name, routing_key)

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
