"""DeadLetterHandler — the single exit for deliveries that did not succeed."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

import aio_pika

from .constants import DLQ_QUEUE, REASON_MAX_RETRIES, REASON_POISON
from .exceptions import DeadLetterError
from .headers import with_dead_letter_metadata
from .retry import RetryAction, RetryDecision, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from aio_pika.abc import AbstractExchange, AbstractIncomingMessage

    from liftbus_observability.metrics import BusMetrics

logger = logging.getLogger("liftbus.messaging.dlq")


class Disposition(str, enum.Enum):
    """Terminal state of a delivery; each delivery reaches exactly one."""

    ACKED = "acked"
    REPUBLISHED = "republished"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


def _copy_message(message: AbstractIncomingMessage, headers: Mapping[str, Any]) -> aio_pika.Message:
    return aio_pika.Message(
        body=message.body,
        headers=dict(headers),
        content_type=message.content_type or "application/json",
        content_encoding=message.content_encoding,
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        priority=message.priority,
        correlation_id=message.correlation_id,
        reply_to=message.reply_to,
        message_id=message.message_id,
        timestamp=message.timestamp,
        type=message.type,
        app_id=message.app_id,
    )


class DeadLetterHandler:
    """Applies the retry policy to failed deliveries and performs the terminal action.

    A failed delivery is republished with an incremented ``x-retry-count``
    or, once the budget is spent, published to the dead-letter exchange with
    its origin and reason in the headers. The original is acked only after
    that publish succeeded. If the publish itself fails the original is
    rejected with ``requeue=False``: a broker requeue would loop forever on a
    persistent fault.

    Args:
        events_exchange: Exchange failed messages are republished to.
        dlq_exchange: Direct exchange the dead-letter queue is bound to.
        policy: Retry budget; defaults to ``RetryPolicy()``.
        queue: Queue name used for metric labels.
        metrics: Optional metrics sink.
        poison_to_dlq: Publish undecodable deliveries to the dead-letter
            queue instead of rejecting them.
    """

    def __init__(
        self,
        *,
        events_exchange: AbstractExchange,
        dlq_exchange: AbstractExchange,
        policy: RetryPolicy | None = None,
        queue: str = "",
        metrics: BusMetrics | None = None,
        poison_to_dlq: bool = False,
    ) -> None:
        self._events_exchange = events_exchange
        self._dlq_exchange = dlq_exchange
        self._policy = policy or RetryPolicy()
        self._queue = queue
        self._metrics = metrics
        self._poison_to_dlq = poison_to_dlq

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _original_exchange(self, message: AbstractIncomingMessage) -> str:
        return message.exchange or self._events_exchange.name

    async def handle_failure(
        self,
        message: AbstractIncomingMessage,
        routing_key: str,
        error: BaseException | None = None,
    ) -> Disposition:
        """Republish or dead-letter *message*, then ack it."""
        decision: RetryDecision = self._policy.decide(message.headers)

        if decision.action is RetryAction.REPUBLISH:
            published = await self._publish(
                message,
                self._events_exchange,
                routing_key,
                decision.headers,
                description="retry republish",
            )
            if not published:
                return Disposition.DROPPED
            await message.ack()
            logger.warning(
                "Message republished for retry routing_key=%s retry_count=%d max_retries=%d error=%s",
                routing_key,
                decision.retry_count + 1,
                self._policy.max_retries,
                error,
            )
            if self._metrics is not None:
                self._metrics.message_retried(self._queue, routing_key, decision.retry_count + 1)
            return Disposition.REPUBLISHED

        return await self._dead_letter(message, routing_key, REASON_MAX_RETRIES, error, decision.retry_count)

    async def handle_poison(
        self,
        message: AbstractIncomingMessage,
        routing_key: str,
        error: BaseException | None = None,
    ) -> Disposition:
        """Dispose of a delivery whose body could not be decoded. Never retried."""
        if self._poison_to_dlq:
            return await self._dead_letter(message, routing_key, REASON_POISON, error, 0)
        await message.nack(requeue=False)
        logger.error(
            "Poison message rejected without requeue routing_key=%s error=%s",
            routing_key,
            error,
        )
        return Disposition.DROPPED

    async def _dead_letter(
        self,
        message: AbstractIncomingMessage,
        routing_key: str,
        reason: str,
        error: BaseException | None,
        retry_count: int,
    ) -> Disposition:
        headers = with_dead_letter_metadata(
            message.headers,
            original_exchange=self._original_exchange(message),
            original_routing_key=routing_key,
            reason=reason,
        )
        published = await self._publish(
            message, self._dlq_exchange, DLQ_QUEUE, headers, description="dead-letter publish"
        )
        if not published:
            return Disposition.DROPPED
        await message.ack()
        logger.error(
            "Message sent to DLQ routing_key=%s reason=%s retry_count=%d error=%s",
            routing_key,
            reason,
            retry_count,
            error,
        )
        if self._metrics is not None:
            self._metrics.message_dead_lettered(self._queue, routing_key)
        return Disposition.DEAD_LETTERED

    async def _publish(
        self,
        message: AbstractIncomingMessage,
        exchange: AbstractExchange,
        routing_key: str,
        headers: Mapping[str, Any],
        *,
        description: str,
    ) -> bool:
        try:
            await exchange.publish(_copy_message(message, headers), routing_key=routing_key)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "%s failed, rejecting message without requeue exchange=%s routing_key=%s error=%s",
                description,
                exchange.name,
                routing_key,
                e,
                exc_info=True,
            )
            try:
                await message.nack(requeue=False)
            except Exception as nack_error:
                raise DeadLetterError(
                    f"{description} failed and the delivery could not be rejected: {nack_error}",
                    routing_key,
                ) from e
            return False
        return True
