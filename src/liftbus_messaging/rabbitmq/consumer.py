"""RabbitMQEventConsumer — drains one service queue through the event pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from ..constants import DEFAULT_PREFETCH_COUNT, DEFAULT_SHUTDOWN_GRACE_SECONDS
from ..dead_letter import DeadLetterHandler, Disposition
from ..exceptions import MessagingError
from ..pipeline import ProcessingOutcome
from .topology import declare_topology

if TYPE_CHECKING:
    from collections.abc import Iterable

    from aio_pika.abc import (
        AbstractChannel,
        AbstractIncomingMessage,
        AbstractQueueIterator,
    )

    from liftbus_observability.metrics import BusMetrics

    from ..pipeline import EventPipeline
    from ..retry import RetryPolicy
    from .connection import RabbitMQConnectionManager

logger = logging.getLogger("liftbus.messaging.consumer")


class RabbitMQEventConsumer:
    """Consumes a service's single-active-consumer queue with manual acks.

    On :meth:`start` the consumer opens its own channel, sets the prefetch,
    declares the shared topology, binds its routing keys and begins draining
    the queue in a background task. Deliveries are processed one at a time;
    each ends in exactly one terminal action:

    * processed, duplicate or unknown event type: ack
    * handler failure: republish with ``x-retry-count + 1`` or dead-letter, then ack
    * undecodable body: ``nack(requeue=False)`` or dead-letter

    :meth:`stop` cancels the broker consumer, lets the in-flight delivery
    finish within the grace window and then cancels it. A cancelled delivery
    is rolled back and left un-acked so the broker redelivers it.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        pipeline: EventPipeline,
        *,
        queue_name: str,
        routing_keys: Iterable[str] | None = None,
        prefetch_count: int = DEFAULT_PREFETCH_COUNT,
        retry_policy: RetryPolicy | None = None,
        poison_to_dlq: bool = False,
        metrics: BusMetrics | None = None,
    ) -> None:
        """Configure consumer.

        Args:
            connection: Shared connection manager; the consumer opens its own channel.
            pipeline: Decodes, deduplicates and dispatches each delivery.
            queue_name: Durable queue to consume, usually ``<service>.events``.
            routing_keys: Keys to bind; defaults to the pipeline's registered event types.
            prefetch_count: Channel QoS. Use 1 for heavy per-message work.
            retry_policy: Retry budget for failed deliveries.
            poison_to_dlq: Dead-letter undecodable bodies instead of rejecting them.
            metrics: Optional metrics sink.
        """
        if prefetch_count < 1:
            raise ValueError("prefetch_count must be >= 1")
        self._connection = connection
        self._pipeline = pipeline
        self._queue_name = queue_name
        self._routing_keys = list(routing_keys) if routing_keys else None
        self._prefetch_count = prefetch_count
        self._retry_policy = retry_policy
        self._poison_to_dlq = poison_to_dlq
        self._metrics = metrics

        self._channel: AbstractChannel | None = None
        self._dead_letter: DeadLetterHandler | None = None
        self._iterator: AbstractQueueIterator | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._in_flight = False

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def routing_keys(self) -> list[str]:
        """Explicit keys, or the event types registered when asked."""
        if self._routing_keys is not None:
            return list(self._routing_keys)
        return self._pipeline.registry.event_types

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def dead_letter(self) -> DeadLetterHandler:
        if self._dead_letter is None:
            raise MessagingError("Consumer not started; call start() first")
        return self._dead_letter

    async def start(self) -> None:
        """Declare topology and start draining the queue. Idempotent."""
        if self.running:
            return
        channel = await self._connection.open_channel()
        await channel.set_qos(prefetch_count=self._prefetch_count)
        topology = await declare_topology(channel, self._queue_name, self.routing_keys)
        assert topology.queue is not None

        self._channel = channel
        self._dead_letter = DeadLetterHandler(
            events_exchange=topology.events_exchange,
            dlq_exchange=topology.dlq_exchange,
            policy=self._retry_policy,
            queue=self._queue_name,
            metrics=self._metrics,
            poison_to_dlq=self._poison_to_dlq,
        )
        self._iterator = topology.queue.iterator()
        self._ready.clear()
        self._task = asyncio.create_task(
            self._consume(self._iterator), name=f"consume:{self._queue_name}"
        )
        await self._ready.wait()
        if self._metrics is not None:
            self._metrics.set_active_consumers(self._queue_name, 1)
        logger.info(
            "Consumer started queue=%s routing_keys=%s prefetch=%d",
            self._queue_name,
            ",".join(self.routing_keys),
            self._prefetch_count,
        )

    async def _consume(self, iterator: AbstractQueueIterator) -> None:
        try:
            async with iterator:
                self._ready.set()
                async for message in iterator:
                    self._in_flight = True
                    try:
                        await self.handle_message(message)
                    finally:
                        self._in_flight = False
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled queue=%s", self._queue_name)
        except Exception:
            logger.error(
                "Consumer loop failed queue=%s", self._queue_name, exc_info=True
            )
            raise
        finally:
            self._ready.set()
            logger.info("Consumer loop stopped queue=%s", self._queue_name)

    async def handle_message(self, message: AbstractIncomingMessage) -> Disposition:
        """Run one delivery through the pipeline and perform its terminal action."""
        routing_key = message.routing_key or ""
        if self._metrics is not None:
            self._metrics.message_consumed(self._queue_name, routing_key)

        result = await self._pipeline.process(message.body, routing_key, message.headers)

        try:
            if result.should_ack:
                await message.ack()
                if self._metrics is not None and result.outcome is ProcessingOutcome.PROCESSED:
                    self._metrics.message_processed(
                        self._queue_name, routing_key, result.duration
                    )
                return Disposition.ACKED
            if result.outcome is ProcessingOutcome.POISON:
                return await self.dead_letter.handle_poison(message, routing_key, result.error)
            if self._metrics is not None:
                self._metrics.message_failed(
                    self._queue_name, routing_key, result.retry_count, result.duration
                )
            return await self.dead_letter.handle_failure(message, routing_key, result.error)
        except Exception:
            # Channel lost between processing and the terminal action; the
            # broker redelivers the message and idempotency absorbs it.
            logger.error(
                "Failed to settle delivery queue=%s routing_key=%s outcome=%s",
                self._queue_name,
                routing_key,
                result.outcome.value,
                exc_info=True,
            )
            return Disposition.DROPPED

    async def stop(self, grace: float = DEFAULT_SHUTDOWN_GRACE_SECONDS) -> None:
        """Stop fetching, wait up to *grace* seconds for the in-flight delivery, close."""
        task, self._task = self._task, None
        iterator, self._iterator = self._iterator, None

        if iterator is not None:
            try:
                await iterator.close()
            except Exception as e:  # noqa: BLE001
                logger.warning("Failed to cancel consumer queue=%s: %s", self._queue_name, e)

        if task is not None and not task.done():
            if not self._in_flight:
                task.cancel()
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning(
                    "In-flight delivery exceeded shutdown grace, cancelling queue=%s grace=%.1fs",
                    self._queue_name,
                    grace,
                )
                task.cancel()
            except asyncio.CancelledError:
                pass
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._channel is not None:
            channel, self._channel = self._channel, None
            if not channel.is_closed:
                try:
                    await channel.close()
                except Exception as e:  # noqa: BLE001
                    logger.warning("Failed to close channel queue=%s: %s", self._queue_name, e)

        if self._metrics is not None:
            self._metrics.set_active_consumers(self._queue_name, 0)
        logger.info("Consumer stopped queue=%s", self._queue_name)

    async def health_check(self) -> bool:
        """Return True if the connection is healthy and the loop is running."""
        return self.running and await self._connection.health_check()
