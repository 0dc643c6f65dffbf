"""Exchange and queue layout shared by every service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aio_pika

from ..constants import (
    DLQ_EXCHANGE,
    DLQ_QUEUE,
    EVENTS_EXCHANGE,
    SINGLE_ACTIVE_CONSUMER_ARG,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

logger = logging.getLogger("liftbus.messaging.topology")


@dataclass(frozen=True)
class Topology:
    events_exchange: AbstractExchange
    dlq_exchange: AbstractExchange
    dlq_queue: AbstractQueue
    queue: AbstractQueue | None = None


async def declare_events_exchange(channel: AbstractChannel) -> AbstractExchange:
    """Declare ``app.events``: topic, durable, not auto-deleted."""
    return await channel.declare_exchange(
        EVENTS_EXCHANGE,
        aio_pika.ExchangeType.TOPIC,
        durable=True,
        auto_delete=False,
    )


async def declare_dead_letter(
    channel: AbstractChannel,
) -> tuple[AbstractExchange, AbstractQueue]:
    """Declare ``app.dlq`` (direct) and ``app.dlq.queue`` bound by its own name."""
    exchange = await channel.declare_exchange(
        DLQ_EXCHANGE,
        aio_pika.ExchangeType.DIRECT,
        durable=True,
        auto_delete=False,
    )
    queue = await channel.declare_queue(DLQ_QUEUE, durable=True, auto_delete=False)
    await queue.bind(exchange, routing_key=DLQ_QUEUE)
    return exchange, queue


async def declare_service_queue(
    channel: AbstractChannel,
    exchange: AbstractExchange,
    queue_name: str,
    routing_keys: Iterable[str],
) -> AbstractQueue:
    """Declare a service's durable single-active-consumer queue and bind its routing keys."""
    queue = await channel.declare_queue(
        queue_name,
        durable=True,
        auto_delete=False,
        arguments={SINGLE_ACTIVE_CONSUMER_ARG: True},
    )
    for routing_key in routing_keys:
        await queue.bind(exchange, routing_key=routing_key)
        logger.info(
            "Bound queue to exchange queue=%s exchange=%s routing_key=%s",
            queue_name,
            exchange.name,
            routing_key,
        )
    return queue


async def declare_topology(
    channel: AbstractChannel,
    queue_name: str | None = None,
    routing_keys: Iterable[str] = (),
) -> Topology:
    """Declare the whole layout; every declaration is idempotent."""
    events = await declare_events_exchange(channel)
    dlq_exchange, dlq_queue = await declare_dead_letter(channel)
    queue = None
    if queue_name is not None:
        queue = await declare_service_queue(channel, events, queue_name, routing_keys)
    return Topology(events, dlq_exchange, dlq_queue, queue)
