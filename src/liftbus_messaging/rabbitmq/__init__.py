"""RabbitMQ transport adapter built on aio-pika."""

from __future__ import annotations

from .connection import RabbitMQConnectionManager
from .consumer import RabbitMQEventConsumer
from .publisher import RabbitMQPublisher
from .topology import (
    Topology,
    declare_dead_letter,
    declare_events_exchange,
    declare_service_queue,
    declare_topology,
)

__all__ = [
    "RabbitMQConnectionManager",
    "RabbitMQEventConsumer",
    "RabbitMQPublisher",
    "Topology",
    "declare_dead_letter",
    "declare_events_exchange",
    "declare_service_queue",
    "declare_topology",
]
