from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class IMessagePublisher(Protocol):
    """
    Port for publishing events onto the shared exchange.

    Infrastructure packages provide concrete adapters (RabbitMQ, in-memory).
    """

    async def publish(self, routing_key: str, payload: Any, **kwargs: Any) -> None:
        """
        Publish *payload* under *routing_key*.

        Args:
            routing_key: Broker routing key; equals the envelope ``event_type``.
            payload: An envelope, a pydantic model, or a JSON-serializable mapping.
            **kwargs: Transport-specific metadata (headers, …).

        Raises:
            PublishError: The broker rejected the publish. Retrying is the
                caller's responsibility.
        """
        ...
