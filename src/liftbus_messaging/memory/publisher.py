"""InMemoryPublisher — IMessagePublisher with assertion helpers for tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from liftbus_core.ports.messaging import IMessagePublisher

from ..envelope import EventEnvelope
from ..exceptions import PublishError


@dataclass(frozen=True)
class PublishedMessage:
    routing_key: str
    payload: Any
    headers: dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str | None:
        if isinstance(self.payload, EventEnvelope):
            return self.payload.event_type
        if isinstance(self.payload, dict):
            return self.payload.get("event_type")
        return None


class InMemoryPublisher(IMessagePublisher):
    """Buffers published messages for assertions.

    Set :attr:`fail_with` to an exception to make every publish raise
    :class:`PublishError` caused by it, the way the broker adapter does.
    """

    def __init__(self) -> None:
        self._published: list[PublishedMessage] = []
        self.fail_with: BaseException | None = None

    async def publish(
        self,
        routing_key: str,
        payload: Any,
        *,
        headers: dict[str, Any] | None = None,
        **kwargs: Any,  # noqa: ARG002
    ) -> None:
        if self.fail_with is not None:
            raise PublishError(
                f"Failed to publish to {routing_key!r}: {self.fail_with}", routing_key
            ) from self.fail_with
        self._published.append(PublishedMessage(routing_key, payload, dict(headers or {})))

    @property
    def published(self) -> list[PublishedMessage]:
        """All messages published so far, in order."""
        return list(self._published)

    def envelopes(self, routing_key: str | None = None) -> list[EventEnvelope]:
        return [
            m.payload
            for m in self._published
            if isinstance(m.payload, EventEnvelope)
            and (routing_key is None or m.routing_key == routing_key)
        ]

    def assert_published(
        self,
        event_type: str,
        count: int = 1,
        routing_key: str | None = None,
    ) -> None:
        """Assert that exactly `count` messages with this event_type were published.

        Optionally restrict to a specific routing key. Raises AssertionError if not met.
        """
        published = self._published
        if routing_key is not None:
            published = [m for m in published if m.routing_key == routing_key]
        matching = [m for m in published if m.event_type == event_type]
        assert len(matching) == count, (
            f"Expected {count} message(s) with event_type={event_type!r}, "
            f"got {len(matching)}. Published: {[m.event_type for m in published]}"
        )

    def clear(self) -> None:
        self._published.clear()

    async def health_check(self) -> bool:
        return True
