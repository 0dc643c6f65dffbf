"""Broker doubles and fixtures for messaging tests.

``FakeBroker`` stands in for an aio-pika connection: channels declare
exchanges and queues, publishes to an exchange are routed to the queues
bound with the exact routing key, and queue iterators yield
``FakeIncomingMessage`` objects whose ack/nack are ``AsyncMock``s.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from liftbus_core.adapters.memory import InMemoryIdempotencyStore, InMemoryUnitOfWork
from liftbus_messaging.envelope import EventEnvelope, new_envelope
from liftbus_messaging.handlers import HandlerRegistry
from liftbus_messaging.headers import read_retry_count
from liftbus_messaging.memory import InMemoryPublisher
from liftbus_messaging.pipeline import EventPipeline
from liftbus_messaging.serialization import EnvelopeSerializer

USER_ID = "b74e0000-0000-0000-0000-000000000001"

_STOP = object()


class FakeIncomingMessage:
    def __init__(
        self,
        body: bytes,
        routing_key: str,
        headers: dict[str, Any] | None = None,
        *,
        exchange: str = "app.events",
        content_type: str | None = "application/json",
        message_id: str | None = None,
        **properties: Any,
    ) -> None:
        self.body = body
        self.routing_key = routing_key
        self.headers = dict(headers or {})
        self.exchange = exchange
        self.content_type = content_type
        self.message_id = message_id
        self.content_encoding = properties.get("content_encoding")
        self.priority = properties.get("priority")
        self.correlation_id = properties.get("correlation_id")
        self.reply_to = properties.get("reply_to")
        self.timestamp = properties.get("timestamp")
        self.type = properties.get("type")
        self.app_id = properties.get("app_id")
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()

    @property
    def retry_count(self) -> int:
        return read_retry_count(self.headers)

    @property
    def terminal_calls(self) -> int:
        return self.ack.await_count + self.nack.await_count + self.reject.await_count


class FakeExchange:
    def __init__(self, broker: FakeBroker, name: str, kind: Any) -> None:
        self._broker = broker
        self.name = name
        self.kind = kind
        self.published: list[tuple[str, Any, dict[str, Any]]] = []
        self.fail_with: BaseException | None = None

    async def publish(self, message: Any, routing_key: str, **kwargs: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.published.append((routing_key, message, kwargs))
        self._broker.route(self.name, routing_key, message)


class FakeQueueIterator:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def put(self, message: FakeIncomingMessage) -> None:
        self._queue.put_nowait(message)

    async def __aenter__(self) -> FakeQueueIterator:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def __aiter__(self) -> FakeQueueIterator:
        return self

    async def __anext__(self) -> FakeIncomingMessage:
        item = await self._queue.get()
        if item is _STOP:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_STOP)


class FakeQueue:
    def __init__(self, name: str, arguments: dict[str, Any] | None) -> None:
        self.name = name
        self.arguments = arguments or {}
        self.bindings: list[tuple[str, str]] = []
        self.messages: list[FakeIncomingMessage] = []
        self.iterators: list[FakeQueueIterator] = []

    async def bind(self, exchange: FakeExchange, routing_key: str, **kwargs: Any) -> None:
        self.bindings.append((exchange.name, routing_key))

    def iterator(self, **kwargs: Any) -> FakeQueueIterator:
        it = FakeQueueIterator()
        self.iterators.append(it)
        return it

    def deliver(self, message: FakeIncomingMessage) -> None:
        self.messages.append(message)
        for it in self.iterators:
            if not it.closed:
                it.put(message)
                break


class FakeChannel:
    def __init__(self, broker: FakeBroker) -> None:
        self._broker = broker
        self.prefetch_count: int | None = None
        self.is_closed = False

    async def set_qos(self, prefetch_count: int, **kwargs: Any) -> None:
        self.prefetch_count = prefetch_count

    async def declare_exchange(
        self, name: str, kind: Any, durable: bool = False, auto_delete: bool = False, **kwargs: Any
    ) -> FakeExchange:
        self._broker.exchange_declarations.append((name, kind, durable, auto_delete))
        return self._broker.exchanges.setdefault(name, FakeExchange(self._broker, name, kind))

    async def declare_queue(
        self,
        name: str,
        durable: bool = False,
        auto_delete: bool = False,
        arguments: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> FakeQueue:
        self._broker.queue_declarations.append((name, durable, arguments))
        return self._broker.queues.setdefault(name, FakeQueue(name, arguments))

    async def close(self) -> None:
        self.is_closed = True


class FakeBroker:
    def __init__(self) -> None:
        self.exchanges: dict[str, FakeExchange] = {}
        self.queues: dict[str, FakeQueue] = {}
        self.channels: list[FakeChannel] = []
        self.exchange_declarations: list[tuple[str, Any, bool, bool]] = []
        self.queue_declarations: list[tuple[str, bool, dict[str, Any] | None]] = []

        self.connection = MagicMock()
        self.connection.connect = AsyncMock()
        self.connection.close = AsyncMock()
        self.connection.health_check = AsyncMock(return_value=True)
        self.connection.open_channel = AsyncMock(side_effect=self._open_channel)

    async def _open_channel(self, **kwargs: Any) -> FakeChannel:
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel

    def route(self, exchange: str, routing_key: str, message: Any) -> None:
        for queue in self.queues.values():
            if (exchange, routing_key) in queue.bindings:
                queue.deliver(
                    FakeIncomingMessage(
                        message.body,
                        routing_key,
                        dict(message.headers or {}),
                        exchange=exchange,
                        content_type=message.content_type,
                        message_id=message.message_id,
                        content_encoding=message.content_encoding,
                        priority=message.priority,
                        correlation_id=message.correlation_id,
                        reply_to=message.reply_to,
                        timestamp=message.timestamp,
                        type=message.type,
                        app_id=message.app_id,
                    )
                )

    def deliver(
        self,
        queue: str,
        body: bytes,
        routing_key: str,
        headers: dict[str, Any] | None = None,
    ) -> FakeIncomingMessage:
        """Put a message straight onto *queue*, as if the broker routed it."""
        message = FakeIncomingMessage(body, routing_key, headers)
        self.queues[queue].deliver(message)
        return message

    def messages(self, queue: str) -> list[FakeIncomingMessage]:
        q = self.queues.get(queue)
        return list(q.messages) if q else []

    async def wait_for(self, predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while not predicate():
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def serializer() -> EnvelopeSerializer:
    return EnvelopeSerializer()


@pytest.fixture
def make_envelope() -> Callable[..., EventEnvelope]:
    def _make(event_type: str = "user.registered", **overrides: Any) -> EventEnvelope:
        overrides.setdefault("source_service", "auth-service")
        overrides.setdefault("user_id", USER_ID)
        data = overrides.pop("data", {"email": "a@x"})
        return new_envelope(event_type, data, **overrides)

    return _make


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def publisher() -> InMemoryPublisher:
    return InMemoryPublisher()


@pytest.fixture
def pipeline(
    registry: HandlerRegistry,
    store: InMemoryIdempotencyStore,
    publisher: InMemoryPublisher,
) -> EventPipeline:
    return EventPipeline(
        registry,
        store,
        InMemoryUnitOfWork,
        service="reminder-service",
        queue="reminder-service.events",
        publisher=publisher,
    )


@pytest.fixture
def incoming() -> type[FakeIncomingMessage]:
    return FakeIncomingMessage
