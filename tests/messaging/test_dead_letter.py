"""Tests for DeadLetterHandler with mocked exchanges."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import aio_pika
import pytest
from prometheus_client import CollectorRegistry

from liftbus_messaging.constants import (
    DEATH_REASON_HEADER,
    DLQ_QUEUE,
    ORIGINAL_EXCHANGE_HEADER,
    ORIGINAL_ROUTING_KEY_HEADER,
    RETRY_HEADER,
)
from liftbus_messaging.dead_letter import DeadLetterHandler, Disposition
from liftbus_messaging.exceptions import DeadLetterError
from liftbus_messaging.retry import RetryPolicy
from liftbus_observability.metrics import BusMetrics


def _exchange(name: str) -> MagicMock:
    exchange = MagicMock()
    exchange.name = name
    exchange.publish = AsyncMock()
    return exchange


def _message(
    headers: dict | None = None, exchange: str = "app.events", **properties: object
) -> MagicMock:
    message = MagicMock()
    message.body = b'{"event_type":"order.created"}'
    message.headers = headers or {}
    message.exchange = exchange
    message.content_type = "application/json"
    message.message_id = "m-1"
    for name in (
        "content_encoding",
        "priority",
        "correlation_id",
        "reply_to",
        "timestamp",
        "type",
        "app_id",
    ):
        setattr(message, name, properties.get(name))
    message.ack = AsyncMock()
    message.nack = AsyncMock()
    return message


@pytest.fixture
def events() -> MagicMock:
    return _exchange("app.events")


@pytest.fixture
def dlq() -> MagicMock:
    return _exchange("app.dlq")


@pytest.fixture
def handler(events: MagicMock, dlq: MagicMock) -> DeadLetterHandler:
    return DeadLetterHandler(events_exchange=events, dlq_exchange=dlq, queue="orders.events")


@pytest.mark.asyncio
async def test_failure_below_budget_republishes_with_incremented_count(
    handler: DeadLetterHandler, events: MagicMock, dlq: MagicMock
) -> None:
    message = _message({RETRY_HEADER: 2, "trace": "t"})

    assert await handler.handle_failure(message, "order.created") is Disposition.REPUBLISHED

    events.publish.assert_awaited_once()
    republished = events.publish.call_args.args[0]
    assert events.publish.call_args.kwargs["routing_key"] == "order.created"
    assert republished.body == message.body
    assert republished.headers == {RETRY_HEADER: 3, "trace": "t"}
    assert republished.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
    dlq.publish.assert_not_awaited()
    message.ack.assert_awaited_once()
    message.nack.assert_not_awaited()


@pytest.mark.asyncio
async def test_first_failure_has_no_header(handler: DeadLetterHandler, events: MagicMock) -> None:
    await handler.handle_failure(_message(), "order.created")
    assert events.publish.call_args.args[0].headers == {RETRY_HEADER: 1}


@pytest.mark.asyncio
async def test_exhausted_budget_goes_to_dlq(
    handler: DeadLetterHandler, events: MagicMock, dlq: MagicMock
) -> None:
    message = _message({RETRY_HEADER: 5})

    assert await handler.handle_failure(message, "order.created") is Disposition.DEAD_LETTERED

    events.publish.assert_not_awaited()
    dlq.publish.assert_awaited_once()
    parked = dlq.publish.call_args.args[0]
    assert dlq.publish.call_args.kwargs["routing_key"] == DLQ_QUEUE
    assert parked.body == message.body
    assert parked.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
    assert parked.headers == {
        RETRY_HEADER: 5,
        ORIGINAL_EXCHANGE_HEADER: "app.events",
        ORIGINAL_ROUTING_KEY_HEADER: "order.created",
        DEATH_REASON_HEADER: "max-retries-exceeded",
    }
    message.ack.assert_awaited_once()


@pytest.mark.asyncio
async def test_original_exchange_falls_back_to_events_exchange(
    handler: DeadLetterHandler, dlq: MagicMock
) -> None:
    await handler.handle_failure(_message({RETRY_HEADER: 9}, exchange=""), "order.created")
    assert dlq.publish.call_args.args[0].headers[ORIGINAL_EXCHANGE_HEADER] == "app.events"


@pytest.mark.asyncio
@pytest.mark.parametrize("retry_count", [0, 5])
async def test_publish_failure_rejects_without_requeue(
    handler: DeadLetterHandler,
    events: MagicMock,
    dlq: MagicMock,
    retry_count: int,
) -> None:
    events.publish.side_effect = ConnectionError("broker down")
    dlq.publish.side_effect = ConnectionError("broker down")
    message = _message({RETRY_HEADER: retry_count})

    assert await handler.handle_failure(message, "order.created") is Disposition.DROPPED

    message.nack.assert_awaited_once_with(requeue=False)
    message.ack.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_reject_raises_dead_letter_error(
    handler: DeadLetterHandler, events: MagicMock
) -> None:
    events.publish.side_effect = ConnectionError("broker down")
    message = _message()
    message.nack.side_effect = ConnectionError("channel closed")

    with pytest.raises(DeadLetterError) as exc_info:
        await handler.handle_failure(message, "order.created")
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    message.ack.assert_not_awaited()


@pytest.mark.asyncio
async def test_poison_is_rejected_by_default(
    handler: DeadLetterHandler, events: MagicMock, dlq: MagicMock
) -> None:
    message = _message()
    assert await handler.handle_poison(message, "user.registered") is Disposition.DROPPED
    message.nack.assert_awaited_once_with(requeue=False)
    message.ack.assert_not_awaited()
    events.publish.assert_not_awaited()
    dlq.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_poison_to_dlq(events: MagicMock, dlq: MagicMock) -> None:
    handler = DeadLetterHandler(events_exchange=events, dlq_exchange=dlq, poison_to_dlq=True)
    message = _message()

    assert await handler.handle_poison(message, "user.registered") is Disposition.DEAD_LETTERED
    headers = dlq.publish.call_args.args[0].headers
    assert headers[DEATH_REASON_HEADER] == "decode-failed"
    assert headers[ORIGINAL_ROUTING_KEY_HEADER] == "user.registered"
    message.ack.assert_awaited_once()
    message.nack.assert_not_awaited()


@pytest.mark.asyncio
async def test_custom_policy_and_metrics(events: MagicMock, dlq: MagicMock) -> None:
    registry = CollectorRegistry()
    handler = DeadLetterHandler(
        events_exchange=events,
        dlq_exchange=dlq,
        policy=RetryPolicy(max_retries=1),
        queue="orders.events",
        metrics=BusMetrics("orders", registry=registry),
    )
    await handler.handle_failure(_message(), "order.created")
    await handler.handle_failure(_message({RETRY_HEADER: 1}), "order.created")

    labels = {"service": "orders", "queue": "orders.events", "routing_key": "order.created"}
    assert (
        registry.get_sample_value("liftbus_message_retries_total", {**labels, "retry_count": "1"})
        == 1.0
    )
    assert registry.get_sample_value("liftbus_messages_dlq_total", labels) == 1.0


@pytest.mark.asyncio
@pytest.mark.parametrize("retry_count", [0, 5])
async def test_copy_keeps_amqp_properties(
    handler: DeadLetterHandler, events: MagicMock, dlq: MagicMock, retry_count: int
) -> None:
    sent_at = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
    message = _message(
        {RETRY_HEADER: retry_count},
        correlation_id="corr-1",
        app_id="auth-service",
        type="user.registered",
        priority=3,
        reply_to="replies",
        timestamp=sent_at,
    )

    await handler.handle_failure(message, "user.registered")

    target = events if retry_count == 0 else dlq
    copied = target.publish.call_args.args[0]
    assert copied.correlation_id == "corr-1"
    assert copied.app_id == "auth-service"
    assert copied.type == "user.registered"
    assert copied.priority == 3
    assert copied.reply_to == "replies"
    assert copied.timestamp is not None
    assert copied.message_id == "m-1"
    assert copied.content_type == "application/json"
