"""Tests for EventPipeline with in-memory adapters."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from liftbus_core.adapters.memory import InMemoryIdempotencyStore, InMemoryUnitOfWork
from liftbus_core.correlation import get_correlation_id
from liftbus_messaging.constants import RETRY_HEADER
from liftbus_messaging.handlers import EventContext, HandlerRegistry
from liftbus_messaging.pipeline import EventPipeline, ProcessingOutcome
from liftbus_messaging.serialization import encode


@pytest.mark.asyncio
async def test_processed(pipeline: EventPipeline, registry: HandlerRegistry, make_envelope) -> None:
    seen: list[EventContext] = []

    async def handler(ctx: EventContext, payload: bytes) -> None:
        seen.append(ctx)
        assert get_correlation_id() == ctx.envelope.client_generated_id

    registry.register("user.registered", handler)
    envelope = make_envelope()

    result = await pipeline.process(encode(envelope), "user.registered", {RETRY_HEADER: 2})

    assert result.outcome is ProcessingOutcome.PROCESSED
    assert result.should_ack
    assert result.envelope == envelope
    assert result.retry_count == 2
    [ctx] = seen
    assert ctx.retry_count == 2
    assert ctx.queue == "reminder-service.events"
    assert ctx.source_service == "reminder-service"
    assert isinstance(ctx.uow, InMemoryUnitOfWork)
    assert get_correlation_id() is None


@pytest.mark.asyncio
async def test_duplicate_commits_empty_and_skips_handler(
    pipeline: EventPipeline,
    registry: HandlerRegistry,
    store: InMemoryIdempotencyStore,
    make_envelope,
) -> None:
    calls: list[str] = []

    async def handler(ctx: EventContext, payload: bytes) -> None:
        calls.append(ctx.envelope.client_generated_id)

    registry.register("user.registered", handler)
    body = encode(make_envelope())

    first = await pipeline.process(body, "user.registered")
    second = await pipeline.process(body, "user.registered")

    assert first.outcome is ProcessingOutcome.PROCESSED
    assert second.outcome is ProcessingOutcome.DUPLICATE
    assert second.should_ack
    assert len(calls) == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_unknown_event_type(pipeline: EventPipeline, store, make_envelope) -> None:
    result = await pipeline.process(encode(make_envelope("ghost.event")), "ghost.event")
    assert result.outcome is ProcessingOutcome.UNKNOWN_EVENT
    assert result.should_ack
    assert len(store) == 0


@pytest.mark.asyncio
async def test_poison(pipeline: EventPipeline, registry: HandlerRegistry, store) -> None:
    called = False

    async def handler(ctx: EventContext, payload: bytes) -> None:
        nonlocal called
        called = True

    registry.register("user.registered", handler)
    result = await pipeline.process(b"not json", "user.registered")

    assert result.outcome is ProcessingOutcome.POISON
    assert not result.should_ack
    assert result.envelope is None
    assert result.error is not None
    assert called is False
    assert len(store) == 0


@pytest.mark.asyncio
async def test_handler_failure_rolls_back(
    pipeline: EventPipeline, registry: HandlerRegistry, store, publisher, make_envelope
) -> None:
    async def handler(ctx: EventContext, payload: bytes) -> None:
        ctx.emit("reminder.scheduled", {})
        raise RuntimeError("db unavailable")

    registry.register("order.created", handler)
    result = await pipeline.process(encode(make_envelope("order.created")), "order.created")

    assert result.outcome is ProcessingOutcome.FAILED
    assert not result.should_ack
    assert isinstance(result.error, RuntimeError)
    assert len(store) == 0
    assert publisher.published == []


@pytest.mark.asyncio
async def test_handler_timeout_is_a_failure(
    pipeline: EventPipeline, registry: HandlerRegistry, make_envelope
) -> None:
    async def handler(ctx: EventContext, payload: bytes) -> None:
        await asyncio.wait_for(asyncio.sleep(1), timeout=0.001)

    registry.register("video.processed", handler)
    result = await pipeline.process(encode(make_envelope("video.processed")), "video.processed")
    assert result.outcome is ProcessingOutcome.FAILED


@pytest.mark.asyncio
async def test_cancellation_propagates_and_rolls_back(
    pipeline: EventPipeline, registry: HandlerRegistry, store, make_envelope
) -> None:
    started = asyncio.Event()

    async def handler(ctx: EventContext, payload: bytes) -> None:
        started.set()
        await asyncio.sleep(10)

    registry.register("video.processed", handler)
    task = asyncio.create_task(
        pipeline.process(encode(make_envelope("video.processed")), "video.processed")
    )
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(store) == 0


@pytest.mark.asyncio
async def test_handler_receives_raw_body_and_emits_downstream(
    pipeline: EventPipeline, registry: HandlerRegistry, publisher, make_envelope
) -> None:
    async def handler(ctx: EventContext, payload: bytes) -> None:
        assert json.loads(payload)["data"] == {"email": "a@x"}
        ctx.emit("welcome.sent", {"email": ctx.envelope.data["email"]})

    registry.register("user.registered", handler)
    await pipeline.process(encode(make_envelope()), "user.registered")

    publisher.assert_published("welcome.sent")
    [envelope] = publisher.envelopes("welcome.sent")
    assert envelope.source_service == "reminder-service"
    assert envelope.data == {"email": "a@x"}


@pytest.mark.asyncio
async def test_routing_key_mismatch_is_logged(
    pipeline: EventPipeline,
    registry: HandlerRegistry,
    make_envelope,
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def handler(ctx: EventContext, payload: bytes) -> None:
        pass

    registry.register("user.registered", handler)
    with caplog.at_level(logging.WARNING, logger="liftbus.messaging.pipeline"):
        result = await pipeline.process(encode(make_envelope()), "user.created")

    assert result.outcome is ProcessingOutcome.PROCESSED
    assert "does not match routing key" in caplog.text


@pytest.mark.asyncio
async def test_structured_log_line_per_delivery(
    pipeline: EventPipeline, make_envelope, caplog: pytest.LogCaptureFixture
) -> None:
    envelope = make_envelope("ghost.event")
    with caplog.at_level(logging.INFO, logger="liftbus_observability.structured_logging"):
        await pipeline.process(encode(envelope), "ghost.event", {RETRY_HEADER: "1"})

    entries = [
        json.loads(r.getMessage())
        for r in caplog.records
        if r.name == "liftbus_observability.structured_logging"
    ]
    [entry] = entries
    assert entry["outcome"] == "unknown_event"
    assert entry["client_generated_id"] == envelope.client_generated_id
    assert entry["correlation_id"] == envelope.client_generated_id
    assert entry["queue"] == "reminder-service.events"
    assert entry["retry_count"] == 1


@pytest.mark.asyncio
async def test_shutdown_event_reaches_handler(registry: HandlerRegistry, make_envelope) -> None:
    shutdown = asyncio.Event()
    shutdown.set()
    seen: list[bool] = []

    async def handler(ctx: EventContext, payload: bytes) -> None:
        seen.append(ctx.shutting_down)

    registry.register("user.registered", handler)
    pipeline = EventPipeline(
        registry,
        InMemoryIdempotencyStore(),
        InMemoryUnitOfWork,
        service="svc",
        shutdown=shutdown,
    )
    await pipeline.process(encode(make_envelope()), "user.registered")
    assert seen == [True]
