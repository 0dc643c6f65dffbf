"""EventService — wires settings, database, broker and consumers into one process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from liftbus_observability.metrics import BusMetrics
from liftbus_persistence_sqlalchemy.idempotency import (
    SQLAlchemyIdempotencyStore,
    ensure_idempotency_table,
)
from liftbus_persistence_sqlalchemy.uow import sqlalchemy_uow_factory

from .handlers import HandlerRegistry
from .pipeline import EventPipeline
from .rabbitmq.connection import RabbitMQConnectionManager
from .rabbitmq.consumer import RabbitMQEventConsumer
from .rabbitmq.publisher import RabbitMQPublisher
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from .settings import BusSettings

logger = logging.getLogger("liftbus.messaging.runtime")


class EventService:
    """
    One consuming service process.

    Owns the database engine, the broker connection, a publisher for
    downstream events, one consumer per queue and the periodic cleanup of
    the idempotency ledger. The main queue comes from the settings; extra
    queues (e.g. a prefetch-1 media queue) are added with :meth:`add_consumer`.

    Example:
        ```python
        registry = HandlerRegistry()

        @registry.handler("user.registered")
        async def on_registered(ctx, payload):
            ...

        await EventService(BusSettings(), registry).run()
        ```
    """

    def __init__(
        self,
        settings: BusSettings,
        registry: HandlerRegistry | None = None,
        *,
        engine: AsyncEngine | None = None,
        connection: RabbitMQConnectionManager | None = None,
        metrics: BusMetrics | None = None,
        create_tables: bool = True,
    ) -> None:
        self.settings = settings
        self.registry = registry or HandlerRegistry()
        self._owns_engine = engine is None
        if engine is None:
            if not settings.database_url:
                raise ValueError("DATABASE_URL is required to run an event service")
            engine = create_async_engine(settings.database_url, pool_pre_ping=True)
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self.store = SQLAlchemyIdempotencyStore(self.session_factory)
        self.uow_factory = sqlalchemy_uow_factory(self.session_factory)
        self.connection = connection or RabbitMQConnectionManager(settings.rabbitmq_url)
        self.metrics = metrics or BusMetrics(settings.service_name)
        self.publisher = RabbitMQPublisher(self.connection, metrics=self.metrics)
        self.retry_policy = RetryPolicy(max_retries=settings.max_retries)
        self.shutdown = asyncio.Event()
        self._create_tables = create_tables

        self.consumers: list[RabbitMQEventConsumer] = []
        self._cleanup_task: asyncio.Task[None] | None = None
        self._stop_requested = asyncio.Event()
        self._started = False

        self.add_consumer(
            settings.queue_name,
            self.registry,
            routing_keys=settings.routing_key_list or None,
        )

    def add_consumer(
        self,
        queue_name: str,
        registry: HandlerRegistry,
        *,
        routing_keys: Iterable[str] | None = None,
        prefetch_count: int | None = None,
    ) -> RabbitMQEventConsumer:
        """Consume another queue in this process, on its own channel."""
        if self._started:
            raise RuntimeError("Consumers must be added before start()")
        pipeline = EventPipeline(
            registry,
            self.store,
            self.uow_factory,
            service=self.settings.service_name,
            queue=queue_name,
            publisher=self.publisher,
            shutdown=self.shutdown,
        )
        consumer = RabbitMQEventConsumer(
            self.connection,
            pipeline,
            queue_name=queue_name,
            routing_keys=routing_keys,
            prefetch_count=prefetch_count or self.settings.prefetch_count,
            retry_policy=self.retry_policy,
            poison_to_dlq=self.settings.poison_to_dlq,
            metrics=self.metrics,
        )
        self.consumers.append(consumer)
        return consumer

    async def start(self) -> None:
        if self._started:
            return
        if self._create_tables:
            await ensure_idempotency_table(self.engine)
        await self.connection.connect()
        for consumer in self.consumers:
            await consumer.start()
        if self.settings.idempotency_cleanup_interval_seconds > 0:
            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(), name="idempotency-cleanup"
            )
        self._started = True
        logger.info(
            "Event service started service=%s queues=%s",
            self.settings.service_name,
            ",".join(c.queue_name for c in self.consumers),
        )

    async def cleanup_once(self) -> int:
        """Purge idempotency markers older than the retention window."""
        return await self.store.cleanup_older_than(self.settings.idempotency_retention_days)

    async def _cleanup_loop(self) -> None:
        interval = self.settings.idempotency_cleanup_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup_once()
            except Exception:  # noqa: BLE001
                logger.error("Idempotency cleanup failed", exc_info=True)

    async def stop(self) -> None:
        """Signal handlers, drain consumers within the grace window, release resources."""
        self.shutdown.set()
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

        grace = self.settings.shutdown_grace_seconds
        results = await asyncio.gather(
            *(consumer.stop(grace) for consumer in self.consumers),
            return_exceptions=True,
        )
        for consumer, result in zip(self.consumers, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to stop consumer queue=%s: %s", consumer.queue_name, result
                )

        await self.connection.close()
        if self._owns_engine:
            await self.engine.dispose()
        self._started = False
        logger.info("Event service stopped service=%s", self.settings.service_name)

    def request_stop(self) -> None:
        self._stop_requested.set()

    def install_signal_handlers(self) -> None:
        """Stop on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler.
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.request_stop))

    async def run(self) -> None:
        """Start, block until a stop is requested, then stop gracefully."""
        self.install_signal_handlers()
        try:
            await self.start()
            await self._stop_requested.wait()
            logger.info("Shutdown requested service=%s", self.settings.service_name)
        finally:
            await self.stop()

    async def health_check(self) -> dict[str, bool]:
        """Connection status plus one entry per consumed queue."""
        status = {"rabbitmq": await self.connection.health_check()}
        for consumer in self.consumers:
            status[consumer.queue_name] = await consumer.health_check()
        return status
