"""BusMetrics — Prometheus counters/histograms for the event fabric.

Consumer-side series are labelled ``{service, queue, routing_key}``;
publisher-side series ``{service, exchange, routing_key}``. Retry counts are
bucketed as ``0``..``4`` and ``5+`` to keep label cardinality bounded.
"""

from __future__ import annotations

import logging
import weakref
from typing import TYPE_CHECKING

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from prometheus_client import CollectorRegistry

_logger = logging.getLogger(__name__)

DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)

_CONSUMER_LABELS = ["service", "queue", "routing_key"]
_PUBLISHER_LABELS = ["service", "exchange", "routing_key"]


def format_retry_count(count: int) -> str:
    """Bucket a retry count into a bounded label value."""
    if count < 0:
        return "unknown"
    if count >= 5:
        return "5+"
    return str(count)


class _Collectors:
    """One set of collectors per Prometheus registry."""

    def __init__(self, registry: CollectorRegistry) -> None:
        self.consumed = Counter(
            "liftbus_messages_consumed_total",
            "Messages consumed from queues",
            _CONSUMER_LABELS,
            registry=registry,
        )
        self.processed = Counter(
            "liftbus_messages_processed_total",
            "Messages processed successfully",
            _CONSUMER_LABELS,
            registry=registry,
        )
        self.failed = Counter(
            "liftbus_messages_failed_total",
            "Failed processing attempts",
            [*_CONSUMER_LABELS, "retry_count"],
            registry=registry,
        )
        self.retries = Counter(
            "liftbus_message_retries_total",
            "Messages republished for another attempt",
            [*_CONSUMER_LABELS, "retry_count"],
            registry=registry,
        )
        self.dead_lettered = Counter(
            "liftbus_messages_dlq_total",
            "Messages sent to the dead-letter queue",
            _CONSUMER_LABELS,
            registry=registry,
        )
        self.duration = Histogram(
            "liftbus_message_processing_duration_seconds",
            "Time taken to process a message",
            [*_CONSUMER_LABELS, "status"],
            buckets=DURATION_BUCKETS,
            registry=registry,
        )
        self.active_consumers = Gauge(
            "liftbus_active_consumers",
            "Consumers currently attached to a queue",
            ["service", "queue"],
            registry=registry,
        )
        self.published = Counter(
            "liftbus_messages_published_total",
            "Messages published to exchanges",
            _PUBLISHER_LABELS,
            registry=registry,
        )
        self.publish_errors = Counter(
            "liftbus_publish_errors_total",
            "Errors while publishing messages",
            _PUBLISHER_LABELS,
            registry=registry,
        )


_collectors_by_registry: weakref.WeakKeyDictionary[CollectorRegistry, _Collectors] = (
    weakref.WeakKeyDictionary()
)


def _collectors_for(registry: CollectorRegistry) -> _Collectors:
    collectors = _collectors_by_registry.get(registry)
    if collectors is None:
        collectors = _collectors_by_registry[registry] = _Collectors(registry)
    return collectors


class BusMetrics:
    """Records fabric metrics for one service.

    Several instances may share a registry (e.g. one per consumer); the
    collectors are created once per registry. Emission never raises into
    the message path: failures are logged at debug level.
    """

    def __init__(self, service: str, registry: CollectorRegistry | None = None) -> None:
        self.service = service
        self._c = _collectors_for(registry if registry is not None else REGISTRY)

    def message_consumed(self, queue: str, routing_key: str) -> None:
        try:
            self._c.consumed.labels(self.service, queue, routing_key).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit consumed metric", exc_info=True)

    def message_processed(self, queue: str, routing_key: str, duration: float) -> None:
        try:
            self._c.processed.labels(self.service, queue, routing_key).inc()
            self._c.duration.labels(self.service, queue, routing_key, "success").observe(
                duration
            )
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit processed metric", exc_info=True)

    def message_failed(
        self, queue: str, routing_key: str, retry_count: int, duration: float
    ) -> None:
        try:
            self._c.failed.labels(
                self.service, queue, routing_key, format_retry_count(retry_count)
            ).inc()
            self._c.duration.labels(self.service, queue, routing_key, "failed").observe(
                duration
            )
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit failed metric", exc_info=True)

    def message_retried(self, queue: str, routing_key: str, retry_count: int) -> None:
        try:
            self._c.retries.labels(
                self.service, queue, routing_key, format_retry_count(retry_count)
            ).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit retry metric", exc_info=True)

    def message_dead_lettered(self, queue: str, routing_key: str) -> None:
        try:
            self._c.dead_lettered.labels(self.service, queue, routing_key).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit dlq metric", exc_info=True)

    def message_published(self, exchange: str, routing_key: str) -> None:
        try:
            self._c.published.labels(self.service, exchange, routing_key).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit published metric", exc_info=True)

    def publish_error(self, exchange: str, routing_key: str) -> None:
        try:
            self._c.publish_errors.labels(self.service, exchange, routing_key).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit publish error metric", exc_info=True)

    def set_active_consumers(self, queue: str, count: int) -> None:
        try:
            self._c.active_consumers.labels(self.service, queue).set(count)
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit active consumers metric", exc_info=True)
