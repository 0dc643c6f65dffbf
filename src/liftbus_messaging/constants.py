"""Names shared by every service on the fabric.

Changing any of these is a fleet-wide migration: publishers and consumers
must agree on exchanges, queues and header names.
"""

from __future__ import annotations

EVENTS_EXCHANGE = "app.events"
DLQ_EXCHANGE = "app.dlq"
DLQ_QUEUE = "app.dlq.queue"

SCHEMA_VERSION = "1.0.0"
SYSTEM_USER_ID = "system"

MAX_RETRIES = 5
DEFAULT_PREFETCH_COUNT = 10
DEFAULT_SHUTDOWN_GRACE_SECONDS = 5.0

RETRY_HEADER = "x-retry-count"
ORIGINAL_EXCHANGE_HEADER = "x-original-exchange"
ORIGINAL_ROUTING_KEY_HEADER = "x-original-routing-key"
DEATH_REASON_HEADER = "x-death-reason"

REASON_MAX_RETRIES = "max-retries-exceeded"
REASON_POISON = "decode-failed"

SINGLE_ACTIVE_CONSUMER_ARG = "x-single-active-consumer"


def service_queue_name(service: str) -> str:
    """Queue a service consumes from, e.g. ``reminder-service.events``."""
    return f"{service}.events"
