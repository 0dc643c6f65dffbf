"""liftbus-messaging — envelope, retry/DLQ policy and the RabbitMQ consumer runtime."""

from __future__ import annotations

from .constants import (
    DLQ_EXCHANGE,
    DLQ_QUEUE,
    EVENTS_EXCHANGE,
    MAX_RETRIES,
    RETRY_HEADER,
    SCHEMA_VERSION,
    SYSTEM_USER_ID,
    service_queue_name,
)
from .dead_letter import DeadLetterHandler, Disposition
from .envelope import EventEnvelope, new_envelope
from .exceptions import (
    DeadLetterError,
    EnvelopeDecodeError,
    MessagingConnectionError,
    MessagingError,
    MessagingSerializationError,
    PublishError,
)
from .handlers import EventContext, HandlerRegistry, IdempotentHandler
from .headers import (
    read_retry_count,
    with_dead_letter_metadata,
    with_incremented_retry_count,
)
from .memory import InMemoryPublisher
from .pipeline import EventPipeline, ProcessingOutcome, ProcessingResult
from .retry import RetryAction, RetryDecision, RetryPolicy
from .serialization import EnvelopeSerializer
from .settings import BusSettings

__all__ = [
    # Constants
    "DLQ_EXCHANGE",
    "DLQ_QUEUE",
    "EVENTS_EXCHANGE",
    "MAX_RETRIES",
    "RETRY_HEADER",
    "SCHEMA_VERSION",
    "SYSTEM_USER_ID",
    "service_queue_name",
    # Envelope
    "EnvelopeSerializer",
    "EventEnvelope",
    "new_envelope",
    "read_retry_count",
    "with_dead_letter_metadata",
    "with_incremented_retry_count",
    # Handling
    "DeadLetterHandler",
    "Disposition",
    "EventContext",
    "EventPipeline",
    "HandlerRegistry",
    "IdempotentHandler",
    "ProcessingOutcome",
    "ProcessingResult",
    "RetryAction",
    "RetryDecision",
    "RetryPolicy",
    # Adapters / config
    "BusSettings",
    "InMemoryPublisher",
    # Exceptions
    "DeadLetterError",
    "EnvelopeDecodeError",
    "MessagingConnectionError",
    "MessagingError",
    "MessagingSerializationError",
    "PublishError",
]
