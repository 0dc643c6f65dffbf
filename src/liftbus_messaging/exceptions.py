"""Messaging-specific exceptions for liftbus-messaging."""

from __future__ import annotations

from liftbus_core.primitives.exceptions import InfrastructureError


class MessagingError(InfrastructureError):
    """Base class for all messaging-related infrastructure errors."""


class MessagingConnectionError(MessagingError):
    """Raised when connectivity to the message broker fails."""


class MessagingSerializationError(MessagingError):
    """Raised when message serialization or deserialization fails."""


class EnvelopeDecodeError(MessagingSerializationError):
    """Raised when a body is not JSON or lacks required envelope fields.

    A delivery that fails to decode is poison: it is never retried.
    """


class PublishError(MessagingError):
    """Raised when the broker rejects a publish."""

    def __init__(self, message: str, routing_key: str | None = None) -> None:
        self.routing_key = routing_key
        super().__init__(message)


class DeadLetterError(MessagingError):
    """Raised when a retry republish or a dead-letter publish fails."""

    def __init__(self, message: str, routing_key: str | None = None) -> None:
        self.routing_key = routing_key
        super().__init__(message)
