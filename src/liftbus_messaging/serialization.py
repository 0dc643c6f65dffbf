"""EnvelopeSerializer — canonical JSON encoding of EventEnvelope."""

from __future__ import annotations

import json

from pydantic import ValidationError

from .envelope import EventEnvelope
from .exceptions import EnvelopeDecodeError, MessagingSerializationError


class EnvelopeSerializer:
    """Encode/decode :class:`EventEnvelope` to/from UTF-8 JSON bytes.

    Output is canonical: keys sorted, no insignificant whitespace.
    """

    def encode(self, envelope: EventEnvelope) -> bytes:
        """Encode envelope to JSON bytes."""
        try:
            data = envelope.model_dump(mode="json")
            return json.dumps(
                data, sort_keys=True, separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise MessagingSerializationError(str(e)) from e

    def decode(self, raw: bytes) -> EventEnvelope:
        """Decode JSON bytes to an envelope.

        Raises:
            EnvelopeDecodeError: The body is not JSON, not an object, or an
                envelope field is missing or malformed.
        """
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EnvelopeDecodeError(f"Body is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise EnvelopeDecodeError(
                f"Envelope must be a JSON object, got {type(data).__name__}"
            )
        try:
            return EventEnvelope.model_validate(data)
        except ValidationError as e:
            raise EnvelopeDecodeError(f"Invalid envelope: {e}") from e


_default = EnvelopeSerializer()


def encode(envelope: EventEnvelope) -> bytes:
    return _default.encode(envelope)


def decode(raw: bytes) -> EventEnvelope:
    return _default.decode(raw)
