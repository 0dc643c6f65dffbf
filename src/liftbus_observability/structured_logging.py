"""StructuredEventLogger — one JSON log entry per processed delivery."""

from __future__ import annotations

import json
import logging
from typing import Any

from liftbus_core.correlation import get_correlation_id

_log = logging.getLogger(__name__)


class StructuredEventLogger:
    """Emits JSON entries with event identity, outcome, retry count and duration."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or _log

    def record(
        self,
        *,
        outcome: str,
        duration_ms: float,
        event_type: str | None = None,
        client_generated_id: str | None = None,
        routing_key: str | None = None,
        queue: str | None = None,
        retry_count: int = 0,
        **extra: Any,
    ) -> None:
        """Log one processing result; never raises."""
        try:
            entry = {
                "event_type": event_type,
                "client_generated_id": client_generated_id,
                "routing_key": routing_key,
                "queue": queue,
                "outcome": outcome,
                "retry_count": retry_count,
                "duration_ms": round(duration_ms, 2),
                "correlation_id": get_correlation_id() or client_generated_id,
                **extra,
            }
            level = logging.WARNING if outcome in ("failed", "poison") else logging.INFO
            self._log.log(level, json.dumps(entry, default=str))
        except Exception:  # noqa: BLE001
            _log.debug("Failed to emit structured log entry", exc_info=True)
