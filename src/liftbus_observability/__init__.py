"""Observability — fabric metrics and structured processing logs."""

from __future__ import annotations

from .metrics import BusMetrics, format_retry_count
from .structured_logging import StructuredEventLogger

__all__ = [
    "BusMetrics",
    "StructuredEventLogger",
    "format_retry_count",
]
