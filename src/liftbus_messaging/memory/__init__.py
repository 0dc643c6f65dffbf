"""In-memory messaging adapters for testing."""

from __future__ import annotations

from .publisher import InMemoryPublisher, PublishedMessage

__all__ = [
    "InMemoryPublisher",
    "PublishedMessage",
]
