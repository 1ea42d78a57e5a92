"""Base domain model classes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from bluegreen.domain.events.base import DomainEvent, generate_id, utc_now


__all__ = ["AggregateRoot", "DomainEvent", "ValueObject", "generate_id", "utc_now"]


class ValueObject(BaseModel):
    """Base class for value objects (immutable)."""

    model_config = {"frozen": True}


class AggregateRoot(BaseModel):
    """Base class for aggregate roots that emit domain events."""

    _domain_events: list[DomainEvent] = []

    def __init__(self, **data: Any) -> None:
        super().__init__(**data)
        object.__setattr__(self, "_domain_events", [])

    def add_event(self, event: DomainEvent) -> None:
        """Register a domain event."""
        self._domain_events.append(event)

    def collect_events(self) -> list[DomainEvent]:
        """Collect and clear all pending domain events."""
        events = list(self._domain_events)
        self._domain_events.clear()
        return events

    model_config = {"frozen": False, "validate_assignment": True}
