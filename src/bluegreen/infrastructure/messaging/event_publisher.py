"""Event publisher implementations."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from bluegreen.domain.ports.services import EventPublisher


logger = structlog.get_logger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


class InMemoryEventPublisher(EventPublisher):
    """Keeps published events in memory and fans them out to subscribers."""

    def __init__(self) -> None:
        self._events: list[tuple[str, dict[str, Any]]] = []
        self._handlers: dict[str, list[EventHandler]] = {}

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self._events.append((event_type, payload))
        logger.debug(
            "event_published",
            event_type=event_type,
            deployment_id=payload.get("deployment_id"),
        )
        for handler in self._handlers.get(event_type, []):
            await handler(payload)

    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        for event_type, payload in events:
            await self.publish(event_type, payload)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    @property
    def published_events(self) -> list[tuple[str, dict[str, Any]]]:
        return list(self._events)

    def events_of(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self._events if kind == event_type]

    def clear(self) -> None:
        self._events.clear()


class KafkaEventPublisher(EventPublisher):
    """Publishes to ``<topic_prefix>.<event_type>``, keyed by deployment id.

    ``producer`` is a started :class:`aiokafka.AIOKafkaProducer`.
    """

    def __init__(self, producer: Any, topic_prefix: str = "bluegreen") -> None:
        self._producer = producer
        self._topic_prefix = topic_prefix

    def _encode(self, event_type: str, payload: dict[str, Any]) -> tuple[str, bytes, bytes | None]:
        topic = f"{self._topic_prefix}.{event_type}"
        value = json.dumps(payload, default=str).encode("utf-8")
        deployment_id = payload.get("deployment_id")
        key = deployment_id.encode("utf-8") if deployment_id else None
        return topic, value, key

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        topic, value, key = self._encode(event_type, payload)
        await self._producer.send_and_wait(topic, value=value, key=key)
        logger.debug("kafka_event_published", topic=topic)

    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        for event_type, payload in events:
            topic, value, key = self._encode(event_type, payload)
            await self._producer.send(topic, value=value, key=key)

        await self._producer.flush()
        logger.info("kafka_batch_published", event_count=len(events))
