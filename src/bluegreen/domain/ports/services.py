"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from bluegreen.domain.models.service import (
    CapacityBounds,
    InstanceHealth,
    InstanceRef,
    RevisionRef,
    ServiceSnapshot,
    ServiceTarget,
)


class ControlPlaneClient(ABC):
    """Port for the remote orchestration API that runs the service."""

    @abstractmethod
    async def describe_service(self, target: ServiceTarget) -> ServiceSnapshot:
        """Describe the service and its active deployments."""

    @abstractmethod
    async def register_revision(
        self,
        base_revision_ref: RevisionRef,
        image_override: str,
        metadata: dict[str, str],
    ) -> RevisionRef:
        """Register a new revision from a base revision plus a new image."""

    @abstractmethod
    async def update_service(
        self,
        target: ServiceTarget,
        revision_ref: RevisionRef,
        capacity: CapacityBounds,
    ) -> None:
        """Ask the control plane to converge the service onto a revision."""

    @abstractmethod
    async def list_instances(
        self, target: ServiceTarget, revision_ref: RevisionRef
    ) -> list[InstanceRef]:
        """List instances currently serving a revision."""

    @abstractmethod
    async def describe_instance_health(
        self, target: ServiceTarget, instance: InstanceRef
    ) -> InstanceHealth:
        """Get the control plane's health signal for one instance."""

    @abstractmethod
    async def tag_service(self, target: ServiceTarget, tags: dict[str, str]) -> None:
        """Attach tags to the service."""


class EventPublisher(ABC):
    """Port for publishing domain events."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    @abstractmethod
    async def publish_batch(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        """Publish a batch of events."""


class DistributedLock(ABC):
    """Port for distributed locking."""

    @abstractmethod
    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        """Acquire a distributed lock."""

    @abstractmethod
    async def release(self, resource_id: str) -> bool:
        """Release a distributed lock."""

    @abstractmethod
    async def extend(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        """Extend the TTL of an existing lock."""

    @abstractmethod
    async def is_locked(self, resource_id: str) -> bool:
        """Check if a resource is locked."""
