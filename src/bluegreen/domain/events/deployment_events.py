"""Deployment domain events."""

from __future__ import annotations

from bluegreen.domain.events.base import DomainEvent


class DeploymentPhaseChanged(DomainEvent):
    """Emitted on every state machine transition of an attempt."""

    deployment_id: str
    service_key: str
    from_phase: str
    to_phase: str
    event_type: str = "deployment.phase_changed"


class RolloutProgressObserved(DomainEvent):
    """Emitted on every rollout monitor poll."""

    deployment_id: str
    revision: str
    running_count: int
    desired_count: int
    pending_count: int
    latest_event: str = ""
    event_type: str = "deployment.rollout_progress"


class DeploymentFinished(DomainEvent):
    """Emitted once an attempt reaches a terminal phase."""

    deployment_id: str
    service_key: str
    final_phase: str
    previous_revision: str | None = None
    target_revision: str | None = None
    event_type: str = "deployment.finished"
