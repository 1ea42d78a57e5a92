"""Simulated control plane for development and testing.

Rollouts converge after a configurable number of ``describe_service`` polls.
Individual revisions can be made to fail, stall, or come up unhealthy, and
any operation can be made to raise, which is enough to walk every branch of
the deployment state machine without a real cluster.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from bluegreen.domain.errors import ControlPlaneError
from bluegreen.domain.models.service import (
    CapacityBounds,
    DeploymentDescriptor,
    InstanceHealth,
    InstanceRef,
    RevisionRef,
    RolloutState,
    ServiceSnapshot,
    ServiceTarget,
)
from bluegreen.domain.ports.services import ControlPlaneClient


logger = structlog.get_logger(__name__)


@dataclass
class _Rollout:
    revision: str
    previous: str
    polls: int = 0


@dataclass
class _Service:
    target: ServiceTarget
    revision: str
    desired_count: int
    status: str = "ACTIVE"
    rollout: _Rollout | None = None
    failed_revision: str | None = None
    events: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)


class SimulatedControlPlane(ControlPlaneClient):
    """In-memory services and revisions behaving like a rolling ECS deploy."""

    def __init__(self, convergence_polls: int = 2) -> None:
        self.convergence_polls = convergence_polls
        self._services: dict[str, _Service] = {}
        self._revisions: dict[str, dict[str, object]] = {}
        self._family_counters: dict[str, int] = {}
        self._failing: set[str] = set()
        self._stalling: set[str] = set()
        self._healthy_counts: dict[str, int] = {}
        self._errors: dict[str, list[ControlPlaneError]] = {}
        self.calls: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Scenario setup
    # ------------------------------------------------------------------

    def add_service(
        self,
        target: ServiceTarget,
        revision: str = "app:1",
        desired_count: int = 4,
        status: str = "ACTIVE",
        image: str = "registry.example.com/app:v1",
    ) -> None:
        ref = RevisionRef.parse(revision)
        self._revisions[ref.value] = {"image": image, "metadata": {}}
        if ref.revision is not None:
            self._family_counters[ref.family] = max(
                self._family_counters.get(ref.family, 0), ref.revision
            )
        self._services[target.key] = _Service(
            target=target, revision=ref.value, desired_count=desired_count, status=status
        )

    def fail_revision(self, revision: str) -> None:
        """Rollouts onto ``revision`` report FAILED on their first poll."""
        self._failing.add(revision)

    def stall_revision(self, revision: str) -> None:
        """Rollouts onto ``revision`` never converge."""
        self._stalling.add(revision)

    def set_healthy_count(self, revision: str, healthy: int) -> None:
        """Only the first ``healthy`` instances of ``revision`` report HEALTHY."""
        self._healthy_counts[revision] = healthy

    def fail_next(self, operation: str, error: ControlPlaneError | None = None) -> None:
        """Make the next call of ``operation`` raise."""
        self._errors.setdefault(operation, []).append(
            error or ControlPlaneError(f"simulated {operation} failure", operation=operation)
        )

    def current_revision(self, target: ServiceTarget) -> str:
        return self._service(target).revision

    def tags(self, target: ServiceTarget) -> dict[str, str]:
        return dict(self._service(target).tags)

    def revision_details(self, revision: str) -> dict[str, object]:
        return dict(self._revisions[revision])

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # ------------------------------------------------------------------
    # ControlPlaneClient
    # ------------------------------------------------------------------

    def _enter(self, operation: str, subject: str) -> None:
        self.calls.append((operation, subject))
        pending = self._errors.get(operation)
        if pending:
            raise pending.pop(0)

    def _service(self, target: ServiceTarget) -> _Service:
        service = self._services.get(target.key)
        if service is None:
            raise ControlPlaneError(
                f"Service {target.key} not found", operation="describe_service"
            )
        return service

    async def describe_service(self, target: ServiceTarget) -> ServiceSnapshot:
        self._enter("describe_service", target.key)
        service = self._service(target)
        self._advance(service)
        return self._snapshot(service)

    def _advance(self, service: _Service) -> None:
        rollout = service.rollout
        if rollout is None:
            return
        rollout.polls += 1
        if rollout.revision in self._failing:
            service.failed_revision = rollout.revision
            service.events.insert(
                0, f"(service {service.target.service_id}) deployment failed: tasks failed to start."
            )
            return
        if rollout.revision in self._stalling:
            return
        if rollout.polls >= self.convergence_polls:
            service.rollout = None
            service.events.insert(
                0, f"(service {service.target.service_id}) has reached a steady state."
            )

    def _snapshot(self, service: _Service) -> ServiceSnapshot:
        desired = service.desired_count
        rollout = service.rollout
        if rollout is None:
            deployments = [DeploymentDescriptor(
                revision_ref=RevisionRef.parse(service.revision),
                rollout_state=RolloutState.COMPLETED,
                running_count=desired,
                desired_count=desired,
            )]
            running, pending = desired, 0
        else:
            failed = service.failed_revision == rollout.revision
            if failed or rollout.revision in self._stalling:
                new_running = 0
            else:
                step = max(1, self.convergence_polls)
                new_running = min(desired, desired * rollout.polls // step)
            deployments = [
                DeploymentDescriptor(
                    revision_ref=RevisionRef.parse(rollout.revision),
                    rollout_state=RolloutState.FAILED if failed else RolloutState.IN_PROGRESS,
                    running_count=new_running,
                    desired_count=desired,
                ),
                DeploymentDescriptor(
                    revision_ref=RevisionRef.parse(rollout.previous),
                    rollout_state=RolloutState.COMPLETED,
                    running_count=desired,
                    desired_count=desired,
                ),
            ]
            running = desired + new_running
            pending = 0 if failed else desired - new_running
        return ServiceSnapshot(
            target=service.target,
            status=service.status,
            current_revision_ref=RevisionRef.parse(service.revision),
            running_count=running,
            desired_count=desired,
            pending_count=pending,
            active_deployments=deployments,
            latest_event=service.events[0] if service.events else "",
        )

    async def register_revision(
        self,
        base_revision_ref: RevisionRef,
        image_override: str,
        metadata: dict[str, str],
    ) -> RevisionRef:
        self._enter("register_revision", str(base_revision_ref))
        if base_revision_ref.value not in self._revisions:
            raise ControlPlaneError(
                f"Revision {base_revision_ref} not found", operation="register_revision"
            )
        family = base_revision_ref.family
        number = self._family_counters.get(family, 0) + 1
        self._family_counters[family] = number
        ref = RevisionRef.parse(f"{family}:{number}")
        self._revisions[ref.value] = {"image": image_override, "metadata": dict(metadata)}
        logger.info("simulated_revision_registered", revision=ref.value, image=image_override)
        return ref

    async def update_service(
        self,
        target: ServiceTarget,
        revision_ref: RevisionRef,
        capacity: CapacityBounds,
    ) -> None:
        self._enter("update_service", f"{target.key}@{revision_ref}")
        service = self._service(target)
        if revision_ref.value not in self._revisions:
            raise ControlPlaneError(
                f"Revision {revision_ref} not found", operation="update_service"
            )
        previous = service.rollout.previous if service.rollout else service.revision
        service.revision = revision_ref.value
        service.failed_revision = None
        if revision_ref.value == previous:
            # converging back onto the running revision drains the new one
            service.rollout = None if service.rollout is None else _Rollout(
                revision=revision_ref.value, previous=service.rollout.revision
            )
        else:
            service.rollout = _Rollout(revision=revision_ref.value, previous=previous)
        service.events.insert(
            0, f"(service {target.service_id}) has started a deployment of {revision_ref}."
        )

    async def list_instances(
        self, target: ServiceTarget, revision_ref: RevisionRef
    ) -> list[InstanceRef]:
        self._enter("list_instances", target.key)
        service = self._service(target)
        if service.rollout is not None or not revision_ref.same_as(
            RevisionRef.parse(service.revision)
        ):
            return []
        return [
            InstanceRef(instance_id=f"{revision_ref.value}/task-{i}", revision_ref=revision_ref)
            for i in range(service.desired_count)
        ]

    async def describe_instance_health(
        self, target: ServiceTarget, instance: InstanceRef
    ) -> InstanceHealth:
        self._enter("describe_instance_health", instance.instance_id)
        index = int(instance.instance_id.rsplit("-", 1)[-1])
        healthy = self._healthy_counts.get(instance.revision_ref.value)
        ok = healthy is None or index < healthy
        return InstanceHealth(
            instance_id=instance.instance_id,
            status="HEALTHY" if ok else "UNHEALTHY",
            last_status="RUNNING",
        )

    async def tag_service(self, target: ServiceTarget, tags: dict[str, str]) -> None:
        self._enter("tag_service", target.key)
        self._service(target).tags.update(tags)
