"""Value objects describing the managed service and its observed state."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import Field

from bluegreen.domain.errors import ConfigurationError
from bluegreen.domain.models.base import ValueObject


_REVISION_PATTERN = re.compile(r"^(?P<family>[A-Za-z0-9_-]+):(?P<revision>\d+)$")


class RevisionRef(ValueObject):
    """Opaque, immutable identifier of a registered service revision.

    Accepts both short ``family:revision`` identifiers and full ARNs of the
    form ``arn:aws:ecs:<region>:<account>:task-definition/<family>:<revision>``.
    """

    value: str = Field(..., min_length=1)

    @classmethod
    def parse(cls, value: str) -> RevisionRef:
        return cls(value=value.strip())

    @property
    def _tail(self) -> str:
        return self.value.rsplit("/", 1)[-1]

    @property
    def family(self) -> str:
        match = _REVISION_PATTERN.match(self._tail)
        return match.group("family") if match else self._tail

    @property
    def revision(self) -> int | None:
        match = _REVISION_PATTERN.match(self._tail)
        return int(match.group("revision")) if match else None

    @property
    def region(self) -> str | None:
        """Region embedded in an ARN; ``None`` for short identifiers."""
        parts = self.value.split(":")
        if len(parts) < 6 or parts[0] != "arn" or not parts[3]:
            return None
        return parts[3]

    def same_as(self, other: RevisionRef | None) -> bool:
        """Compare by family and revision, so a short ref matches its full ARN."""
        if other is None:
            return False
        if self.revision is None or other.revision is None:
            return self.value == other.value
        return (self.family, self.revision) == (other.family, other.revision)

    def previous(self) -> RevisionRef:
        """Return the revision registered immediately before this one."""
        revision = self.revision
        if revision is None:
            raise ConfigurationError(f"Revision {self.value} carries no revision number")
        if revision <= 1:
            raise ConfigurationError(
                f"No previous revision available ({self.value} is revision 1)"
            )
        prefix = self.value[: self.value.rfind(":")]
        return RevisionRef(value=f"{prefix}:{revision - 1}")

    def __str__(self) -> str:
        return self.value


class ServiceTarget(ValueObject):
    """Identifies the managed service to act on."""

    cluster_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)

    @property
    def key(self) -> str:
        """Stable key used for locks and per-service ledger logs."""
        return f"{self.region}/{self.cluster_id}/{self.service_id}"

    def __str__(self) -> str:
        return self.key


class CapacityBounds(ValueObject):
    """Minimum healthy / maximum percent bounds preserved during a rollout."""

    min_healthy_percent: int = Field(default=100, ge=0, le=100)
    max_percent: int = Field(default=200, ge=100)


class RolloutState(str, Enum):
    """Control-plane rollout state of one deployment descriptor."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RolloutOutcome(str, Enum):
    """Terminal result of watching a rollout."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def succeeded(self) -> bool:
        return self is RolloutOutcome.COMPLETED


class DeploymentDescriptor(ValueObject):
    """One revision currently being run by the service."""

    revision_ref: RevisionRef
    rollout_state: RolloutState = RolloutState.IN_PROGRESS
    running_count: int = 0
    desired_count: int = 0


class RolloutProgress(ValueObject):
    """Point-in-time snapshot of a rollout."""

    running_count: int = 0
    desired_count: int = 0
    pending_count: int = 0
    active_deployments: list[DeploymentDescriptor] = Field(default_factory=list)
    latest_event: str = ""

    def descriptor_for(self, revision_ref: RevisionRef) -> DeploymentDescriptor | None:
        for descriptor in self.active_deployments:
            if descriptor.revision_ref.same_as(revision_ref):
                return descriptor
        return None

    def is_complete_for(self, revision_ref: RevisionRef) -> bool:
        """True once the old revision is fully drained and the target is settled."""
        if len(self.active_deployments) != 1:
            return False
        descriptor = self.active_deployments[0]
        return (
            descriptor.revision_ref.same_as(revision_ref)
            and descriptor.rollout_state == RolloutState.COMPLETED
            and descriptor.running_count == descriptor.desired_count == self.desired_count
            and self.running_count == self.desired_count
            and self.pending_count == 0
        )

    def has_failed_for(self, revision_ref: RevisionRef) -> bool:
        descriptor = self.descriptor_for(revision_ref)
        return descriptor is not None and descriptor.rollout_state == RolloutState.FAILED


class ServiceSnapshot(ValueObject):
    """Result of describing a service on the control plane."""

    target: ServiceTarget
    status: str = "ACTIVE"
    current_revision_ref: RevisionRef
    running_count: int = 0
    desired_count: int = 0
    pending_count: int = 0
    active_deployments: list[DeploymentDescriptor] = Field(default_factory=list)
    latest_event: str = ""

    @property
    def is_active(self) -> bool:
        return self.status.upper() == "ACTIVE"

    def to_progress(self) -> RolloutProgress:
        return RolloutProgress(
            running_count=self.running_count,
            desired_count=self.desired_count,
            pending_count=self.pending_count,
            active_deployments=list(self.active_deployments),
            latest_event=self.latest_event,
        )


class InstanceRef(ValueObject):
    """A running instance (task) of the service."""

    instance_id: str
    revision_ref: RevisionRef


class InstanceHealth(ValueObject):
    """Health signal reported by the control plane for one instance."""

    instance_id: str
    status: str = "UNKNOWN"
    last_status: str = "UNKNOWN"

    @property
    def is_healthy(self) -> bool:
        return self.last_status.upper() == "RUNNING" and self.status.upper() == "HEALTHY"


class HealthResult(ValueObject):
    """Outcome of verifying instance health for a revision."""

    healthy_count: int = 0
    total_count: int = 0
    unhealthy_instances: list[str] = Field(default_factory=list)

    @property
    def ratio(self) -> float:
        if self.total_count == 0:
            return 0.0
        return self.healthy_count / self.total_count

    @property
    def all_healthy(self) -> bool:
        return self.total_count > 0 and self.healthy_count == self.total_count

    def __str__(self) -> str:
        return f"{self.healthy_count}/{self.total_count}"
