"""Deployment attempt aggregate root with full state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from bluegreen.domain.errors import InvalidPhaseTransitionError
from bluegreen.domain.events.deployment_events import (
    DeploymentFinished,
    DeploymentPhaseChanged,
)
from bluegreen.domain.models.base import AggregateRoot, generate_id, utc_now, ValueObject
from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.models.service import (
    CapacityBounds,
    HealthResult,
    RevisionRef,
    ServiceTarget,
)


class DeploymentPhase(str, Enum):
    """Deployment attempt lifecycle states."""

    PRECHECK = "PRECHECK"
    SNAPSHOT_CURRENT = "SNAPSHOT_CURRENT"
    REGISTER_REVISION = "REGISTER_REVISION"
    UPDATE_SERVICE = "UPDATE_SERVICE"
    MONITOR_ROLLOUT = "MONITOR_ROLLOUT"
    VERIFY_HEALTH = "VERIFY_HEALTH"
    COMPLETED = "COMPLETED"
    ROLLING_BACK = "ROLLING_BACK"
    ROLLED_BACK = "ROLLED_BACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    ABORTED = "ABORTED"
    VALIDATED = "VALIDATED"


TERMINAL_PHASES: frozenset[DeploymentPhase] = frozenset({
    DeploymentPhase.COMPLETED,
    DeploymentPhase.ROLLED_BACK,
    DeploymentPhase.ROLLBACK_FAILED,
    DeploymentPhase.ABORTED,
    DeploymentPhase.VALIDATED,
})


# State machine transitions
VALID_TRANSITIONS: dict[DeploymentPhase, set[DeploymentPhase]] = {
    DeploymentPhase.PRECHECK: {DeploymentPhase.SNAPSHOT_CURRENT, DeploymentPhase.ABORTED},
    DeploymentPhase.SNAPSHOT_CURRENT: {
        DeploymentPhase.REGISTER_REVISION, DeploymentPhase.VALIDATED,
        DeploymentPhase.ABORTED,
    },
    DeploymentPhase.REGISTER_REVISION: {
        DeploymentPhase.UPDATE_SERVICE, DeploymentPhase.ABORTED,
    },
    DeploymentPhase.UPDATE_SERVICE: {
        DeploymentPhase.MONITOR_ROLLOUT, DeploymentPhase.ROLLING_BACK,
    },
    DeploymentPhase.MONITOR_ROLLOUT: {
        DeploymentPhase.VERIFY_HEALTH, DeploymentPhase.ROLLING_BACK,
    },
    DeploymentPhase.VERIFY_HEALTH: {
        DeploymentPhase.COMPLETED, DeploymentPhase.ROLLING_BACK,
    },
    DeploymentPhase.ROLLING_BACK: {
        DeploymentPhase.ROLLED_BACK, DeploymentPhase.ROLLBACK_FAILED,
    },
    DeploymentPhase.COMPLETED: set(),
    DeploymentPhase.ROLLED_BACK: set(),
    DeploymentPhase.ROLLBACK_FAILED: set(),
    DeploymentPhase.ABORTED: set(),
    DeploymentPhase.VALIDATED: set(),
}


_IN_FLIGHT_AFTER: dict[DeploymentPhase, DeploymentPhase] = {
    DeploymentPhase.PRECHECK: DeploymentPhase.SNAPSHOT_CURRENT,
    DeploymentPhase.SNAPSHOT_CURRENT: DeploymentPhase.REGISTER_REVISION,
    DeploymentPhase.REGISTER_REVISION: DeploymentPhase.UPDATE_SERVICE,
    DeploymentPhase.UPDATE_SERVICE: DeploymentPhase.MONITOR_ROLLOUT,
    DeploymentPhase.MONITOR_ROLLOUT: DeploymentPhase.VERIFY_HEALTH,
}


class DeploymentRequest(ValueObject):
    """A request to roll a service onto a new image or an existing revision."""

    deployment_id: str = Field(default_factory=generate_id)
    service_target: ServiceTarget
    image: str | None = None
    revision_ref: RevisionRef | None = None
    requested_by: str = "unknown"
    dry_run: bool = False
    environment: str = "production"
    capacity: CapacityBounds | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class DeploymentResult(ValueObject):
    """Final outcome of one deployment attempt."""

    deployment_id: str
    final_phase: DeploymentPhase
    previous_revision_ref: RevisionRef | None = None
    target_revision_ref: RevisionRef | None = None
    health: HealthResult | None = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.final_phase in {DeploymentPhase.COMPLETED, DeploymentPhase.VALIDATED}


class DeploymentAttempt(AggregateRoot):
    """The unit of work driven through the deployment state machine."""

    deployment_id: str = Field(default_factory=generate_id)
    service_target: ServiceTarget
    previous_revision_ref: RevisionRef | None = None
    target_revision_ref: RevisionRef | None = None
    image: str | None = None
    requested_by: str = "unknown"
    created_at: datetime = Field(default_factory=utc_now)
    phase: DeploymentPhase = DeploymentPhase.PRECHECK
    health: HealthResult | None = None
    error: str = ""

    @classmethod
    def from_request(cls, request: DeploymentRequest) -> DeploymentAttempt:
        return cls(
            deployment_id=request.deployment_id,
            service_target=request.service_target,
            image=request.image,
            target_revision_ref=request.revision_ref,
            requested_by=request.requested_by,
        )

    @classmethod
    def from_ledger(cls, entries: list[LedgerEntry]) -> DeploymentAttempt:
        """Rebuild an attempt from its ledger history.

        The rebuilt phase is the one that was executing when the history
        stops, which is what a crash recovery has to act on.
        """
        if not entries:
            raise ValueError("Cannot rebuild a deployment attempt from an empty history")

        first = entries[0]
        detail = first.detail
        attempt = cls(
            deployment_id=first.deployment_id,
            service_target=ServiceTarget(
                cluster_id=detail["cluster_id"],
                service_id=detail["service_id"],
                region=detail["region"],
            ),
            image=detail.get("image"),
            requested_by=detail.get("requested_by", "unknown"),
            created_at=first.timestamp,
        )
        if detail.get("revision_ref"):
            attempt.target_revision_ref = RevisionRef.parse(detail["revision_ref"])

        rolling_back = False
        for entry in entries:
            if entry.detail.get("previous_revision") and attempt.previous_revision_ref is None:
                attempt.previous_revision_ref = RevisionRef.parse(
                    entry.detail["previous_revision"]
                )
            if entry.phase == DeploymentPhase.REGISTER_REVISION and entry.detail.get(
                "target_revision"
            ):
                attempt.target_revision_ref = RevisionRef.parse(entry.detail["target_revision"])
            if entry.phase == DeploymentPhase.ROLLING_BACK:
                rolling_back = True
            if entry.error:
                attempt.error = entry.error

        last_entry = entries[-1]
        last = DeploymentPhase(last_entry.phase)
        if last in TERMINAL_PHASES:
            attempt.phase = last
        elif rolling_back:
            attempt.phase = DeploymentPhase.ROLLING_BACK
        elif last_entry.error:
            attempt.phase = last
        else:
            # entries are written when a phase finishes, so the attempt was
            # executing the following phase when the history stops
            attempt.phase = _IN_FLIGHT_AFTER.get(last, last)
        return attempt

    def _transition_to(self, new_phase: DeploymentPhase) -> None:
        """Validate and execute state transition."""
        valid = VALID_TRANSITIONS.get(self.phase, set())
        if new_phase not in valid:
            raise InvalidPhaseTransitionError(
                f"Cannot transition from {self.phase.value} to {new_phase.value}. "
                f"Valid transitions: {sorted(p.value for p in valid)}"
            )
        previous = self.phase
        self.phase = new_phase
        self.add_event(DeploymentPhaseChanged(
            deployment_id=self.deployment_id,
            service_key=self.service_target.key,
            from_phase=previous.value,
            to_phase=new_phase.value,
            correlation_id=self.deployment_id,
        ))
        if self.is_terminal:
            self.add_event(DeploymentFinished(
                deployment_id=self.deployment_id,
                service_key=self.service_target.key,
                final_phase=new_phase.value,
                previous_revision=_optional_str(self.previous_revision_ref),
                target_revision=_optional_str(self.target_revision_ref),
                correlation_id=self.deployment_id,
            ))

    def advance(self, new_phase: DeploymentPhase) -> None:
        """Move forward along the happy path."""
        self._transition_to(new_phase)

    def capture_previous(self, revision_ref: RevisionRef) -> None:
        """Record the revision to restore on failure. Set exactly once."""
        if self.previous_revision_ref is not None:
            raise InvalidPhaseTransitionError(
                f"Previous revision already captured as {self.previous_revision_ref}"
            )
        self.previous_revision_ref = revision_ref

    def set_target(self, revision_ref: RevisionRef) -> None:
        self.target_revision_ref = revision_ref

    def record_health(self, result: HealthResult) -> None:
        self.health = result

    def abort(self, error: str) -> None:
        """Terminate before the service was mutated."""
        self.error = error
        self._transition_to(DeploymentPhase.ABORTED)

    def start_rollback(self, error: str) -> None:
        self.error = error
        self._transition_to(DeploymentPhase.ROLLING_BACK)

    def complete_rollback(self) -> None:
        self._transition_to(DeploymentPhase.ROLLED_BACK)

    def fail_rollback(self, error: str) -> None:
        self.error = f"{self.error}; rollback: {error}" if self.error else error
        self._transition_to(DeploymentPhase.ROLLBACK_FAILED)

    @property
    def is_terminal(self) -> bool:
        """Check if the attempt is in a terminal phase."""
        return self.phase in TERMINAL_PHASES

    def ledger_context(self) -> dict[str, Any]:
        """Identity fields written to the first ledger entry."""
        return {
            "cluster_id": self.service_target.cluster_id,
            "service_id": self.service_target.service_id,
            "region": self.service_target.region,
            "image": self.image,
            "revision_ref": _optional_str(self.target_revision_ref),
            "requested_by": self.requested_by,
        }

    def to_result(self) -> DeploymentResult:
        return DeploymentResult(
            deployment_id=self.deployment_id,
            final_phase=self.phase,
            previous_revision_ref=self.previous_revision_ref,
            target_revision_ref=self.target_revision_ref,
            health=self.health,
            error=self.error,
        )


def _optional_str(value: object | None) -> str | None:
    return None if value is None else str(value)
