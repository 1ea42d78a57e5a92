"""Domain models package."""

from bluegreen.domain.models.base import (
    AggregateRoot,
    DomainEvent,
    generate_id,
    utc_now,
    ValueObject,
)
from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.models.service import (
    CapacityBounds,
    DeploymentDescriptor,
    HealthResult,
    InstanceHealth,
    InstanceRef,
    RevisionRef,
    RolloutOutcome,
    RolloutProgress,
    RolloutState,
    ServiceSnapshot,
    ServiceTarget,
)
from bluegreen.domain.models.deployment import (
    DeploymentAttempt,
    DeploymentPhase,
    DeploymentRequest,
    DeploymentResult,
    TERMINAL_PHASES,
    VALID_TRANSITIONS,
)


__all__ = [
    "AggregateRoot",
    "CapacityBounds",
    "DeploymentAttempt",
    "DeploymentDescriptor",
    "DeploymentPhase",
    "DeploymentRequest",
    "DeploymentResult",
    "DomainEvent",
    "HealthResult",
    "InstanceHealth",
    "InstanceRef",
    "LedgerEntry",
    "RevisionRef",
    "RolloutOutcome",
    "RolloutProgress",
    "RolloutState",
    "ServiceSnapshot",
    "ServiceTarget",
    "TERMINAL_PHASES",
    "VALID_TRANSITIONS",
    "ValueObject",
    "generate_id",
    "utc_now",
]
