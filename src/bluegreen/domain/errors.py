"""Deployment error taxonomy."""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from bluegreen.domain.models.service import HealthResult, RolloutOutcome


class DeploymentError(Exception):
    """Base class for all deployment errors."""


class ConfigurationError(DeploymentError):
    """Raised when a request fails validation before any external mutation."""


class DeploymentLockError(ConfigurationError):
    """Raised when another attempt already holds the service lock."""


class DeploymentNotFoundError(DeploymentError):
    """Raised when a deployment has no ledger history."""


class ControlPlaneError(DeploymentError):
    """Raised when a control-plane call fails."""

    def __init__(self, message: str, operation: str = "", retryable: bool = False) -> None:
        super().__init__(message)
        self.operation = operation
        self.retryable = retryable


class RolloutFailedError(DeploymentError):
    """Raised when a rollout fails structurally or times out."""

    def __init__(self, message: str, outcome: RolloutOutcome | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class HealthDegradedError(DeploymentError):
    """Raised when instances of the new revision are not all healthy."""

    def __init__(self, result: HealthResult, fatal: bool) -> None:
        super().__init__(
            f"{result.healthy_count}/{result.total_count} instances healthy"
        )
        self.result = result
        self.fatal = fatal


class RollbackFailedError(DeploymentError):
    """Raised when a rollback cannot restore the previous revision."""


class InvalidPhaseTransitionError(DeploymentError):
    """Raised when an invalid phase transition is attempted."""
