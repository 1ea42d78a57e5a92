"""Domain events package."""

from bluegreen.domain.events.deployment_events import (
    DeploymentFinished,
    DeploymentPhaseChanged,
    RolloutProgressObserved,
)


__all__ = [
    "DeploymentFinished",
    "DeploymentPhaseChanged",
    "RolloutProgressObserved",
]
