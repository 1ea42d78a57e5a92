"""Rollback manager: restores the previously active revision."""

from __future__ import annotations

import asyncio

import structlog

from bluegreen.domain.errors import ControlPlaneError, RollbackFailedError
from bluegreen.domain.models.deployment import DeploymentAttempt, DeploymentPhase
from bluegreen.domain.models.service import CapacityBounds, RolloutOutcome
from bluegreen.domain.ports.services import ControlPlaneClient
from bluegreen.domain.services.ledger import DeploymentLedger
from bluegreen.domain.services.rollout_monitor import ProgressCallback, RolloutMonitor


logger = structlog.get_logger(__name__)


class RollbackManager:
    """Re-applies ``previous_revision_ref`` and waits for it to settle.

    A rollback never registers a revision and never re-verifies instance
    health: the previous revision was known-good before the attempt began,
    so structural completion is accepted as success.
    """

    def __init__(
        self,
        control_plane: ControlPlaneClient,
        monitor: RolloutMonitor,
        ledger: DeploymentLedger,
        update_timeout: float = 60.0,
    ) -> None:
        self._control_plane = control_plane
        self._monitor = monitor
        self._ledger = ledger
        self._update_timeout = update_timeout

    async def is_already_applied(self, attempt: DeploymentAttempt) -> bool:
        """True when the service already runs only the previous revision."""
        if attempt.previous_revision_ref is None:
            return False
        snapshot = await self._control_plane.describe_service(attempt.service_target)
        return (
            snapshot.current_revision_ref.same_as(attempt.previous_revision_ref)
            and snapshot.to_progress().is_complete_for(attempt.previous_revision_ref)
        )

    async def rollback(
        self,
        attempt: DeploymentAttempt,
        capacity: CapacityBounds,
        on_progress: ProgressCallback | None = None,
    ) -> RolloutOutcome:
        """Drive ``attempt`` back onto its previous revision.

        Writes the UPDATE_SERVICE and MONITOR_ROLLOUT ledger entries of the
        rollback and raises :class:`RollbackFailedError` when the previous
        revision does not settle.
        """
        previous = attempt.previous_revision_ref
        if previous is None:
            raise RollbackFailedError("No previous revision was captured; cannot roll back")

        target = attempt.service_target
        logger.warning(
            "rollback_started",
            deployment_id=attempt.deployment_id,
            service=target.key,
            revision=str(previous),
        )

        update_detail = {"revision": str(previous), "rollback": True}
        try:
            await asyncio.wait_for(
                self._control_plane.update_service(target, previous, capacity),
                timeout=self._update_timeout,
            )
        except (ControlPlaneError, asyncio.TimeoutError) as e:
            message = str(e) or f"update timed out after {self._update_timeout}s"
            await self._ledger.record_phase(
                attempt, DeploymentPhase.UPDATE_SERVICE, update_detail, error=message
            )
            raise RollbackFailedError(f"Could not re-apply {previous}: {message}") from e
        await self._ledger.record_phase(attempt, DeploymentPhase.UPDATE_SERVICE, update_detail)

        progress, outcome = await self._monitor.watch(
            target, previous, on_progress=on_progress
        )
        monitor_detail = {
            "revision": str(previous),
            "outcome": outcome.value,
            "running": progress.running_count,
            "desired": progress.desired_count,
            "rollback": True,
        }
        if not outcome.succeeded:
            message = f"Rollback rollout of {previous} ended {outcome.value}"
            await self._ledger.record_phase(
                attempt, DeploymentPhase.MONITOR_ROLLOUT, monitor_detail, error=message
            )
            raise RollbackFailedError(message)

        await self._ledger.record_phase(attempt, DeploymentPhase.MONITOR_ROLLOUT, monitor_detail)
        logger.info(
            "rollback_settled",
            deployment_id=attempt.deployment_id,
            service=target.key,
            revision=str(previous),
        )
        return outcome
