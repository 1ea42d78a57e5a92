"""Health verifier: instance-level health confirmation after a rollout."""

from __future__ import annotations

import asyncio

import structlog

from bluegreen.domain.errors import HealthDegradedError
from bluegreen.domain.models.service import HealthResult, RevisionRef, ServiceTarget
from bluegreen.domain.ports.services import ControlPlaneClient
from bluegreen.domain.services.rollout_monitor import Sleeper
from bluegreen.infrastructure.observability.metrics import HEALTHY_INSTANCE_RATIO


logger = structlog.get_logger(__name__)


class HealthVerifier:
    """Classifies every instance of a revision as healthy or unhealthy.

    The grace period is waited once; health checks need warm-up time, not
    convergence polling.
    """

    def __init__(
        self,
        control_plane: ControlPlaneClient,
        grace_period: float = 60.0,
        min_healthy_ratio: float = 0.0,
        sleep: Sleeper | None = None,
    ) -> None:
        self._control_plane = control_plane
        self._grace_period = grace_period
        self._min_healthy_ratio = min_healthy_ratio
        self._sleep = sleep or asyncio.sleep

    async def verify(
        self,
        target: ServiceTarget,
        revision_ref: RevisionRef,
        grace_period: float | None = None,
    ) -> HealthResult:
        grace_period = self._grace_period if grace_period is None else grace_period
        if grace_period > 0:
            logger.info(
                "health_grace_period_started",
                service=target.key,
                seconds=grace_period,
            )
            await self._sleep(grace_period)

        instances = await self._control_plane.list_instances(target, revision_ref)
        healthy = 0
        unhealthy: list[str] = []
        for instance in instances:
            health = await self._control_plane.describe_instance_health(target, instance)
            if health.is_healthy:
                healthy += 1
            else:
                unhealthy.append(instance.instance_id)
                logger.info(
                    "instance_unhealthy",
                    service=target.key,
                    instance=instance.instance_id,
                    status=health.status,
                    last_status=health.last_status,
                )

        result = HealthResult(
            healthy_count=healthy,
            total_count=len(instances),
            unhealthy_instances=unhealthy,
        )
        HEALTHY_INSTANCE_RATIO.labels(service=target.key).set(result.ratio)
        logger.info(
            "health_verified",
            service=target.key,
            revision=str(revision_ref),
            healthy=result.healthy_count,
            total=result.total_count,
        )
        return result

    def enforce(self, result: HealthResult) -> None:
        """Raise :class:`HealthDegradedError` unless every instance is healthy.

        The error is fatal when no instance is healthy or when the healthy
        ratio falls below the configured minimum; otherwise it is a warning
        for the caller to log.
        """
        if result.all_healthy:
            return
        fatal = result.healthy_count == 0 or result.ratio < self._min_healthy_ratio
        raise HealthDegradedError(result, fatal=fatal)
