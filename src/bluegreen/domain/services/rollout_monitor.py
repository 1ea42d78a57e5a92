"""Rollout monitor: polls the control plane until a rollout settles."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from bluegreen.domain.errors import ControlPlaneError
from bluegreen.domain.models.service import (
    RevisionRef,
    RolloutOutcome,
    RolloutProgress,
    ServiceTarget,
)
from bluegreen.domain.ports.services import ControlPlaneClient
from bluegreen.infrastructure.observability.metrics import (
    MONITOR_OUTCOMES_TOTAL,
    MONITOR_POLLS_TOTAL,
)


logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[RolloutProgress], Awaitable[None]]
Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class RolloutMonitor:
    """Watches a rollout until it completes, fails, or runs out of time.

    ``clock`` and ``sleep`` default to the monotonic clock and
    :func:`asyncio.sleep`; both are injectable so callers can drive the loop
    deterministically.
    """

    def __init__(
        self,
        control_plane: ControlPlaneClient,
        poll_interval: float = 20.0,
        max_wait: float = 900.0,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self._control_plane = control_plane
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    async def watch(
        self,
        target: ServiceTarget,
        revision_ref: RevisionRef,
        max_wait: float | None = None,
        poll_interval: float | None = None,
        on_progress: ProgressCallback | None = None,
        deadline: float | None = None,
    ) -> tuple[RolloutProgress, RolloutOutcome]:
        """Poll until ``revision_ref`` is fully rolled out on ``target``.

        ``deadline`` is an absolute time on the monitor's clock; when given
        it further bounds ``max_wait``.
        """
        max_wait = self._max_wait if max_wait is None else max_wait
        poll_interval = self._poll_interval if poll_interval is None else poll_interval

        started = self._clock()
        stop_at = started + max_wait
        if deadline is not None:
            stop_at = min(stop_at, deadline)

        progress = RolloutProgress()
        polls = 0
        last_event = ""

        while True:
            polls += 1
            try:
                snapshot = await self._control_plane.describe_service(target)
            except ControlPlaneError as e:
                MONITOR_POLLS_TOTAL.labels(result="error").inc()
                logger.warning(
                    "rollout_poll_failed",
                    service=target.key,
                    revision=str(revision_ref),
                    poll=polls,
                    error=str(e),
                )
            else:
                progress = snapshot.to_progress()
                if progress.latest_event and progress.latest_event != last_event:
                    last_event = progress.latest_event
                    logger.info("rollout_event", service=target.key, message=last_event)

                logger.info(
                    "rollout_progress",
                    service=target.key,
                    revision=str(revision_ref),
                    running=progress.running_count,
                    desired=progress.desired_count,
                    pending=progress.pending_count,
                    deployments=len(progress.active_deployments),
                )
                if on_progress is not None:
                    await on_progress(progress)

                if progress.has_failed_for(revision_ref):
                    MONITOR_POLLS_TOTAL.labels(result="failed").inc()
                    return self._finish(target, revision_ref, progress, RolloutOutcome.FAILED)

                if progress.is_complete_for(revision_ref):
                    MONITOR_POLLS_TOTAL.labels(result="completed").inc()
                    return self._finish(
                        target, revision_ref, progress, RolloutOutcome.COMPLETED
                    )

                MONITOR_POLLS_TOTAL.labels(result="in_progress").inc()

            remaining = stop_at - self._clock()
            if remaining <= 0:
                return self._finish(target, revision_ref, progress, RolloutOutcome.TIMED_OUT)
            await self._sleep(min(poll_interval, remaining))

    @staticmethod
    def _finish(
        target: ServiceTarget,
        revision_ref: RevisionRef,
        progress: RolloutProgress,
        outcome: RolloutOutcome,
    ) -> tuple[RolloutProgress, RolloutOutcome]:
        MONITOR_OUTCOMES_TOTAL.labels(outcome=outcome.value).inc()
        log = logger.info if outcome.succeeded else logger.warning
        log(
            "rollout_settled",
            service=target.key,
            revision=str(revision_ref),
            outcome=outcome.value,
            running=progress.running_count,
            desired=progress.desired_count,
        )
        return progress, outcome
