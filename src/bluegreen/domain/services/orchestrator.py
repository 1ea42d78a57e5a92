"""Deployment orchestrator: drives an attempt through the blue-green state machine."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog
from opentelemetry.trace import Status, StatusCode

from bluegreen.config import RolloutSettings
from bluegreen.domain.errors import (
    ConfigurationError,
    ControlPlaneError,
    DeploymentLockError,
    DeploymentNotFoundError,
    HealthDegradedError,
    RollbackFailedError,
    RolloutFailedError,
)
from bluegreen.domain.events.deployment_events import RolloutProgressObserved
from bluegreen.domain.models.base import utc_now
from bluegreen.domain.models.deployment import (
    DeploymentAttempt,
    DeploymentPhase,
    DeploymentRequest,
    DeploymentResult,
)
from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.models.service import (
    CapacityBounds,
    RevisionRef,
    RolloutProgress,
    ServiceTarget,
)
from bluegreen.domain.ports.services import (
    ControlPlaneClient,
    DistributedLock,
    EventPublisher,
)
from bluegreen.domain.services.health_verifier import HealthVerifier
from bluegreen.domain.services.ledger import DeploymentLedger
from bluegreen.domain.services.revision_registry import (
    image_tag,
    RevisionRegistry,
    validate_image,
)
from bluegreen.domain.services.rollback_manager import RollbackManager
from bluegreen.domain.services.rollout_monitor import ProgressCallback, RolloutMonitor
from bluegreen.infrastructure.observability.logging import deployment_context
from bluegreen.infrastructure.observability.metrics import (
    ACTIVE_DEPLOYMENTS,
    DEPLOYMENTS_TOTAL,
    PHASE_DURATION,
    ROLLBACKS_TOTAL,
)
from bluegreen.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)

PhaseStep = Callable[[dict[str, Any]], Awaitable[None]]

_PRE_MUTATION_PHASES = frozenset({
    DeploymentPhase.PRECHECK,
    DeploymentPhase.SNAPSHOT_CURRENT,
    DeploymentPhase.REGISTER_REVISION,
})

_DONE = object()


def lock_key(target: ServiceTarget) -> str:
    return f"deployment:{target.key}"


class _Lease:
    """The service lock as held by one run; only the acquiring run releases it."""

    def __init__(self, lock_service: DistributedLock, resource_id: str) -> None:
        self._lock_service = lock_service
        self.resource_id = resource_id
        self.held = False

    async def acquire(self, ttl_seconds: int) -> bool:
        self.held = await self._lock_service.acquire(self.resource_id, ttl_seconds=ttl_seconds)
        return self.held

    async def hold(self, ttl_seconds: int) -> bool:
        """Keep the lease if this run still has it, otherwise acquire it."""
        if self.held and await self._lock_service.extend(
            self.resource_id, ttl_seconds=ttl_seconds
        ):
            return True
        return await self.acquire(ttl_seconds)

    async def renew(self, ttl_seconds: int) -> None:
        """Push the expiry out while a watch is running; losing it only warns."""
        if not self.held:
            return
        try:
            renewed = await self._lock_service.extend(self.resource_id, ttl_seconds=ttl_seconds)
        except Exception as e:
            logger.warning(
                "deployment_lock_renew_failed", resource_id=self.resource_id, error=str(e)
            )
            return
        if not renewed:
            logger.warning("deployment_lock_lost", resource_id=self.resource_id)

    async def release(self) -> None:
        if self.held:
            await self._lock_service.release(self.resource_id)
            self.held = False


class DeploymentOrchestrator:
    """Runs deployment attempts end to end.

    One attempt per :class:`ServiceTarget` at a time, enforced through the
    distributed lock acquired in PRECHECK. Every phase is recorded on the
    ledger when it finishes, successfully or not, and terminal phases get an
    entry of their own.
    """

    def __init__(
        self,
        control_plane: ControlPlaneClient,
        ledger: DeploymentLedger,
        lock_service: DistributedLock,
        event_publisher: EventPublisher,
        settings: RolloutSettings | None = None,
        *,
        registry: RevisionRegistry | None = None,
        monitor: RolloutMonitor | None = None,
        health_verifier: HealthVerifier | None = None,
        rollback_manager: RollbackManager | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings or RolloutSettings()
        self._control_plane = control_plane
        self._ledger = ledger
        self._lock_service = lock_service
        self._event_publisher = event_publisher
        self._registry = registry or RevisionRegistry(
            control_plane, timeout_seconds=self._settings.registration_timeout_seconds
        )
        self._monitor = monitor or RolloutMonitor(
            control_plane,
            poll_interval=self._settings.poll_interval_seconds,
            max_wait=self._settings.max_wait_seconds,
        )
        self._health_verifier = health_verifier or HealthVerifier(
            control_plane,
            grace_period=self._settings.health_grace_period_seconds,
            min_healthy_ratio=self._settings.min_healthy_ratio,
        )
        self._rollback_manager = rollback_manager or RollbackManager(
            control_plane,
            self._monitor,
            ledger,
            update_timeout=self._settings.update_timeout_seconds,
        )
        self._now = now
        self._tracer = get_tracer(__name__)
        # leases of runs that stopped before a terminal phase, by deployment id
        self._stranded: dict[str, _Lease] = {}

    @property
    def default_capacity(self) -> CapacityBounds:
        return CapacityBounds(
            min_healthy_percent=self._settings.min_healthy_percent,
            max_percent=self._settings.max_percent,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def run_deployment(
        self,
        request: DeploymentRequest,
        on_progress: ProgressCallback | None = None,
    ) -> DeploymentResult:
        """Run one attempt to a terminal phase and return its result.

        Once the service has been updated, any failure leads into the
        rollback path. An error escaping before then, or from the rollback
        itself, leaves the attempt mid-flight on the ledger with the service
        lock still held; :meth:`rollback_deployment` recovers it.
        """
        attempt = DeploymentAttempt.from_request(request)
        capacity = request.capacity or self.default_capacity
        lease = _Lease(self._lock_service, lock_key(request.service_target))

        ACTIVE_DEPLOYMENTS.inc()
        try:
            with deployment_context(attempt.deployment_id, attempt.service_target.key):
                logger.info(
                    "deployment_started",
                    image=request.image,
                    revision=_optional_str(request.revision_ref),
                    requested_by=request.requested_by,
                    dry_run=request.dry_run,
                )
                try:
                    await self._drive(
                        attempt,
                        request,
                        capacity,
                        lease,
                        self._forward_progress(attempt, lease, on_progress),
                    )
                except Exception:
                    logger.exception("deployment_interrupted", phase=attempt.phase.value)
                    raise
                return self._finish(attempt)
        finally:
            await self._settle_lease(attempt, lease)
            ACTIVE_DEPLOYMENTS.dec()

    async def stream_deployment(
        self, request: DeploymentRequest
    ) -> AsyncIterator[RolloutProgress | DeploymentResult]:
        """Yield every rollout progress snapshot, then the final result.

        Closing the iterator early does not cancel the attempt.
        """
        queue: asyncio.Queue[Any] = asyncio.Queue()

        async def forward(progress: RolloutProgress) -> None:
            await queue.put(progress)

        task = asyncio.create_task(self.run_deployment(request, on_progress=forward))
        task.add_done_callback(lambda _: queue.put_nowait(_DONE))
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
            yield task.result()
        finally:
            if not task.done():
                await asyncio.shield(task)

    async def rollback_deployment(
        self, deployment_id: str, requested_by: str = "unknown"
    ) -> DeploymentResult:
        """Return the service of a recorded attempt to its previous revision.

        - ROLLED_BACK: no-op.
        - ROLLBACK_FAILED: refused; it needs an operator.
        - COMPLETED: a new attempt pinned to the previous revision.
        - interrupted mid-flight: resumes the rollback path of the attempt.
        """
        attempt = await self.get_attempt(deployment_id)

        if attempt.phase == DeploymentPhase.ROLLED_BACK:
            applied = await self._rollback_manager.is_already_applied(attempt)
            ROLLBACKS_TOTAL.labels(result="noop").inc()
            log = logger.info if applied else logger.warning
            log(
                "rollback_noop",
                deployment_id=deployment_id,
                revision=_optional_str(attempt.previous_revision_ref),
                service_matches=applied,
            )
            return attempt.to_result()

        if attempt.phase == DeploymentPhase.ROLLBACK_FAILED:
            raise RollbackFailedError(
                f"Deployment {deployment_id} already failed to roll back; "
                "manual intervention is required"
            )

        if attempt.phase in {DeploymentPhase.ABORTED, DeploymentPhase.VALIDATED}:
            raise ConfigurationError(
                f"Deployment {deployment_id} ended {attempt.phase.value} "
                "without changing the service; nothing to roll back"
            )

        if attempt.phase == DeploymentPhase.COMPLETED:
            if attempt.previous_revision_ref is None:
                raise ConfigurationError(
                    f"Deployment {deployment_id} has no recorded previous revision"
                )
            return await self.run_deployment(DeploymentRequest(
                service_target=attempt.service_target,
                revision_ref=attempt.previous_revision_ref,
                requested_by=requested_by,
                metadata={"rollback_of": deployment_id},
            ))

        return await self._recover(attempt)

    async def rollback_service(
        self,
        target: ServiceTarget,
        revision_ref: RevisionRef | None = None,
        requested_by: str = "unknown",
    ) -> DeploymentResult:
        """Redeploy ``revision_ref``, or the revision preceding the current one."""
        if revision_ref is None:
            snapshot = await self._control_plane.describe_service(target)
            revision_ref = snapshot.current_revision_ref.previous()
            logger.info(
                "rollback_target_resolved",
                service=target.key,
                current=str(snapshot.current_revision_ref),
                revision=str(revision_ref),
            )
        return await self.run_deployment(DeploymentRequest(
            service_target=target,
            revision_ref=revision_ref,
            requested_by=requested_by,
            metadata={"manual_rollback": "true"},
        ))

    async def get_attempt(self, deployment_id: str) -> DeploymentAttempt:
        return DeploymentAttempt.from_ledger(await self.history(deployment_id))

    async def history(self, deployment_id: str) -> list[LedgerEntry]:
        entries = await self._ledger.history(deployment_id)
        if not entries:
            raise DeploymentNotFoundError(f"Deployment {deployment_id} not found")
        return entries

    async def service_history(
        self, target: ServiceTarget, limit: int = 100
    ) -> list[LedgerEntry]:
        return await self._ledger.service_history(target.key, limit=limit)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _drive(
        self,
        attempt: DeploymentAttempt,
        request: DeploymentRequest,
        capacity: CapacityBounds,
        lease: _Lease,
        on_progress: ProgressCallback,
    ) -> None:
        try:
            await self._run_phase(
                attempt,
                DeploymentPhase.PRECHECK,
                lambda detail: self._precheck(attempt, request, lease, detail),
            )
            attempt.advance(DeploymentPhase.SNAPSHOT_CURRENT)
            await self._run_phase(
                attempt,
                DeploymentPhase.SNAPSHOT_CURRENT,
                lambda detail: self._snapshot(attempt, detail),
            )
            if request.dry_run:
                attempt.advance(DeploymentPhase.VALIDATED)
                await self._record_terminal(attempt, {
                    "previous_revision": _optional_str(attempt.previous_revision_ref),
                    "image": attempt.image,
                    "revision_ref": _optional_str(attempt.target_revision_ref),
                })
                return
            attempt.advance(DeploymentPhase.REGISTER_REVISION)
            await self._run_phase(
                attempt,
                DeploymentPhase.REGISTER_REVISION,
                lambda detail: self._register(attempt, request, detail),
            )
        except (ConfigurationError, ControlPlaneError) as e:
            failed_phase = attempt.phase
            attempt.abort(str(e))
            await self._record_terminal(
                attempt, {"failed_phase": failed_phase.value}, error=str(e)
            )
            return

        try:
            attempt.advance(DeploymentPhase.UPDATE_SERVICE)
            await self._run_phase(
                attempt,
                DeploymentPhase.UPDATE_SERVICE,
                lambda detail: self._update(attempt, capacity, detail),
            )
            attempt.advance(DeploymentPhase.MONITOR_ROLLOUT)
            await self._run_phase(
                attempt,
                DeploymentPhase.MONITOR_ROLLOUT,
                lambda detail: self._monitor_rollout(attempt, on_progress, detail),
            )
            attempt.advance(DeploymentPhase.VERIFY_HEALTH)
            await self._run_phase(
                attempt,
                DeploymentPhase.VERIFY_HEALTH,
                lambda detail: self._verify_health(attempt, detail),
            )
        except (ControlPlaneError, RolloutFailedError, HealthDegradedError) as e:
            await self._roll_back(attempt, capacity, str(e), on_progress)
            return
        except Exception as e:
            # the service may already be converging on the new revision
            logger.exception("deployment_step_crashed", phase=attempt.phase.value)
            await self._roll_back(attempt, capacity, f"{type(e).__name__}: {e}", on_progress)
            return

        attempt.advance(DeploymentPhase.COMPLETED)
        await self._record_terminal(attempt, {
            "target_revision": _optional_str(attempt.target_revision_ref),
            "health": _optional_str(attempt.health),
        })
        await self._tag_service(attempt)

    async def _run_phase(
        self,
        attempt: DeploymentAttempt,
        phase: DeploymentPhase,
        step: PhaseStep,
    ) -> None:
        """Run one phase inside a span and record its ledger entry.

        ``step`` fills in the detail dict; whatever it holds when the step
        raises is recorded next to the error.
        """
        detail: dict[str, Any] = {}
        started = time.monotonic()
        with self._tracer.start_as_current_span(f"deployment.{phase.value.lower()}") as span:
            span.set_attribute("deployment.id", attempt.deployment_id)
            span.set_attribute("deployment.service", attempt.service_target.key)
            logger.info("phase_started", phase=phase.value)
            try:
                await step(detail)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                await self._ledger.record_phase(attempt, phase, detail, error=str(e))
                logger.warning("phase_failed", phase=phase.value, error=str(e))
                raise
            finally:
                PHASE_DURATION.labels(phase=phase.value).observe(time.monotonic() - started)
            await self._ledger.record_phase(attempt, phase, detail)
        await self._publish_events(attempt)
        logger.info("phase_completed", phase=phase.value)

    async def _precheck(
        self,
        attempt: DeploymentAttempt,
        request: DeploymentRequest,
        lease: _Lease,
        detail: dict[str, Any],
    ) -> None:
        detail.update(attempt.ledger_context())
        detail["environment"] = request.environment
        detail["dry_run"] = request.dry_run
        if request.metadata:
            detail["metadata"] = dict(request.metadata)

        if request.image and request.revision_ref:
            raise ConfigurationError("Request either an image or a revision, not both")
        if request.image:
            detail["image_tag"] = validate_image(request.image, self._settings.mutable_tags)
        elif request.revision_ref is None:
            raise ConfigurationError("An image or a revision to deploy is required")

        if (
            self._settings.require_production_environment
            and request.environment.lower() != "production"
        ):
            raise ConfigurationError(
                f"Environment '{request.environment}' is not production; refusing to deploy"
            )

        target = attempt.service_target
        try:
            snapshot = await self._control_plane.describe_service(target)
        except ControlPlaneError as e:
            raise ConfigurationError(f"Service {target.key} could not be resolved: {e}") from e
        if not snapshot.is_active:
            raise ConfigurationError(f"Service {target.key} is {snapshot.status}, not ACTIVE")

        if not self._in_maintenance_window():
            detail["outside_maintenance_window"] = True
            logger.warning(
                "outside_maintenance_window",
                start_hour=self._settings.maintenance_window_start_hour,
                end_hour=self._settings.maintenance_window_end_hour,
            )

        if not await lease.acquire(self._settings.lock_ttl_seconds):
            raise DeploymentLockError(f"Another deployment of {target.key} is in flight")

    async def _snapshot(self, attempt: DeploymentAttempt, detail: dict[str, Any]) -> None:
        snapshot = await self._control_plane.describe_service(attempt.service_target)
        attempt.capture_previous(snapshot.current_revision_ref)
        detail.update({
            "previous_revision": str(snapshot.current_revision_ref),
            "running": snapshot.running_count,
            "desired": snapshot.desired_count,
        })

    async def _register(
        self,
        attempt: DeploymentAttempt,
        request: DeploymentRequest,
        detail: dict[str, Any],
    ) -> None:
        if request.revision_ref is not None:
            if request.revision_ref.same_as(attempt.previous_revision_ref):
                raise ConfigurationError(f"Service already runs {request.revision_ref}")
            attempt.set_target(request.revision_ref)
            detail.update({"target_revision": str(request.revision_ref), "reused": True})
            return

        detail["base_revision"] = _optional_str(attempt.previous_revision_ref)
        detail["image"] = attempt.image
        revision_ref = await self._registry.register(attempt)
        detail["target_revision"] = str(revision_ref)

    async def _update(
        self,
        attempt: DeploymentAttempt,
        capacity: CapacityBounds,
        detail: dict[str, Any],
    ) -> None:
        revision_ref = _require(attempt.target_revision_ref)
        detail.update({
            "revision": str(revision_ref),
            "min_healthy_percent": capacity.min_healthy_percent,
            "max_percent": capacity.max_percent,
        })
        timeout = self._settings.update_timeout_seconds
        try:
            await asyncio.wait_for(
                self._control_plane.update_service(
                    attempt.service_target, revision_ref, capacity
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ControlPlaneError(
                f"Service update was not accepted within {timeout}s",
                operation="update_service",
            ) from e

    async def _monitor_rollout(
        self,
        attempt: DeploymentAttempt,
        on_progress: ProgressCallback,
        detail: dict[str, Any],
    ) -> None:
        revision_ref = _require(attempt.target_revision_ref)
        progress, outcome = await self._monitor.watch(
            attempt.service_target, revision_ref, on_progress=on_progress
        )
        detail.update({
            "revision": str(revision_ref),
            "outcome": outcome.value,
            "running": progress.running_count,
            "desired": progress.desired_count,
            "pending": progress.pending_count,
        })
        if not outcome.succeeded:
            raise RolloutFailedError(
                f"Rollout of {revision_ref} ended {outcome.value}", outcome=outcome
            )

    async def _verify_health(self, attempt: DeploymentAttempt, detail: dict[str, Any]) -> None:
        revision_ref = _require(attempt.target_revision_ref)
        result = await self._health_verifier.verify(attempt.service_target, revision_ref)
        attempt.record_health(result)
        detail.update({
            "healthy": result.healthy_count,
            "total": result.total_count,
            "unhealthy_instances": list(result.unhealthy_instances),
        })
        try:
            self._health_verifier.enforce(result)
        except HealthDegradedError as e:
            if e.fatal:
                raise
            detail["degraded"] = True
            logger.warning(
                "health_degraded",
                healthy=result.healthy_count,
                total=result.total_count,
                unhealthy=result.unhealthy_instances,
            )

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def _roll_back(
        self,
        attempt: DeploymentAttempt,
        capacity: CapacityBounds,
        reason: str,
        on_progress: ProgressCallback,
    ) -> None:
        attempt.start_rollback(reason)
        await self._ledger.record_phase(attempt, DeploymentPhase.ROLLING_BACK, {
            "reason": reason,
            "revision": _optional_str(attempt.previous_revision_ref),
        })
        await self._publish_events(attempt)
        await self._settle_rollback(attempt, capacity, on_progress)

    async def _settle_rollback(
        self,
        attempt: DeploymentAttempt,
        capacity: CapacityBounds,
        on_progress: ProgressCallback,
    ) -> None:
        revision = _optional_str(attempt.previous_revision_ref)
        with self._tracer.start_as_current_span("deployment.rolling_back") as span:
            span.set_attribute("deployment.id", attempt.deployment_id)
            try:
                await self._rollback_manager.rollback(attempt, capacity, on_progress)
            except RollbackFailedError as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                attempt.fail_rollback(str(e))
                ROLLBACKS_TOTAL.labels(result="failed").inc()
                await self._record_terminal(attempt, {"revision": revision}, error=str(e))
                return

        attempt.complete_rollback()
        ROLLBACKS_TOTAL.labels(result="rolled_back").inc()
        await self._record_terminal(attempt, {"revision": revision})

    async def _recover(self, attempt: DeploymentAttempt) -> DeploymentResult:
        """Finish an attempt whose run stopped before a terminal phase."""
        lease = self._stranded.pop(attempt.deployment_id, None) or _Lease(
            self._lock_service, lock_key(attempt.service_target)
        )
        with deployment_context(attempt.deployment_id, attempt.service_target.key):
            if not await lease.hold(self._settings.lock_ttl_seconds):
                raise DeploymentLockError(
                    f"Deployment {attempt.deployment_id} may still be running; "
                    f"{attempt.service_target.key} is locked"
                )
            ACTIVE_DEPLOYMENTS.inc()
            try:
                logger.warning("deployment_recovering", phase=attempt.phase.value)
                on_progress = self._forward_progress(attempt, lease, None)
                if attempt.phase in _PRE_MUTATION_PHASES:
                    interrupted = attempt.phase
                    attempt.abort(f"Interrupted in {interrupted.value} before the service changed")
                    await self._record_terminal(attempt, {"failed_phase": interrupted.value})
                elif attempt.phase == DeploymentPhase.ROLLING_BACK:
                    await self._settle_rollback(attempt, self.default_capacity, on_progress)
                else:
                    await self._roll_back(
                        attempt,
                        self.default_capacity,
                        f"Interrupted in {attempt.phase.value}",
                        on_progress,
                    )
                return self._finish(attempt)
            finally:
                await self._settle_lease(attempt, lease)
                ACTIVE_DEPLOYMENTS.dec()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _record_terminal(
        self,
        attempt: DeploymentAttempt,
        detail: dict[str, Any],
        error: str | None = None,
    ) -> None:
        await self._ledger.record_phase(attempt, attempt.phase, detail, error=error)
        await self._publish_events(attempt)

    async def _settle_lease(self, attempt: DeploymentAttempt, lease: _Lease) -> None:
        """Release the service lock once the attempt is terminal.

        A run that stops short keeps the lock until it is recovered or its
        TTL runs out, so no new attempt starts on a half-rolled service.
        """
        if attempt.is_terminal:
            await lease.release()
        elif lease.held:
            self._stranded[attempt.deployment_id] = lease
            logger.error(
                "deployment_lock_retained",
                deployment_id=attempt.deployment_id,
                service=attempt.service_target.key,
                phase=attempt.phase.value,
            )

    async def _publish_events(self, attempt: DeploymentAttempt) -> None:
        """Collect and publish all pending domain events from an attempt.

        Publishing is best effort: the ledger is the record of the attempt.
        """
        events = attempt.collect_events()
        if not events:
            return
        try:
            await self._event_publisher.publish_batch(
                [(event.event_type, event.model_dump(mode="json")) for event in events]
            )
        except Exception as e:
            logger.warning(
                "event_publish_failed",
                event_types=[event.event_type for event in events],
                error=str(e),
            )

    def _forward_progress(
        self,
        attempt: DeploymentAttempt,
        lease: _Lease,
        on_progress: ProgressCallback | None,
    ) -> ProgressCallback:
        async def forward(progress: RolloutProgress) -> None:
            await lease.renew(self._settings.lock_ttl_seconds)
            revision = (
                attempt.previous_revision_ref
                if attempt.phase == DeploymentPhase.ROLLING_BACK
                else attempt.target_revision_ref
            )
            attempt.add_event(RolloutProgressObserved(
                deployment_id=attempt.deployment_id,
                revision=_optional_str(revision) or "",
                running_count=progress.running_count,
                desired_count=progress.desired_count,
                pending_count=progress.pending_count,
                latest_event=progress.latest_event,
                correlation_id=attempt.deployment_id,
            ))
            await self._publish_events(attempt)
            if on_progress is None:
                return
            try:
                await on_progress(progress)
            except Exception as e:
                logger.warning("progress_listener_failed", error=str(e))

        return forward

    async def _tag_service(self, attempt: DeploymentAttempt) -> None:
        tags = {
            "LastDeployment": attempt.deployment_id,
            "LastDeploymentTime": self._now().isoformat(),
            "Revision": _optional_str(attempt.target_revision_ref) or "",
        }
        if attempt.image:
            tags["ImageTag"] = image_tag(attempt.image) or attempt.image
        try:
            await self._control_plane.tag_service(attempt.service_target, tags)
        except ControlPlaneError as e:
            logger.warning("service_tagging_failed", error=str(e))

    def _in_maintenance_window(self) -> bool:
        hour = self._now().hour
        start = self._settings.maintenance_window_start_hour
        end = self._settings.maintenance_window_end_hour
        if start <= end:
            return start <= hour < end
        # window wraps midnight
        return hour >= start or hour < end

    def _finish(self, attempt: DeploymentAttempt) -> DeploymentResult:
        result = attempt.to_result()
        DEPLOYMENTS_TOTAL.labels(final_phase=result.final_phase.value).inc()
        fields = {
            "final_phase": result.final_phase.value,
            "previous_revision": _optional_str(result.previous_revision_ref),
            "target_revision": _optional_str(result.target_revision_ref),
            "error": result.error or None,
        }
        if result.final_phase == DeploymentPhase.ROLLBACK_FAILED:
            logger.critical("deployment_rollback_failed_manual_action_required", **fields)
        elif result.succeeded:
            logger.info("deployment_finished", **fields)
        else:
            logger.warning("deployment_finished", **fields)
        return result


def _require(revision_ref: RevisionRef | None) -> RevisionRef:
    if revision_ref is None:
        raise ConfigurationError("No target revision has been set")
    return revision_ref


def _optional_str(value: object | None) -> str | None:
    return None if value is None else str(value)
