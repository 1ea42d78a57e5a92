"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bluegreen.config import (
    Environment,
    LedgerBackend,
    LedgerSettings,
    RolloutSettings,
    Settings,
)
from bluegreen.domain.models.deployment import DeploymentRequest
from bluegreen.domain.models.service import ServiceTarget
from bluegreen.domain.services.health_verifier import HealthVerifier
from bluegreen.domain.services.ledger import DeploymentLedger
from bluegreen.domain.services.orchestrator import DeploymentOrchestrator
from bluegreen.domain.services.rollout_monitor import RolloutMonitor
from bluegreen.infrastructure.cache.redis_lock import InMemoryDistributedLock
from bluegreen.infrastructure.control_plane.simulated import SimulatedControlPlane
from bluegreen.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from bluegreen.infrastructure.persistence.repositories.in_memory import (
    InMemoryLedgerRepository,
)


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_stores() -> None:
    """Clear in-memory stores before each test."""
    InMemoryLedgerRepository.clear()


@pytest.fixture
def rollout_settings() -> RolloutSettings:
    return RolloutSettings(
        poll_interval_seconds=1.0,
        max_wait_seconds=30.0,
        health_grace_period_seconds=0.0,
        update_timeout_seconds=5.0,
        registration_timeout_seconds=5.0,
    )


@pytest.fixture
def settings(rollout_settings: RolloutSettings) -> Settings:
    return Settings(
        environment=Environment.TESTING,
        debug=True,
        rollout=rollout_settings,
        ledger=LedgerSettings(backend=LedgerBackend.MEMORY),
    )


@pytest.fixture
def fast_settings() -> Settings:
    """Settings for tests that run the container's orchestrator on the real clock."""
    return Settings(
        environment=Environment.TESTING,
        debug=True,
        rollout=RolloutSettings(
            poll_interval_seconds=0.01,
            max_wait_seconds=1.0,
            health_grace_period_seconds=0.0,
            update_timeout_seconds=5.0,
            registration_timeout_seconds=5.0,
        ),
        ledger=LedgerSettings(backend=LedgerBackend.MEMORY),
    )


@pytest.fixture
def target() -> ServiceTarget:
    return ServiceTarget(cluster_id="prod-cluster", service_id="api", region="us-east-1")


@pytest.fixture
def control_plane(target: ServiceTarget) -> SimulatedControlPlane:
    plane = SimulatedControlPlane(convergence_polls=2)
    plane.add_service(target, revision="app:1", desired_count=4)
    return plane


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger_repo() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


@pytest.fixture
def ledger(ledger_repo: InMemoryLedgerRepository) -> DeploymentLedger:
    return DeploymentLedger(ledger_repo)


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def lock_service() -> InMemoryDistributedLock:
    return InMemoryDistributedLock()


@pytest.fixture
def monitor(control_plane: SimulatedControlPlane, clock: FakeClock) -> RolloutMonitor:
    return RolloutMonitor(
        control_plane, poll_interval=1.0, max_wait=30.0, clock=clock, sleep=clock.sleep
    )


@pytest.fixture
def in_window() -> datetime:
    # inside the default 02:00-06:00 maintenance window
    return datetime(2026, 3, 4, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def orchestrator(
    control_plane: SimulatedControlPlane,
    ledger: DeploymentLedger,
    lock_service: InMemoryDistributedLock,
    event_publisher: InMemoryEventPublisher,
    rollout_settings: RolloutSettings,
    monitor: RolloutMonitor,
    clock: FakeClock,
    in_window: datetime,
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        control_plane=control_plane,
        ledger=ledger,
        lock_service=lock_service,
        event_publisher=event_publisher,
        settings=rollout_settings,
        monitor=monitor,
        health_verifier=HealthVerifier(control_plane, grace_period=0.0, sleep=clock.sleep),
        now=lambda: in_window,
    )


@pytest.fixture
def image_request(target: ServiceTarget) -> DeploymentRequest:
    return DeploymentRequest(
        service_target=target,
        image="registry.example.com/app:v2",
        requested_by="test-user",
    )
