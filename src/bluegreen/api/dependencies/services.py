"""Service dependencies for FastAPI dependency injection."""

from __future__ import annotations

import asyncio
from typing import Any

import redis.asyncio
import structlog
from aiokafka import AIOKafkaProducer
from fastapi import Request

from bluegreen.config import (
    ControlPlaneProvider,
    get_settings,
    LedgerBackend,
    Settings,
)
from bluegreen.domain.models.deployment import DeploymentRequest
from bluegreen.domain.ports.repositories import LedgerRepository
from bluegreen.domain.ports.services import (
    ControlPlaneClient,
    DistributedLock,
    EventPublisher,
)
from bluegreen.domain.services.ledger import DeploymentLedger
from bluegreen.domain.services.orchestrator import DeploymentOrchestrator
from bluegreen.infrastructure.cache.redis_lock import (
    create_redis_client,
    InMemoryDistributedLock,
    RedisDistributedLock,
)
from bluegreen.infrastructure.control_plane.ecs import EcsControlPlaneClient
from bluegreen.infrastructure.control_plane.simulated import SimulatedControlPlane
from bluegreen.infrastructure.messaging.event_publisher import (
    InMemoryEventPublisher,
    KafkaEventPublisher,
)
from bluegreen.infrastructure.persistence.database import DatabaseManager
from bluegreen.infrastructure.persistence.repositories import (
    InMemoryLedgerRepository,
    JsonlLedgerRepository,
    SqlLedgerRepository,
)


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Composition root: builds the orchestrator and its adapters from settings.

    Adapters that need I/O to start (database engine, Kafka producer) are
    brought up in :meth:`startup`; everything else is created on first use.
    """

    _instance: ServiceContainer | None = None

    def __init__(
        self,
        settings: Settings | None = None,
        control_plane: ControlPlaneClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._control_plane = control_plane
        self._event_publisher: EventPublisher | None = None
        self._kafka_producer: Any = None
        self._redis_client: redis.Redis | None = None
        self._lock_service: DistributedLock | None = None
        self._database: DatabaseManager | None = None
        self._ledger_repository: LedgerRepository | None = None
        self._ledger: DeploymentLedger | None = None
        self._orchestrator: DeploymentOrchestrator | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def get_instance(cls) -> ServiceContainer:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    @property
    def settings(self) -> Settings:
        return self._settings

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        if self._settings.ledger.backend == LedgerBackend.DATABASE:
            await self.database.initialize(create_tables=True)
        if self._settings.kafka.enabled:
            self._kafka_producer = AIOKafkaProducer(
                bootstrap_servers=self._settings.kafka.bootstrap_servers
            )
            await self._kafka_producer.start()
        logger.info(
            "service_container_started",
            control_plane=self._settings.control_plane.provider.value,
            ledger=self._settings.ledger.backend.value,
            redis_lock=self._settings.redis.enabled,
            kafka=self._settings.kafka.enabled,
        )

    async def shutdown(self) -> None:
        if self._tasks:
            logger.info("waiting_for_deployments", count=len(self._tasks))
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._kafka_producer is not None:
            await self._kafka_producer.stop()
        if self._redis_client is not None:
            await self._redis_client.aclose()
        if self._database is not None:
            await self._database.close()

    # ------------------------------------------------------------------
    # Adapters
    # ------------------------------------------------------------------

    @property
    def control_plane(self) -> ControlPlaneClient:
        if self._control_plane is None:
            if self._settings.control_plane.provider == ControlPlaneProvider.ECS:
                self._control_plane = EcsControlPlaneClient(self._settings.control_plane)
            else:
                self._control_plane = SimulatedControlPlane()
        return self._control_plane

    @property
    def event_publisher(self) -> EventPublisher:
        if self._event_publisher is None:
            if self._kafka_producer is not None:
                self._event_publisher = KafkaEventPublisher(
                    self._kafka_producer, topic_prefix=self._settings.kafka.topic_prefix
                )
            else:
                self._event_publisher = InMemoryEventPublisher()
        return self._event_publisher

    @property
    def lock_service(self) -> DistributedLock:
        if self._lock_service is None:
            if self._settings.redis.enabled:
                self._redis_client = create_redis_client(self._settings.redis)
                self._lock_service = RedisDistributedLock(self._redis_client)
            else:
                self._lock_service = InMemoryDistributedLock()
        return self._lock_service

    @property
    def database(self) -> DatabaseManager:
        if self._database is None:
            self._database = DatabaseManager(self._settings.database)
        return self._database

    @property
    def ledger_repository(self) -> LedgerRepository:
        if self._ledger_repository is None:
            backend = self._settings.ledger.backend
            if backend == LedgerBackend.DATABASE:
                self._ledger_repository = SqlLedgerRepository(self.database)
            elif backend == LedgerBackend.FILE:
                self._ledger_repository = JsonlLedgerRepository(self._settings.ledger.directory)
            else:
                self._ledger_repository = InMemoryLedgerRepository()
        return self._ledger_repository

    @property
    def ledger(self) -> DeploymentLedger:
        if self._ledger is None:
            self._ledger = DeploymentLedger(self.ledger_repository)
        return self._ledger

    @property
    def orchestrator(self) -> DeploymentOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = DeploymentOrchestrator(
                control_plane=self.control_plane,
                ledger=self.ledger,
                lock_service=self.lock_service,
                event_publisher=self.event_publisher,
                settings=self._settings.rollout,
            )
        return self._orchestrator

    # ------------------------------------------------------------------
    # Background deployments
    # ------------------------------------------------------------------

    def launch(self, request: DeploymentRequest) -> asyncio.Task[Any]:
        """Run a deployment in the background; the caller gets the id from the request."""
        task = asyncio.create_task(
            self.orchestrator.run_deployment(request),
            name=f"deployment-{request.deployment_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_deployment_failed", task=task.get_name(), error=str(exc))


def get_service_container(request: Request) -> ServiceContainer:
    return request.app.state.container
