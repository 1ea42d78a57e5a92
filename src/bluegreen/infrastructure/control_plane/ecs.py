"""Amazon ECS implementation of the control-plane port."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)

from bluegreen.config import ControlPlaneSettings
from bluegreen.domain.errors import ControlPlaneError
from bluegreen.domain.models.service import (
    CapacityBounds,
    DeploymentDescriptor,
    InstanceHealth,
    InstanceRef,
    RevisionRef,
    RolloutState,
    ServiceSnapshot,
    ServiceTarget,
)
from bluegreen.domain.ports.services import ControlPlaneClient
from bluegreen.infrastructure.observability.metrics import CONTROL_PLANE_CALLS_TOTAL


logger = structlog.get_logger(__name__)

# Fields returned by DescribeTaskDefinition that RegisterTaskDefinition rejects.
READ_ONLY_TASK_DEFINITION_FIELDS = (
    "taskDefinitionArn",
    "revision",
    "status",
    "requiresAttributes",
    "compatibilities",
    "registeredAt",
    "registeredBy",
    "deregisteredAt",
)

_RETRYABLE_ERROR_CODES = frozenset({
    "ServerException",
    "ServiceUnavailableException",
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
})

_ROLLOUT_STATES = {
    "IN_PROGRESS": RolloutState.IN_PROGRESS,
    "COMPLETED": RolloutState.COMPLETED,
    "FAILED": RolloutState.FAILED,
}

# DescribeTasks accepts at most 100 task ARNs per call.
_DESCRIBE_TASKS_BATCH = 100


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ControlPlaneError) and exc.retryable


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "control_plane_read_retry",
        operation=getattr(exc, "operation", ""),
        attempt=state.attempt_number,
        error=str(exc),
    )


def build_task_definition(
    base: dict[str, Any],
    image: str,
    metadata: dict[str, str],
    container_name: str = "",
) -> dict[str, Any]:
    """Copy ``base`` into RegisterTaskDefinition input with a new image.

    The image of ``container_name`` (or of the first container) is replaced
    and ``metadata`` is merged into that container's environment.
    """
    task_definition = {
        key: value for key, value in base.items()
        if key not in READ_ONLY_TASK_DEFINITION_FIELDS
    }
    containers = [dict(c) for c in task_definition.get("containerDefinitions", [])]
    if not containers:
        raise ControlPlaneError(
            "Task definition has no container definitions", operation="register_revision"
        )

    index = 0
    if container_name:
        names = [c.get("name") for c in containers]
        if container_name not in names:
            raise ControlPlaneError(
                f"Container '{container_name}' not found in task definition",
                operation="register_revision",
            )
        index = names.index(container_name)

    container = containers[index]
    container["image"] = image
    environment = [
        e for e in container.get("environment", []) if e.get("name") not in metadata
    ]
    environment.extend({"name": k, "value": v} for k, v in metadata.items())
    container["environment"] = environment
    task_definition["containerDefinitions"] = containers
    return task_definition


class EcsControlPlaneClient(ControlPlaneClient):
    """ECS services as blue-green targets, task definitions as revisions.

    boto3 is synchronous, so every call runs in a worker thread. Read calls
    are retried with exponential backoff when the failure is transient;
    mutating calls are issued once.
    """

    def __init__(
        self,
        settings: ControlPlaneSettings,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory or self._create_client
        self._clients: dict[str, Any] = {}

    def _create_client(self, region: str) -> Any:
        kwargs: dict[str, Any] = {
            "service_name": "ecs",
            "region_name": region,
            # retries are handled here, per operation kind
            "config": Config(retries={"mode": "standard", "max_attempts": 1}),
        }
        if self._settings.endpoint_url:
            kwargs["endpoint_url"] = self._settings.endpoint_url
        return boto3.client(**kwargs)

    def _client(self, region: str | None = None) -> Any:
        region = region or self._settings.region
        if region not in self._clients:
            self._clients[region] = self._client_factory(region)
            logger.info("ecs_client_initialized", region=region)
        return self._clients[region]

    async def _call(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            response = await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "")
            CONTROL_PLANE_CALLS_TOTAL.labels(operation=operation, result="error").inc()
            raise ControlPlaneError(
                f"{operation} failed: {code}: {error.get('Message', str(e))}",
                operation=operation,
                retryable=code in _RETRYABLE_ERROR_CODES,
            ) from e
        except BotoCoreError as e:
            CONTROL_PLANE_CALLS_TOTAL.labels(operation=operation, result="error").inc()
            raise ControlPlaneError(
                f"{operation} failed: {e}", operation=operation, retryable=True
            ) from e
        CONTROL_PLANE_CALLS_TOTAL.labels(operation=operation, result="success").inc()
        return response

    async def _read(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, self._settings.read_retry_attempts)),
            wait=wait_exponential(
                multiplier=0.5, max=self._settings.read_retry_max_wait_seconds
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._call(operation, fn, **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _describe_raw(self, target: ServiceTarget) -> dict[str, Any]:
        client = self._client(target.region)
        response = await self._read(
            "describe_service",
            client.describe_services,
            cluster=target.cluster_id,
            services=[target.service_id],
        )
        services = response.get("services", [])
        if not services:
            reasons = [f.get("reason", "") for f in response.get("failures", [])]
            raise ControlPlaneError(
                f"Service {target.key} not found ({', '.join(reasons) or 'MISSING'})",
                operation="describe_service",
            )
        return services[0]

    async def describe_service(self, target: ServiceTarget) -> ServiceSnapshot:
        service = await self._describe_raw(target)
        deployments = [
            self._to_descriptor(d)
            for d in service.get("deployments", [])
            if d.get("status") != "INACTIVE"
        ]
        events = service.get("events", [])
        return ServiceSnapshot(
            target=target,
            status=service.get("status", "ACTIVE"),
            current_revision_ref=RevisionRef.parse(service["taskDefinition"]),
            running_count=service.get("runningCount", 0),
            desired_count=service.get("desiredCount", 0),
            pending_count=service.get("pendingCount", 0),
            active_deployments=deployments,
            latest_event=events[0].get("message", "") if events else "",
        )

    @staticmethod
    def _to_descriptor(deployment: dict[str, Any]) -> DeploymentDescriptor:
        running = deployment.get("runningCount", 0)
        desired = deployment.get("desiredCount", 0)
        raw_state = deployment.get("rolloutState")
        if raw_state is None:
            # services without the deployment circuit breaker omit rolloutState
            settled = running == desired and deployment.get("pendingCount", 0) == 0
            state = RolloutState.COMPLETED if settled else RolloutState.IN_PROGRESS
        else:
            state = _ROLLOUT_STATES.get(raw_state, RolloutState.IN_PROGRESS)
        return DeploymentDescriptor(
            revision_ref=RevisionRef.parse(deployment["taskDefinition"]),
            rollout_state=state,
            running_count=running,
            desired_count=desired,
        )

    async def register_revision(
        self,
        base_revision_ref: RevisionRef,
        image_override: str,
        metadata: dict[str, str],
    ) -> RevisionRef:
        # task definitions are regional; register next to the base revision
        client = self._client(base_revision_ref.region)
        described = await self._read(
            "describe_task_definition",
            client.describe_task_definition,
            taskDefinition=str(base_revision_ref),
        )
        task_definition = build_task_definition(
            described["taskDefinition"],
            image_override,
            metadata,
            container_name=self._settings.container_name,
        )
        response = await self._call(
            "register_revision", client.register_task_definition, **task_definition
        )
        arn = response["taskDefinition"]["taskDefinitionArn"]
        logger.info(
            "task_definition_registered",
            base=str(base_revision_ref),
            arn=arn,
            image=image_override,
        )
        return RevisionRef.parse(arn)

    async def update_service(
        self,
        target: ServiceTarget,
        revision_ref: RevisionRef,
        capacity: CapacityBounds,
    ) -> None:
        client = self._client(target.region)
        await self._call(
            "update_service",
            client.update_service,
            cluster=target.cluster_id,
            service=target.service_id,
            taskDefinition=str(revision_ref),
            forceNewDeployment=True,
            deploymentConfiguration={
                "minimumHealthyPercent": capacity.min_healthy_percent,
                "maximumPercent": capacity.max_percent,
            },
        )
        logger.info("ecs_service_updated", service=target.key, revision=str(revision_ref))

    async def list_instances(
        self, target: ServiceTarget, revision_ref: RevisionRef
    ) -> list[InstanceRef]:
        client = self._client(target.region)
        task_arns: list[str] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {
                "cluster": target.cluster_id,
                "serviceName": target.service_id,
                "desiredStatus": "RUNNING",
            }
            if token:
                kwargs["nextToken"] = token
            page = await self._read("list_instances", client.list_tasks, **kwargs)
            task_arns.extend(page.get("taskArns", []))
            token = page.get("nextToken")
            if not token:
                break

        instances: list[InstanceRef] = []
        for task in await self._describe_tasks(target, task_arns):
            task_revision = RevisionRef.parse(task["taskDefinitionArn"])
            if task_revision.same_as(revision_ref):
                instances.append(
                    InstanceRef(instance_id=task["taskArn"], revision_ref=task_revision)
                )
        return instances

    async def describe_instance_health(
        self, target: ServiceTarget, instance: InstanceRef
    ) -> InstanceHealth:
        tasks = await self._describe_tasks(target, [instance.instance_id])
        if not tasks:
            return InstanceHealth(instance_id=instance.instance_id, status="MISSING")
        task = tasks[0]
        return InstanceHealth(
            instance_id=instance.instance_id,
            status=task.get("healthStatus", "UNKNOWN"),
            last_status=task.get("lastStatus", "UNKNOWN"),
        )

    async def _describe_tasks(
        self, target: ServiceTarget, task_arns: list[str]
    ) -> list[dict[str, Any]]:
        client = self._client(target.region)
        tasks: list[dict[str, Any]] = []
        for start in range(0, len(task_arns), _DESCRIBE_TASKS_BATCH):
            response = await self._read(
                "describe_instance_health",
                client.describe_tasks,
                cluster=target.cluster_id,
                tasks=task_arns[start:start + _DESCRIBE_TASKS_BATCH],
            )
            tasks.extend(response.get("tasks", []))
        return tasks

    async def tag_service(self, target: ServiceTarget, tags: dict[str, str]) -> None:
        service = await self._describe_raw(target)
        client = self._client(target.region)
        await self._call(
            "tag_service",
            client.tag_resource,
            resourceArn=service["serviceArn"],
            tags=[{"key": k, "value": v} for k, v in tags.items()],
        )
