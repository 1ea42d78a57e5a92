"""Unit tests for the ECS control-plane adapter, against stubbed boto3 clients."""

from __future__ import annotations

from collections.abc import Iterator

import boto3
import pytest
from botocore.stub import Stubber

from bluegreen.config import ControlPlaneSettings
from bluegreen.domain.errors import ControlPlaneError
from bluegreen.domain.models.service import (
    CapacityBounds,
    InstanceRef,
    RevisionRef,
    RolloutState,
    ServiceTarget,
)
from bluegreen.infrastructure.control_plane.ecs import (
    build_task_definition,
    EcsControlPlaneClient,
)


ACCOUNT_PREFIX = "arn:aws:ecs:us-east-1:123456789012"
APP_1 = f"{ACCOUNT_PREFIX}:task-definition/app:1"
APP_2 = f"{ACCOUNT_PREFIX}:task-definition/app:2"
SERVICE_ARN = f"{ACCOUNT_PREFIX}:service/prod/api"


@pytest.fixture
def ecs_target() -> ServiceTarget:
    return ServiceTarget(cluster_id="prod", service_id="api", region="us-east-1")


@pytest.fixture
def ecs_client():
    return boto3.client(
        "ecs",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(ecs_client) -> Iterator[Stubber]:
    with Stubber(ecs_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def adapter(ecs_client) -> EcsControlPlaneClient:
    settings = ControlPlaneSettings(
        region="us-east-1",
        container_name="web",
        read_retry_attempts=3,
        read_retry_max_wait_seconds=0.0,
    )
    return EcsControlPlaneClient(settings, client_factory=lambda region: ecs_client)


def service_description(deployments: list[dict], task_definition: str = APP_1) -> dict:
    return {
        "services": [{
            "serviceArn": SERVICE_ARN,
            "serviceName": "api",
            "status": "ACTIVE",
            "taskDefinition": task_definition,
            "desiredCount": 2,
            "runningCount": sum(d["runningCount"] for d in deployments),
            "pendingCount": 0,
            "deployments": deployments,
            "events": [{"id": "e-1", "message": "(service api) has reached a steady state."}],
        }],
        "failures": [],
    }


DESCRIBE_PARAMS = {"cluster": "prod", "services": ["api"]}


class TestBuildTaskDefinition:
    BASE = {
        "taskDefinitionArn": APP_1,
        "family": "app",
        "revision": 1,
        "status": "ACTIVE",
        "requiresAttributes": [{"name": "ecs.capability.secrets"}],
        "compatibilities": ["FARGATE"],
        "registeredAt": "2026-01-01T00:00:00Z",
        "cpu": "256",
        "containerDefinitions": [
            {"name": "sidecar", "image": "envoy:1.29"},
            {
                "name": "web",
                "image": "registry.example.com/app:v1",
                "environment": [
                    {"name": "LOG_LEVEL", "value": "INFO"},
                    {"name": "DEPLOYMENT_ID", "value": "old"},
                ],
            },
        ],
    }

    def test_strips_read_only_fields(self) -> None:
        result = build_task_definition(self.BASE, "app:v2", {}, container_name="web")
        for field in ("taskDefinitionArn", "revision", "status", "requiresAttributes",
                      "compatibilities", "registeredAt"):
            assert field not in result
        assert result["family"] == "app"
        assert result["cpu"] == "256"

    def test_overrides_named_container(self) -> None:
        result = build_task_definition(
            self.BASE, "registry.example.com/app:v2", {"DEPLOYMENT_ID": "d-1"},
            container_name="web",
        )
        sidecar, web = result["containerDefinitions"]
        assert sidecar["image"] == "envoy:1.29"
        assert web["image"] == "registry.example.com/app:v2"
        assert web["environment"] == [
            {"name": "LOG_LEVEL", "value": "INFO"},
            {"name": "DEPLOYMENT_ID", "value": "d-1"},
        ]

    def test_defaults_to_first_container(self) -> None:
        result = build_task_definition(self.BASE, "envoy:1.30", {})
        assert result["containerDefinitions"][0]["image"] == "envoy:1.30"

    def test_base_not_modified(self) -> None:
        build_task_definition(self.BASE, "app:v2", {"X": "1"}, container_name="web")
        assert self.BASE["containerDefinitions"][1]["image"] == "registry.example.com/app:v1"
        assert "taskDefinitionArn" in self.BASE

    def test_unknown_container(self) -> None:
        with pytest.raises(ControlPlaneError, match="not found"):
            build_task_definition(self.BASE, "app:v2", {}, container_name="api")

    def test_no_containers(self) -> None:
        with pytest.raises(ControlPlaneError):
            build_task_definition({"family": "app"}, "app:v2", {})


class TestDescribeService:
    @pytest.mark.asyncio
    async def test_snapshot(self, adapter, stubber, ecs_target) -> None:
        stubber.add_response("describe_services", service_description([
            {"id": "ecs-svc/2", "status": "PRIMARY", "taskDefinition": APP_2,
             "desiredCount": 2, "runningCount": 1, "pendingCount": 1,
             "rolloutState": "IN_PROGRESS"},
            {"id": "ecs-svc/1", "status": "ACTIVE", "taskDefinition": APP_1,
             "desiredCount": 2, "runningCount": 2, "pendingCount": 0,
             "rolloutState": "COMPLETED"},
            {"id": "ecs-svc/0", "status": "INACTIVE", "taskDefinition": APP_1,
             "desiredCount": 0, "runningCount": 0, "pendingCount": 0},
        ]), DESCRIBE_PARAMS)

        snapshot = await adapter.describe_service(ecs_target)

        assert snapshot.is_active
        assert snapshot.current_revision_ref == RevisionRef.parse(APP_1)
        assert snapshot.running_count == 3
        assert len(snapshot.active_deployments) == 2
        assert snapshot.active_deployments[0].rollout_state == RolloutState.IN_PROGRESS
        assert snapshot.latest_event.endswith("steady state.")

    @pytest.mark.asyncio
    async def test_rollout_state_inferred_without_circuit_breaker(
        self, adapter, stubber, ecs_target
    ) -> None:
        stubber.add_response("describe_services", service_description([
            {"id": "ecs-svc/1", "status": "PRIMARY", "taskDefinition": APP_1,
             "desiredCount": 2, "runningCount": 2, "pendingCount": 0},
        ]), DESCRIBE_PARAMS)
        snapshot = await adapter.describe_service(ecs_target)
        assert snapshot.active_deployments[0].rollout_state == RolloutState.COMPLETED
        assert snapshot.to_progress().is_complete_for(RevisionRef.parse("app:1"))

    @pytest.mark.asyncio
    async def test_missing_service(self, adapter, stubber, ecs_target) -> None:
        stubber.add_response(
            "describe_services",
            {"services": [], "failures": [{"arn": SERVICE_ARN, "reason": "MISSING"}]},
            DESCRIBE_PARAMS,
        )
        with pytest.raises(ControlPlaneError, match="not found"):
            await adapter.describe_service(ecs_target)

    @pytest.mark.asyncio
    async def test_throttling_is_retried(self, adapter, stubber, ecs_target) -> None:
        stubber.add_client_error(
            "describe_services", service_error_code="ThrottlingException", http_status_code=400
        )
        stubber.add_response("describe_services", service_description([
            {"id": "ecs-svc/1", "status": "PRIMARY", "taskDefinition": APP_1,
             "desiredCount": 2, "runningCount": 2, "pendingCount": 0,
             "rolloutState": "COMPLETED"},
        ]), DESCRIBE_PARAMS)
        snapshot = await adapter.describe_service(ecs_target)
        assert snapshot.desired_count == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, adapter, stubber, ecs_target) -> None:
        for _ in range(3):
            stubber.add_client_error(
                "describe_services", service_error_code="ServerException", http_status_code=500
            )
        with pytest.raises(ControlPlaneError) as exc_info:
            await adapter.describe_service(ecs_target)
        assert exc_info.value.retryable
        assert exc_info.value.operation == "describe_service"

    @pytest.mark.asyncio
    async def test_permanent_errors_not_retried(self, adapter, stubber, ecs_target) -> None:
        stubber.add_client_error(
            "describe_services", service_error_code="ClusterNotFoundException",
            service_message="Cluster not found.",
        )
        with pytest.raises(ControlPlaneError, match="ClusterNotFoundException") as exc_info:
            await adapter.describe_service(ecs_target)
        assert not exc_info.value.retryable


class TestRegisterRevision:
    @pytest.mark.asyncio
    async def test_copies_base_with_new_image(self, adapter, stubber) -> None:
        stubber.add_response(
            "describe_task_definition",
            {"taskDefinition": {
                "taskDefinitionArn": APP_1,
                "family": "app",
                "revision": 1,
                "status": "ACTIVE",
                "compatibilities": ["FARGATE"],
                "containerDefinitions": [{"name": "web", "image": "app:v1"}],
            }},
            {"taskDefinition": "app:1"},
        )
        stubber.add_response(
            "register_task_definition",
            {"taskDefinition": {"taskDefinitionArn": APP_2, "family": "app", "revision": 2}},
            {
                "family": "app",
                "containerDefinitions": [{
                    "name": "web",
                    "image": "app:v2",
                    "environment": [{"name": "DEPLOYMENT_ID", "value": "d-1"}],
                }],
            },
        )

        revision = await adapter.register_revision(
            RevisionRef.parse("app:1"), "app:v2", {"DEPLOYMENT_ID": "d-1"}
        )
        assert revision == RevisionRef.parse(APP_2)
        assert revision.revision == 2

    @pytest.mark.asyncio
    async def test_registration_is_not_retried(self, adapter, stubber) -> None:
        stubber.add_response(
            "describe_task_definition",
            {"taskDefinition": {
                "family": "app",
                "containerDefinitions": [{"name": "web", "image": "app:v1"}],
            }},
        )
        stubber.add_client_error(
            "register_task_definition", service_error_code="ServerException", http_status_code=500
        )
        with pytest.raises(ControlPlaneError):
            await adapter.register_revision(RevisionRef.parse("app:1"), "app:v2", {})

    @pytest.mark.asyncio
    async def test_registers_in_region_of_base_revision(self) -> None:
        base_arn = "arn:aws:ecs:eu-west-1:123456789012:task-definition/app:1"
        new_arn = "arn:aws:ecs:eu-west-1:123456789012:task-definition/app:2"
        eu_client = boto3.client(
            "ecs",
            region_name="eu-west-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        regions: list[str] = []

        def factory(region: str):
            regions.append(region)
            return eu_client

        adapter = EcsControlPlaneClient(
            ControlPlaneSettings(region="us-east-1", read_retry_max_wait_seconds=0.0),
            client_factory=factory,
        )
        with Stubber(eu_client) as stub:
            stub.add_response(
                "describe_task_definition",
                {"taskDefinition": {
                    "taskDefinitionArn": base_arn,
                    "family": "app",
                    "containerDefinitions": [{"name": "web", "image": "app:v1"}],
                }},
                {"taskDefinition": base_arn},
            )
            stub.add_response(
                "register_task_definition",
                {"taskDefinition": {"taskDefinitionArn": new_arn, "family": "app", "revision": 2}},
            )
            revision = await adapter.register_revision(
                RevisionRef.parse(base_arn), "app:v2", {}
            )
            stub.assert_no_pending_responses()

        assert regions == ["eu-west-1"]
        assert revision.region == "eu-west-1"

    @pytest.mark.asyncio
    async def test_short_base_uses_configured_region(self) -> None:
        regions: list[str] = []

        def factory(region: str):
            regions.append(region)
            raise RuntimeError("stop after client creation")

        adapter = EcsControlPlaneClient(
            ControlPlaneSettings(region="ap-south-1"), client_factory=factory
        )
        with pytest.raises(RuntimeError):
            await adapter.register_revision(RevisionRef.parse("app:1"), "app:v2", {})
        assert regions == ["ap-south-1"]


class TestUpdateService:
    @pytest.mark.asyncio
    async def test_forces_new_deployment_with_capacity(
        self, adapter, stubber, ecs_target
    ) -> None:
        stubber.add_response(
            "update_service",
            {"service": {"serviceName": "api"}},
            {
                "cluster": "prod",
                "service": "api",
                "taskDefinition": APP_2,
                "forceNewDeployment": True,
                "deploymentConfiguration": {"minimumHealthyPercent": 50, "maximumPercent": 150},
            },
        )
        await adapter.update_service(
            ecs_target,
            RevisionRef.parse(APP_2),
            CapacityBounds(min_healthy_percent=50, max_percent=150),
        )

    @pytest.mark.asyncio
    async def test_update_is_not_retried(self, adapter, stubber, ecs_target) -> None:
        stubber.add_client_error(
            "update_service", service_error_code="ThrottlingException", http_status_code=400
        )
        with pytest.raises(ControlPlaneError) as exc_info:
            await adapter.update_service(ecs_target, RevisionRef.parse(APP_2), CapacityBounds())
        assert exc_info.value.operation == "update_service"


class TestInstances:
    @pytest.mark.asyncio
    async def test_list_instances_pages_and_filters(self, adapter, stubber, ecs_target) -> None:
        stubber.add_response(
            "list_tasks",
            {"taskArns": ["task-1", "task-2"], "nextToken": "page-2"},
            {"cluster": "prod", "serviceName": "api", "desiredStatus": "RUNNING"},
        )
        stubber.add_response(
            "list_tasks",
            {"taskArns": ["task-3"]},
            {"cluster": "prod", "serviceName": "api", "desiredStatus": "RUNNING",
             "nextToken": "page-2"},
        )
        stubber.add_response(
            "describe_tasks",
            {"tasks": [
                {"taskArn": "task-1", "taskDefinitionArn": APP_2},
                {"taskArn": "task-2", "taskDefinitionArn": APP_2},
                {"taskArn": "task-3", "taskDefinitionArn": APP_1},
            ]},
            {"cluster": "prod", "tasks": ["task-1", "task-2", "task-3"]},
        )

        instances = await adapter.list_instances(ecs_target, RevisionRef.parse("app:2"))
        assert [i.instance_id for i in instances] == ["task-1", "task-2"]

    @pytest.mark.asyncio
    async def test_instance_health(self, adapter, stubber, ecs_target) -> None:
        stubber.add_response(
            "describe_tasks",
            {"tasks": [{"taskArn": "task-1", "healthStatus": "HEALTHY", "lastStatus": "RUNNING"}]},
            {"cluster": "prod", "tasks": ["task-1"]},
        )
        health = await adapter.describe_instance_health(
            ecs_target, InstanceRef(instance_id="task-1", revision_ref=RevisionRef.parse(APP_2))
        )
        assert health.is_healthy

    @pytest.mark.asyncio
    async def test_vanished_instance_is_unhealthy(self, adapter, stubber, ecs_target) -> None:
        stubber.add_response("describe_tasks", {"tasks": []})
        health = await adapter.describe_instance_health(
            ecs_target, InstanceRef(instance_id="task-9", revision_ref=RevisionRef.parse(APP_2))
        )
        assert health.status == "MISSING"
        assert not health.is_healthy


class TestTagService:
    @pytest.mark.asyncio
    async def test_tags_service_arn(self, adapter, stubber, ecs_target) -> None:
        stubber.add_response("describe_services", service_description([]), DESCRIBE_PARAMS)
        stubber.add_response(
            "tag_resource",
            {},
            {"resourceArn": SERVICE_ARN, "tags": [{"key": "LastDeployment", "value": "d-1"}]},
        )
        await adapter.tag_service(ecs_target, {"LastDeployment": "d-1"})


class TestClientCache:
    def test_one_client_per_region(self) -> None:
        created: list[str] = []

        def factory(region: str) -> object:
            created.append(region)
            return object()

        adapter = EcsControlPlaneClient(ControlPlaneSettings(), client_factory=factory)
        assert adapter._client("us-east-1") is adapter._client("us-east-1")
        adapter._client("eu-west-1")
        assert created == ["us-east-1", "eu-west-1"]
