"""Tests for the ``bluegreen`` command line."""

from __future__ import annotations

from typing import Any

import pytest
import structlog
from click.testing import CliRunner

from bluegreen.api.dependencies.services import ServiceContainer
from bluegreen.cli import cli, exit_code_for
from bluegreen.config import Settings
from bluegreen.domain.models.deployment import DeploymentPhase
from bluegreen.infrastructure.control_plane.simulated import SimulatedControlPlane


SERVICE_ARGS = ["--cluster", "prod-cluster", "--service", "api", "--region", "us-east-1"]


@pytest.fixture(autouse=True)
def quiet_logs():
    # unconfigured structlog prints to stdout, which the runner captures
    structlog.configure(logger_factory=structlog.ReturnLoggerFactory())
    yield
    structlog.reset_defaults()


@pytest.fixture
def container(fast_settings: Settings, control_plane: SimulatedControlPlane) -> ServiceContainer:
    return ServiceContainer(fast_settings, control_plane=control_plane)


@pytest.fixture
def invoke(fast_settings: Settings, container: ServiceContainer):
    runner = CliRunner()

    def run(*args: str) -> Any:
        return runner.invoke(
            cli,
            list(args),
            obj={"settings": fast_settings, "container": container, "configure_logging": False},
        )

    return run


def deployment_id_from(output: str) -> str:
    first_line = output.splitlines()[0]
    return first_line.split()[1]


class TestExitCodes:
    @pytest.mark.parametrize("phase,code", [
        (DeploymentPhase.COMPLETED, 0),
        (DeploymentPhase.VALIDATED, 0),
        (DeploymentPhase.ROLLED_BACK, 1),
        (DeploymentPhase.ABORTED, 1),
        (DeploymentPhase.ROLLBACK_FAILED, 2),
        (DeploymentPhase.MONITOR_ROLLOUT, 1),
    ])
    def test_exit_code_for(self, phase: DeploymentPhase, code: int) -> None:
        assert exit_code_for(phase) == code


class TestDeploy:
    def test_successful_deploy(self, invoke, control_plane: SimulatedControlPlane, target) -> None:
        result = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        assert result.exit_code == 0, result.output
        assert "COMPLETED" in result.output
        assert "target revision:   app:2" in result.output
        assert "running" in result.output
        assert control_plane.current_revision(target) == "app:2"

    def test_dry_run(self, invoke, control_plane: SimulatedControlPlane, target) -> None:
        result = invoke(
            "deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2", "--dry-run"
        )
        assert result.exit_code == 0
        assert "VALIDATED" in result.output
        assert control_plane.current_revision(target) == "app:1"

    def test_rejected_image_exits_1(self, invoke) -> None:
        result = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:latest")
        assert result.exit_code == 1
        assert "ABORTED" in result.output

    def test_rolled_back_exits_1(self, invoke, control_plane: SimulatedControlPlane, target) -> None:
        control_plane.fail_revision("app:2")
        result = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        assert result.exit_code == 1
        assert "ROLLED_BACK" in result.output
        assert control_plane.current_revision(target) == "app:1"

    def test_rollback_failure_exits_2(self, invoke, control_plane: SimulatedControlPlane) -> None:
        control_plane.fail_revision("app:2")
        control_plane.stall_revision("app:1")
        result = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        assert result.exit_code == 2
        assert "ROLLBACK_FAILED" in result.output
        assert "Manual intervention required" in result.output

    def test_pinned_revision(self, invoke, control_plane: SimulatedControlPlane, target) -> None:
        assert invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2").exit_code == 0
        result = invoke("deploy", *SERVICE_ARGS, "--revision", "app:1")
        assert result.exit_code == 0
        assert control_plane.current_revision(target) == "app:1"

    @pytest.mark.parametrize("extra", [
        [],
        ["--image", "registry.example.com/app:v2", "--revision", "app:1"],
    ])
    def test_image_or_revision_required(self, invoke, extra: list[str]) -> None:
        result = invoke("deploy", *SERVICE_ARGS, *extra)
        assert result.exit_code == 2
        assert "exactly one of --image or --revision" in result.output

    def test_capacity_bounds_validated(self, invoke) -> None:
        result = invoke(
            "deploy", *SERVICE_ARGS, "--image", "app:v2", "--min-healthy-percent", "150"
        )
        assert result.exit_code == 2


class TestRollback:
    def test_rollback_deployment(self, invoke, control_plane: SimulatedControlPlane, target) -> None:
        deployed = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        deployment_id = deployment_id_from(deployed.output)

        result = invoke("rollback", deployment_id, "--requested-by", "oncall")
        assert result.exit_code == 0, result.output
        assert control_plane.current_revision(target) == "app:1"

    def test_rollback_service_to_previous(
        self, invoke, control_plane: SimulatedControlPlane, target
    ) -> None:
        invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        result = invoke("rollback", *SERVICE_ARGS)
        assert result.exit_code == 0, result.output
        assert control_plane.current_revision(target) == "app:1"

    def test_unknown_deployment_exits_1(self, invoke) -> None:
        result = invoke("rollback", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_rollback_failed_refused_with_2(self, invoke, control_plane: SimulatedControlPlane) -> None:
        control_plane.fail_revision("app:2")
        control_plane.stall_revision("app:1")
        failed = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")

        result = invoke("rollback", deployment_id_from(failed.output))
        assert result.exit_code == 2
        assert "manual intervention" in result.output

    def test_requires_deployment_or_service(self, invoke) -> None:
        assert invoke("rollback", "--cluster", "prod-cluster").exit_code == 2


class TestHistory:
    def test_deployment_history(self, invoke) -> None:
        deployed = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        result = invoke("history", deployment_id_from(deployed.output))
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert len(lines) == 7
        assert "PRECHECK" in lines[0]
        assert "COMPLETED" in lines[-1]

    def test_failed_phase_is_marked(self, invoke, control_plane: SimulatedControlPlane) -> None:
        control_plane.fail_revision("app:2")
        deployed = invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        result = invoke("history", deployment_id_from(deployed.output))
        assert "error:" in result.output
        assert any(line.startswith("!") for line in result.output.splitlines())

    def test_service_history(self, invoke) -> None:
        invoke("deploy", *SERVICE_ARGS, "--image", "registry.example.com/app:v2")
        result = invoke("history", *SERVICE_ARGS, "--limit", "3")
        assert result.exit_code == 0
        assert len(result.output.splitlines()) == 3

    def test_empty_service_history(self, invoke) -> None:
        result = invoke("history", *SERVICE_ARGS)
        assert result.exit_code == 0
        assert "No ledger entries." in result.output

    def test_unknown_deployment(self, invoke) -> None:
        assert invoke("history", "missing").exit_code == 1
