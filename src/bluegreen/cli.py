"""Command line interface: ``bluegreen deploy | rollback | history | serve``."""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable, Generator
from contextlib import contextmanager
from typing import Any, TypeVar

import click

from bluegreen.api.dependencies.services import ServiceContainer
from bluegreen.config import get_settings, Settings
from bluegreen.domain.errors import (
    DeploymentError,
    RollbackFailedError,
)
from bluegreen.domain.models.deployment import (
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
from bluegreen.infrastructure.observability.logging import setup_logging
from bluegreen.main import main as serve_api


T = TypeVar("T")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MANUAL_ACTION = 2

_EXIT_CODES = {
    DeploymentPhase.COMPLETED: EXIT_OK,
    DeploymentPhase.VALIDATED: EXIT_OK,
    DeploymentPhase.ROLLED_BACK: EXIT_FAILED,
    DeploymentPhase.ABORTED: EXIT_FAILED,
    DeploymentPhase.ROLLBACK_FAILED: EXIT_MANUAL_ACTION,
}

_PHASE_COLOURS = {
    DeploymentPhase.COMPLETED: "green",
    DeploymentPhase.VALIDATED: "green",
    DeploymentPhase.ROLLED_BACK: "yellow",
    DeploymentPhase.ABORTED: "yellow",
    DeploymentPhase.ROLLBACK_FAILED: "red",
}


def exit_code_for(phase: DeploymentPhase) -> int:
    """Process exit code for a final phase; non-terminal phases count as failures."""
    return _EXIT_CODES.get(phase, EXIT_FAILED)


def _default_user() -> str:
    return os.environ.get("USER") or os.environ.get("USERNAME") or "cli"


@contextmanager
def handle_errors() -> Generator[None, None, None]:
    """Map domain errors onto exit codes.

    Exit codes:
        1: the request was refused or the deployment was not found
        2: a rollback failed and the service needs an operator
    """
    try:
        yield
    except RollbackFailedError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_MANUAL_ACTION)
    except DeploymentError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(EXIT_FAILED)


def _run(
    settings: Settings,
    body: Callable[[ServiceContainer], Awaitable[T]],
    container: ServiceContainer | None = None,
) -> T:
    async def runner() -> T:
        active = container or ServiceContainer(settings)
        await active.startup()
        try:
            return await body(active)
        finally:
            await active.shutdown()

    return asyncio.run(runner())


def _target(settings: Settings, cluster: str, service: str, region: str | None) -> ServiceTarget:
    return ServiceTarget(
        cluster_id=cluster,
        service_id=service,
        region=region or settings.control_plane.region,
    )


def _echo_progress(progress: RolloutProgress) -> None:
    line = (
        f"  running {progress.running_count}/{progress.desired_count}"
        f"  pending {progress.pending_count}"
        f"  deployments {len(progress.active_deployments)}"
    )
    if progress.latest_event:
        line += f"  | {progress.latest_event}"
    click.echo(line)


def _echo_result(result: DeploymentResult) -> None:
    colour = _PHASE_COLOURS.get(result.final_phase, "red")
    click.secho(f"Deployment {result.deployment_id}: {result.final_phase.value}", fg=colour, bold=True)
    click.echo(f"  previous revision: {result.previous_revision_ref or '-'}")
    click.echo(f"  target revision:   {result.target_revision_ref or '-'}")
    if result.health is not None:
        click.echo(f"  healthy instances: {result.health}")
    if result.error:
        click.echo(f"  error: {result.error}")
    if result.final_phase == DeploymentPhase.ROLLBACK_FAILED:
        click.secho(
            "  The service may be running a mix of revisions. Manual intervention required.",
            fg="red",
            err=True,
        )


def _echo_entries(entries: list[LedgerEntry]) -> None:
    for entry in entries:
        marker = click.style("!", fg="red") if entry.error else " "
        detail = " ".join(f"{k}={v}" for k, v in entry.detail.items() if v not in (None, ""))
        click.echo(
            f"{marker} {entry.timestamp.isoformat()}  {entry.deployment_id[:8]}"
            f"  #{entry.sequence:<3} {entry.phase:<18} {detail}"
        )
        if entry.error:
            click.echo(f"      error: {entry.error}")


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines instead of console output")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, json_logs: bool) -> None:
    """Blue-green deployments with automatic rollback."""
    ctx.ensure_object(dict)
    settings = ctx.obj.setdefault("settings", get_settings())
    if ctx.obj.get("configure_logging", True):
        setup_logging(
            log_level or settings.observability.log_level,
            json_output=json_logs,
            stream=sys.stderr,
        )


@cli.command()
@click.option("--cluster", required=True, help="Cluster that runs the service")
@click.option("--service", required=True, help="Service to deploy")
@click.option("--region", default=None, help="Region (defaults to CONTROL_PLANE_REGION)")
@click.option("--image", default=None, help="Image to roll out, with an immutable tag")
@click.option("--revision", default=None, help="Existing revision to roll out instead of an image")
@click.option("--environment", default="production", show_default=True)
@click.option("--requested-by", default=None, help="Recorded on the ledger (defaults to $USER)")
@click.option("--min-healthy-percent", type=click.IntRange(0, 100), default=None)
@click.option("--max-percent", type=click.IntRange(min=100), default=None)
@click.option("--dry-run", is_flag=True, help="Validate and snapshot only; change nothing")
@click.pass_context
def deploy(
    ctx: click.Context,
    cluster: str,
    service: str,
    region: str | None,
    image: str | None,
    revision: str | None,
    environment: str,
    requested_by: str | None,
    min_healthy_percent: int | None,
    max_percent: int | None,
    dry_run: bool,
) -> None:
    """Roll SERVICE onto a new image (or an existing revision)."""
    settings: Settings = ctx.obj["settings"]
    if bool(image) == bool(revision):
        raise click.UsageError("Pass exactly one of --image or --revision")

    capacity = None
    if min_healthy_percent is not None or max_percent is not None:
        capacity = CapacityBounds(
            min_healthy_percent=(
                settings.rollout.min_healthy_percent
                if min_healthy_percent is None else min_healthy_percent
            ),
            max_percent=settings.rollout.max_percent if max_percent is None else max_percent,
        )
    request = DeploymentRequest(
        service_target=_target(settings, cluster, service, region),
        image=image,
        revision_ref=RevisionRef.parse(revision) if revision else None,
        requested_by=requested_by or _default_user(),
        dry_run=dry_run,
        environment=environment,
        capacity=capacity,
    )
    click.echo(f"Deployment {request.deployment_id} of {request.service_target.key}")

    async def body(container: ServiceContainer) -> DeploymentResult:
        result: Any = None
        async for item in container.orchestrator.stream_deployment(request):
            if isinstance(item, DeploymentResult):
                result = item
            else:
                _echo_progress(item)
        return result

    with handle_errors():
        result = _run(settings, body, ctx.obj.get("container"))
    _echo_result(result)
    sys.exit(exit_code_for(result.final_phase))


@cli.command()
@click.argument("deployment_id", required=False)
@click.option("--cluster", default=None, help="Roll back a service instead of a deployment")
@click.option("--service", default=None)
@click.option("--region", default=None)
@click.option("--revision", default=None, help="Revision to restore (default: current - 1)")
@click.option("--requested-by", default=None)
@click.pass_context
def rollback(
    ctx: click.Context,
    deployment_id: str | None,
    cluster: str | None,
    service: str | None,
    region: str | None,
    revision: str | None,
    requested_by: str | None,
) -> None:
    """Roll back DEPLOYMENT_ID, or a service with --cluster/--service."""
    settings: Settings = ctx.obj["settings"]
    user = requested_by or _default_user()

    if deployment_id:
        async def body(container: ServiceContainer) -> DeploymentResult:
            return await container.orchestrator.rollback_deployment(
                deployment_id, requested_by=user
            )
    elif cluster and service:
        target = _target(settings, cluster, service, region)
        revision_ref = RevisionRef.parse(revision) if revision else None

        async def body(container: ServiceContainer) -> DeploymentResult:
            return await container.orchestrator.rollback_service(
                target, revision_ref=revision_ref, requested_by=user
            )
    else:
        raise click.UsageError("Pass a DEPLOYMENT_ID or both --cluster and --service")

    with handle_errors():
        result = _run(settings, body, ctx.obj.get("container"))
    _echo_result(result)
    sys.exit(exit_code_for(result.final_phase))


@cli.command()
@click.argument("deployment_id", required=False)
@click.option("--cluster", default=None)
@click.option("--service", default=None)
@click.option("--region", default=None)
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
@click.pass_context
def history(
    ctx: click.Context,
    deployment_id: str | None,
    cluster: str | None,
    service: str | None,
    region: str | None,
    limit: int,
) -> None:
    """Show the ledger of DEPLOYMENT_ID, or of a service."""
    settings: Settings = ctx.obj["settings"]

    if deployment_id:
        async def body(container: ServiceContainer) -> list[LedgerEntry]:
            return await container.orchestrator.history(deployment_id)
    elif cluster and service:
        target = _target(settings, cluster, service, region)

        async def body(container: ServiceContainer) -> list[LedgerEntry]:
            return await container.orchestrator.service_history(target, limit=limit)
    else:
        raise click.UsageError("Pass a DEPLOYMENT_ID or both --cluster and --service")

    with handle_errors():
        entries = _run(settings, body, ctx.obj.get("container"))
    if not entries:
        click.echo("No ledger entries.")
        return
    _echo_entries(entries)


@cli.command()
def serve() -> None:
    """Run the HTTP API."""
    serve_api()


if __name__ == "__main__":
    cli()
