"""Deployment API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    status,
)

from bluegreen.api.dependencies.services import get_service_container, ServiceContainer
from bluegreen.api.schemas.deployment_schemas import (
    CreateDeploymentRequest,
    DeploymentAcceptedResponse,
    DeploymentResponse,
    DeploymentResultResponse,
    LedgerEntryResponse,
    LedgerResponse,
    RollbackRequest,
)
from bluegreen.domain.errors import (
    ConfigurationError,
    DeploymentLockError,
    DeploymentNotFoundError,
    RollbackFailedError,
)
from bluegreen.domain.models.deployment import DeploymentRequest
from bluegreen.domain.models.service import CapacityBounds, RevisionRef, ServiceTarget


router = APIRouter(prefix="/deployments", tags=["deployments"])


def _to_domain(request: CreateDeploymentRequest, container: ServiceContainer) -> DeploymentRequest:
    settings = container.settings
    capacity = None
    if request.min_healthy_percent is not None or request.max_percent is not None:
        capacity = CapacityBounds(
            min_healthy_percent=(
                request.min_healthy_percent
                if request.min_healthy_percent is not None
                else settings.rollout.min_healthy_percent
            ),
            max_percent=(
                request.max_percent
                if request.max_percent is not None
                else settings.rollout.max_percent
            ),
        )
    return DeploymentRequest(
        service_target=ServiceTarget(
            cluster_id=request.cluster_id,
            service_id=request.service_id,
            region=request.region or settings.control_plane.region,
        ),
        image=request.image,
        revision_ref=RevisionRef.parse(request.revision) if request.revision else None,
        requested_by=request.requested_by,
        dry_run=request.dry_run,
        environment=request.environment,
        capacity=capacity,
        metadata=request.metadata,
    )


@router.post(
    "",
    response_model=DeploymentAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_deployment(
    request: CreateDeploymentRequest,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> DeploymentAcceptedResponse:
    """Start a deployment attempt in the background."""
    deployment_request = _to_domain(request, container)
    container.launch(deployment_request)
    return DeploymentAcceptedResponse(deployment_id=deployment_request.deployment_id)


@router.get("", response_model=LedgerResponse)
async def list_service_history(
    container: Annotated[ServiceContainer, Depends(get_service_container)],
    cluster_id: str = Query(..., min_length=1),
    service_id: str = Query(..., min_length=1),
    region: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> LedgerResponse:
    """Recent ledger entries of one service, oldest first."""
    target = ServiceTarget(
        cluster_id=cluster_id,
        service_id=service_id,
        region=region or container.settings.control_plane.region,
    )
    entries = await container.orchestrator.service_history(target, limit=limit)
    return LedgerResponse(
        items=[LedgerEntryResponse.from_entry(e) for e in entries],
        total=len(entries),
    )


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(
    deployment_id: str,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> DeploymentResponse:
    """Current state of an attempt, rebuilt from its ledger."""
    try:
        attempt = await container.orchestrator.get_attempt(deployment_id)
    except DeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return DeploymentResponse.from_attempt(attempt)


@router.get("/{deployment_id}/ledger", response_model=LedgerResponse)
async def get_deployment_ledger(
    deployment_id: str,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> LedgerResponse:
    try:
        entries = await container.orchestrator.history(deployment_id)
    except DeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return LedgerResponse(
        items=[LedgerEntryResponse.from_entry(e) for e in entries],
        total=len(entries),
    )


@router.post("/{deployment_id}/rollback", response_model=DeploymentResultResponse)
async def rollback_deployment(
    deployment_id: str,
    request: RollbackRequest,
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> DeploymentResultResponse:
    """Roll an attempt back to its previous revision and wait for the outcome."""
    try:
        result = await container.orchestrator.rollback_deployment(
            deployment_id, requested_by=request.requested_by
        )
    except DeploymentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except (DeploymentLockError, RollbackFailedError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return DeploymentResultResponse.from_result(result)
