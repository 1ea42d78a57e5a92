"""Health check and metrics routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from bluegreen.api.dependencies.services import get_service_container, ServiceContainer
from bluegreen.config import LedgerBackend


router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }


@router.get("/health/ready")
async def readiness_check(
    container: Annotated[ServiceContainer, Depends(get_service_container)],
) -> dict[str, Any]:
    """Readiness check - the ledger must be readable before deployments are accepted."""
    settings = container.settings
    checks: dict[str, str] = {
        "control_plane": settings.control_plane.provider.value,
        "lock": "redis" if settings.redis.enabled else "memory",
    }
    try:
        await container.ledger_repository.list_by_service("__readiness__", limit=1)
        checks["ledger"] = "ok"
    except Exception as e:  # noqa: BLE001
        checks["ledger"] = f"error: {e}"

    ready = checks["ledger"] == "ok"
    if settings.ledger.backend == LedgerBackend.FILE:
        checks["ledger_directory"] = settings.ledger.directory
    return {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
        "in_flight": container.in_flight,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - verifies the service is running."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
