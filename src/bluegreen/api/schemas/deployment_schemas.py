"""API schemas for deployment endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from bluegreen.domain.models.deployment import (
    DeploymentAttempt,
    DeploymentPhase,
    DeploymentResult,
)
from bluegreen.domain.models.ledger import LedgerEntry


class CreateDeploymentRequest(BaseModel):
    cluster_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    region: str | None = None
    image: str | None = None
    revision: str | None = None
    requested_by: str = Field(default="api", min_length=1)
    dry_run: bool = False
    environment: str = Field(default="production", pattern="^(development|staging|production)$")
    min_healthy_percent: int | None = Field(default=None, ge=0, le=100)
    max_percent: int | None = Field(default=None, ge=100)
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _image_or_revision(self) -> CreateDeploymentRequest:
        if bool(self.image) == bool(self.revision):
            raise ValueError("Exactly one of 'image' or 'revision' must be given")
        return self


class RollbackRequest(BaseModel):
    requested_by: str = Field(default="api", min_length=1)


class DeploymentAcceptedResponse(BaseModel):
    deployment_id: str
    status: str = "accepted"


class DeploymentResponse(BaseModel):
    deployment_id: str
    cluster_id: str
    service_id: str
    region: str
    phase: DeploymentPhase
    is_terminal: bool
    image: str | None = None
    previous_revision: str | None = None
    target_revision: str | None = None
    requested_by: str
    created_at: datetime
    error: str = ""

    @classmethod
    def from_attempt(cls, attempt: DeploymentAttempt) -> DeploymentResponse:
        return cls(
            deployment_id=attempt.deployment_id,
            cluster_id=attempt.service_target.cluster_id,
            service_id=attempt.service_target.service_id,
            region=attempt.service_target.region,
            phase=attempt.phase,
            is_terminal=attempt.is_terminal,
            image=attempt.image,
            previous_revision=_optional_str(attempt.previous_revision_ref),
            target_revision=_optional_str(attempt.target_revision_ref),
            requested_by=attempt.requested_by,
            created_at=attempt.created_at,
            error=attempt.error,
        )


class DeploymentResultResponse(BaseModel):
    deployment_id: str
    final_phase: DeploymentPhase
    succeeded: bool
    previous_revision: str | None = None
    target_revision: str | None = None
    healthy_count: int | None = None
    total_count: int | None = None
    error: str = ""

    @classmethod
    def from_result(cls, result: DeploymentResult) -> DeploymentResultResponse:
        return cls(
            deployment_id=result.deployment_id,
            final_phase=result.final_phase,
            succeeded=result.succeeded,
            previous_revision=_optional_str(result.previous_revision_ref),
            target_revision=_optional_str(result.target_revision_ref),
            healthy_count=result.health.healthy_count if result.health else None,
            total_count=result.health.total_count if result.health else None,
            error=result.error,
        )


class LedgerEntryResponse(BaseModel):
    deployment_id: str
    sequence: int
    timestamp: datetime
    phase: str
    detail: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> LedgerEntryResponse:
        return cls.model_validate(entry)


class LedgerResponse(BaseModel):
    items: list[LedgerEntryResponse]
    total: int


def _optional_str(value: object | None) -> str | None:
    return None if value is None else str(value)
