"""Ledger entry value object."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from bluegreen.domain.models.base import utc_now, ValueObject


class LedgerEntry(ValueObject):
    """One append-only record of a phase of a deployment attempt."""

    deployment_id: str
    service_key: str
    sequence: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=utc_now)
    phase: str
    detail: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
