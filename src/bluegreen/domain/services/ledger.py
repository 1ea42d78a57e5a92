"""Deployment ledger: the append-only audit trail of every attempt."""

from __future__ import annotations

from typing import Any

import structlog

from bluegreen.domain.models.deployment import (
    DeploymentAttempt,
    DeploymentPhase,
    TERMINAL_PHASES,
)
from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.ports.repositories import LedgerRepository


logger = structlog.get_logger(__name__)

_TERMINAL_PHASE_NAMES = frozenset(phase.value for phase in TERMINAL_PHASES)


class DeploymentLedger:
    """Records one entry per phase of a deployment attempt.

    Sequence numbers are assigned per deployment id so that a history can be
    checked for gaps. Corrections are written as new entries; nothing is ever
    rewritten.
    """

    def __init__(self, repository: LedgerRepository) -> None:
        self._repository = repository
        self._sequences: dict[str, int] = {}

    async def record(self, entry: LedgerEntry) -> LedgerEntry:
        """Append a fully formed entry."""
        stored = await self._repository.append(entry)
        if entry.phase in _TERMINAL_PHASE_NAMES:
            # a later write for a finished attempt reloads from the repository
            self._sequences.pop(entry.deployment_id, None)
        else:
            self._sequences[entry.deployment_id] = max(
                self._sequences.get(entry.deployment_id, 0), entry.sequence + 1
            )
        logger.info(
            "ledger_entry_recorded",
            deployment_id=entry.deployment_id,
            phase=entry.phase,
            sequence=entry.sequence,
            error=entry.error,
        )
        return stored

    async def record_phase(
        self,
        attempt: DeploymentAttempt,
        phase: DeploymentPhase,
        detail: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> LedgerEntry:
        """Append the entry for a phase of ``attempt``."""
        sequence = await self._next_sequence(attempt.deployment_id)
        entry = LedgerEntry(
            deployment_id=attempt.deployment_id,
            service_key=attempt.service_target.key,
            sequence=sequence,
            phase=phase.value,
            detail=detail or {},
            error=error,
        )
        return await self.record(entry)

    async def history(self, deployment_id: str) -> list[LedgerEntry]:
        return await self._repository.list_by_deployment(deployment_id)

    async def service_history(self, service_key: str, limit: int = 100) -> list[LedgerEntry]:
        return await self._repository.list_by_service(service_key, limit=limit)

    async def _next_sequence(self, deployment_id: str) -> int:
        if deployment_id not in self._sequences:
            existing = await self._repository.list_by_deployment(deployment_id)
            self._sequences[deployment_id] = (
                existing[-1].sequence + 1 if existing else 0
            )
        return self._sequences[deployment_id]
