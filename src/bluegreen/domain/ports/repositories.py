"""Repository port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from bluegreen.domain.models.ledger import LedgerEntry


class LedgerRepository(ABC):
    """Port for the append-only deployment ledger.

    Implementations only ever insert and read; entries are never updated
    or deleted.
    """

    @abstractmethod
    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Persist a ledger entry."""

    @abstractmethod
    async def list_by_deployment(self, deployment_id: str) -> list[LedgerEntry]:
        """List entries of one deployment attempt in sequence order."""

    @abstractmethod
    async def list_by_service(self, service_key: str, limit: int = 100) -> list[LedgerEntry]:
        """List the most recent entries recorded for a service target."""
