"""In-memory ledger repository for development and testing."""

from __future__ import annotations

from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.ports.repositories import LedgerRepository


# Module-level shared store so every repository instance in a process sees
# the same history; tests clear it between cases.
_ledger_store: list[LedgerEntry] = []


class InMemoryLedgerRepository(LedgerRepository):
    """Keeps ledger entries in process memory, in append order."""

    def __init__(self) -> None:
        self._store = _ledger_store

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        self._store.append(entry)
        return entry

    async def list_by_deployment(self, deployment_id: str) -> list[LedgerEntry]:
        items = [e for e in self._store if e.deployment_id == deployment_id]
        return sorted(items, key=lambda e: e.sequence)

    async def list_by_service(self, service_key: str, limit: int = 100) -> list[LedgerEntry]:
        items = [e for e in self._store if e.service_key == service_key]
        return items[-limit:] if limit else items

    @classmethod
    def clear(cls) -> None:
        """Clear the shared store. Used by test fixtures for isolation."""
        _ledger_store.clear()
