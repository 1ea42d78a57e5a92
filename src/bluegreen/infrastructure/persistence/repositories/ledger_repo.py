"""SQL ledger repository implementation."""

from __future__ import annotations

from sqlalchemy import select

from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.ports.repositories import LedgerRepository
from bluegreen.infrastructure.persistence.database import DatabaseManager
from bluegreen.infrastructure.persistence.models import LedgerEntryORM


class SqlLedgerRepository(LedgerRepository):
    """Ledger rows in the ``deployment_ledger`` table; insert and select only.

    Every append commits in its own session so an entry is durable before
    the orchestrator moves on to the next phase.
    """

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        async with self._database.session() as session:
            session.add(self._to_orm(entry))
        return entry

    async def list_by_deployment(self, deployment_id: str) -> list[LedgerEntry]:
        async with self._database.session() as session:
            result = await session.execute(
                select(LedgerEntryORM)
                .where(LedgerEntryORM.deployment_id == deployment_id)
                .order_by(LedgerEntryORM.sequence)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def list_by_service(self, service_key: str, limit: int = 100) -> list[LedgerEntry]:
        async with self._database.session() as session:
            result = await session.execute(
                select(LedgerEntryORM)
                .where(LedgerEntryORM.service_key == service_key)
                .order_by(LedgerEntryORM.id.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())
        return [self._to_domain(orm) for orm in reversed(rows)]

    @staticmethod
    def _to_orm(entry: LedgerEntry) -> LedgerEntryORM:
        return LedgerEntryORM(
            deployment_id=entry.deployment_id,
            service_key=entry.service_key,
            sequence=entry.sequence,
            timestamp=entry.timestamp,
            phase=entry.phase,
            detail=entry.detail,
            error=entry.error,
        )

    @staticmethod
    def _to_domain(orm: LedgerEntryORM) -> LedgerEntry:
        return LedgerEntry(
            deployment_id=orm.deployment_id,
            service_key=orm.service_key,
            sequence=orm.sequence,
            timestamp=orm.timestamp,
            phase=orm.phase,
            detail=orm.detail or {},
            error=orm.error,
        )
