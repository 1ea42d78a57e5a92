"""JSON Lines ledger: one append-only file per service target."""

from __future__ import annotations

import asyncio
import hashlib
import os
import re
from pathlib import Path

import structlog

from bluegreen.domain.models.ledger import LedgerEntry
from bluegreen.domain.ports.repositories import LedgerRepository


logger = structlog.get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class JsonlLedgerRepository(LedgerRepository):
    """Stores each service's ledger as ``<directory>/<service>.jsonl``.

    Lines are only ever appended and each write is flushed and fsynced, so
    the last recorded phase survives a crash of the orchestrator process.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._lock = asyncio.Lock()

    def path_for(self, service_key: str) -> Path:
        slug = _UNSAFE.sub("_", service_key.replace("/", "__")).strip("_")
        # slugs can collide after sanitising; the digest keeps files distinct
        digest = hashlib.sha1(service_key.encode("utf-8")).hexdigest()[:8]
        return self._directory / f"{slug}-{digest}.jsonl"

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        line = entry.model_dump_json() + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write_line, self.path_for(entry.service_key), line)
        return entry

    async def list_by_deployment(self, deployment_id: str) -> list[LedgerEntry]:
        entries: list[LedgerEntry] = []
        for path in sorted(self._directory.glob("*.jsonl")):
            entries.extend(
                e for e in await asyncio.to_thread(self._read, path)
                if e.deployment_id == deployment_id
            )
        return sorted(entries, key=lambda e: e.sequence)

    async def list_by_service(self, service_key: str, limit: int = 100) -> list[LedgerEntry]:
        entries = await asyncio.to_thread(self._read, self.path_for(service_key))
        return entries[-limit:] if limit else entries

    @staticmethod
    def _write_line(path: Path, line: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()
            os.fsync(fh.fileno())

    @staticmethod
    def _read(path: Path) -> list[LedgerEntry]:
        if not path.exists():
            return []
        entries: list[LedgerEntry] = []
        with path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(LedgerEntry.model_validate_json(line))
                except ValueError:
                    # a torn final line after a crash
                    logger.warning("ledger_line_unreadable", path=str(path), line=lineno)
        return entries
