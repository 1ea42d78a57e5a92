"""Ledger repository implementations."""

from bluegreen.infrastructure.persistence.repositories.file_ledger import (
    JsonlLedgerRepository,
)
from bluegreen.infrastructure.persistence.repositories.in_memory import (
    InMemoryLedgerRepository,
)
from bluegreen.infrastructure.persistence.repositories.ledger_repo import (
    SqlLedgerRepository,
)


__all__ = [
    "InMemoryLedgerRepository",
    "JsonlLedgerRepository",
    "SqlLedgerRepository",
]
