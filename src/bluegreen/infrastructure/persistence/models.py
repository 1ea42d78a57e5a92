"""SQLAlchemy ORM models."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class LedgerEntryORM(Base):
    """One row per ledger entry. Rows are inserted, never updated."""

    __tablename__ = "deployment_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(36), nullable=False, index=True)
    service_key = Column(String(512), nullable=False)
    sequence = Column(Integer, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    phase = Column(String(50), nullable=False)
    detail = Column(JSON, nullable=False, default=dict)
    error = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("deployment_id", "sequence", name="uq_ledger_deployment_sequence"),
        Index("ix_ledger_service_timestamp", "service_key", "timestamp"),
    )
