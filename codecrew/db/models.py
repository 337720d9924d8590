"""Database models for the orchestration engine.

Persistent cache rows and the per-user usage ledger.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, Date, DateTime, Float, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CachedResult(Base):
    """Completed pipeline result, reusable for similar requests."""

    __tablename__ = "cached_results"

    id = Column(String(), primary_key=True, default=lambda: str(uuid4()))
    fingerprint = Column(String(64), nullable=False, index=True)
    request_text = Column(Text(), nullable=False)
    normalized_text = Column(Text(), nullable=False)
    project_name = Column(String(255), nullable=False, server_default="")
    summary = Column(Text(), nullable=False, server_default="")
    files = Column(JSON(), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), index=True)


class UsageRecord(Base):
    """Request count and spend for one (user, ledger key, day)."""

    __tablename__ = "usage_records"
    __table_args__ = (
        UniqueConstraint("user_id", "ledger_key", "day", name="uq_usage_user_key_day"),
    )

    id = Column(Integer(), primary_key=True, autoincrement=True)
    user_id = Column(String(), nullable=False, index=True)
    ledger_key = Column(String(50), nullable=False)
    day = Column(Date(), nullable=False)
    count = Column(Integer(), nullable=False, server_default="0")
    cost_usd = Column(Float(), nullable=False, server_default="0")
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
