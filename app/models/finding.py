"""
Finding — persistent, per-system issue raised by meta-analysis.

status values:
  "open"          — raised and not yet handled
  "acknowledged"  — an operator (or a matching event acknowledgement) took it
  "resolved"      — closed by the pipeline; terminal for this service

Created and resolved by the pipeline; this service only moves
open → acknowledged and back.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Text, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class FindingStatus(str, enum.Enum):
    open = "open"
    acknowledged = "acknowledged"
    resolved = "resolved"


class Finding(Base):
    __tablename__ = "findings"
    __table_args__ = (
        Index("ix_findings_system_status", "system_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    system_id: Mapped[str] = mapped_column(String(64), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=FindingStatus.open.value
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
