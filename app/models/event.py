"""
Event — a single log line stored natively.

Never deleted by the acknowledgement engine; only `acknowledged_at` and
`scored_at` are mutated in place.

  acknowledged_at IS NULL  → active (scored, counts toward effective scores)
  acknowledged_at NOT NULL → acknowledged (ignored by scoring and aggregation)

`scored_at` is cleared on unacknowledge so the scoring pipeline picks the
event up again.
"""
from datetime import datetime
from sqlalchemy import String, Text, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_system_timestamp", "system_id", "timestamp"),
        Index("ix_events_system_template", "system_id", "template_id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    system_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    severity: Mapped[str | None] = mapped_column(String(32), nullable=True)
    host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    service: Mapped[str | None] = mapped_column(String(255), nullable=True)
    program: Mapped[str | None] = mapped_column(String(255), nullable=True)
    facility: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trace_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    span_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    raw: Mapped[str | None] = mapped_column(
        Text, nullable=True,
        comment="JSON-encoded original payload",
    )
    template_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True,
        comment="Message-template cluster; NULL for singleton events",
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
