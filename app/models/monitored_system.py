"""
MonitoredSystem — a log-producing system whose events are scored.

Owned by the admin CRUD surface; read-only for the acknowledgement engine.
`event_source` selects where the system's events physically live:

  "postgresql"     — native `events` table
  "elasticsearch"  — external search cluster; only shadow metadata is local

es_config: JSON-encoded dict (index_pattern, timestamp_field, message_field,
field_mapping, query_filter). Required when event_source = "elasticsearch".
"""
import enum
from datetime import datetime
from sqlalchemy import String, Text, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class EventSourceKind(str, enum.Enum):
    postgresql = "postgresql"
    elasticsearch = "elasticsearch"


class MonitoredSystem(Base):
    __tablename__ = "monitored_systems"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    event_source: Mapped[str] = mapped_column(
        String(32), nullable=False, default=EventSourceKind.postgresql.value
    )
    es_connection_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    es_config: Mapped[str | None] = mapped_column(
        Text, nullable=True,
        comment="JSON-encoded external index configuration",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
