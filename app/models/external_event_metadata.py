"""
ExternalEventMetadata — local shadow of events stored in an external search
cluster.

One row per external event this service has touched (acknowledged, scored or
templated). The event content stays in the external store; this table holds
the only mutable state. Unique (system_id, es_event_id).

event_timestamp mirrors the external event's timestamp so window-scoped
aggregation can filter without querying the cluster.
"""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class ExternalEventMetadata(Base):
    __tablename__ = "es_event_metadata"
    __table_args__ = (
        UniqueConstraint("system_id", "es_event_id", name="uq_es_event_metadata_system_event"),
        Index("ix_es_meta_system_ts", "system_id", "event_timestamp"),
        Index("ix_es_meta_system_template", "system_id", "template_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    system_id: Mapped[str] = mapped_column(String(64), nullable=False)
    es_event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    template_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    event_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
