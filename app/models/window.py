from datetime import datetime
from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Window(Base):
    """Aggregation interval for one system. Produced by the window scheduler."""

    __tablename__ = "windows"
    __table_args__ = (
        Index("ix_windows_system_to", "system_id", "to_ts"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    system_id: Mapped[str] = mapped_column(String(64), nullable=False)
    from_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    to_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
