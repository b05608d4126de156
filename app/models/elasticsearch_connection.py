from datetime import datetime
from sqlalchemy import Boolean, Integer, String, Text, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class ElasticsearchConnection(Base):
    __tablename__ = "elasticsearch_connections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    auth_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default="none",
        comment='"none" | "basic" | "api_key"',
    )
    credentials: Mapped[str | None] = mapped_column(
        Text, nullable=True,
        comment="JSON-encoded {username, password} or {api_key}",
    )
    request_timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=30000)
    verify_tls: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
