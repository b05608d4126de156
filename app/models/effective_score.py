"""
EffectiveScore — blended per-window, per-criterion score.

Rows are created by the meta-analysis job; the recalculator only updates them.

Invariants:
  max_event_score = MAX(score) over currently un-acknowledged events of
                    (system, criterion, window); 0 when there are none
  effective_value = W * meta_score + (1 - W) * max_event_score
"""
from datetime import datetime
from sqlalchemy import Float, Integer, String, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class EffectiveScore(Base):
    __tablename__ = "effective_scores"
    __table_args__ = (
        UniqueConstraint(
            "window_id", "system_id", "criterion_id",
            name="uq_effective_scores_window_system_criterion",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    window_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    system_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    criterion_id: Mapped[int] = mapped_column(Integer, nullable=False)
    meta_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_event_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    effective_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
