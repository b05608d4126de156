"""
EventScore — one LLM score for one event against one criterion.

Written by the external scoring pipeline. The acknowledgement engine only
deletes rows (never updates them): a flipped event loses its scores and is
re-scored on the next pipeline run.

event_id is a string so it can hold native ids and external ids alike.
"""
from sqlalchemy import Float, Integer, String, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class EventScore(Base):
    __tablename__ = "event_scores"
    __table_args__ = (
        Index("ix_event_scores_event_criterion", "event_id", "criterion_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False)
    criterion_id: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(
        Float, nullable=False,
        comment="0.0–1.0",
    )
