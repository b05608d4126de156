"""Small helpers shared by test modules."""
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.models.event_score import EventScore


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def count_scores(db, event_id: str) -> int:
    return db.scalar(select(func.count(EventScore.id)).where(EventScore.event_id == event_id))
