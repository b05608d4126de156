"""
EventScore maintenance.

Scores are never updated in place: when an event's acknowledgement state
flips, its scores are deleted and the scoring pipeline re-scores it later.
Deletion is chunked so a single statement never carries more than
ACK_CHUNK_SIZE ids.
"""
from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.event_score import EventScore


def chunked(items: Sequence[str], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def delete_scores_for_events(
    db: Session,
    event_ids: Sequence[str],
    chunk_size: Optional[int] = None,
) -> int:
    """Delete every EventScore for `event_ids`. Flush only; caller commits."""
    size = chunk_size or settings.ACK_CHUNK_SIZE
    ids = [str(i) for i in event_ids]
    deleted = 0
    for chunk in chunked(ids, size):
        result = db.execute(
            delete(EventScore)
            .where(EventScore.event_id.in_(chunk))
            .execution_options(synchronize_session=False)
        )
        deleted += result.rowcount or 0
    return deleted
