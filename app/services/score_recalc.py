"""
Effective score recalculator.

After the acknowledged set changes, every recent window's EffectiveScore rows
are brought back in line with:

  max_event_score = MAX(score) over un-acknowledged events of the window's
                    system, criterion and [from_ts, to_ts]; 0 when none
  meta_score      = unchanged, but forced to 0 when max_event_score is 0
  effective_value = W * meta_score + (1 - W) * max_event_score

"Events" covers both the native `events` table and the external-store
shadow table (`es_event_metadata.event_timestamp`).

Rows are only updated, never created: the meta-analysis job owns creation.
W must match the weight the meta-analysis job uses when it writes
meta_score (EFFECTIVE_SCORE_META_WEIGHT).

Public API
----------
recalc_effective_scores(db, system_id=None, meta_weight=None) → int
    number of windows with at least one criterion updated; commits.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow
from app.models.criteria import CRITERION_IDS
from app.models.effective_score import EffectiveScore
from app.models.event import Event
from app.models.event_score import EventScore
from app.models.external_event_metadata import ExternalEventMetadata
from app.models.window import Window
from app.services.app_config import score_window_days

logger = structlog.get_logger(__name__)


def blend(meta_score: float, max_event_score: float, meta_weight: float) -> float:
    return meta_weight * meta_score + (1 - meta_weight) * max_event_score


# ---------------------------------------------------------------------------
# Max-score queries
# ---------------------------------------------------------------------------

def _native_maxes(db: Session, window: Window) -> dict[int, float]:
    rows = db.execute(
        select(EventScore.criterion_id, func.max(EventScore.score))
        .join(Event, Event.id == EventScore.event_id)
        .where(
            Event.system_id == window.system_id,
            Event.timestamp >= as_utc(window.from_ts),
            Event.timestamp <= as_utc(window.to_ts),
            Event.acknowledged_at.is_(None),
        )
        .group_by(EventScore.criterion_id)
    ).all()
    return {cid: float(score or 0) for cid, score in rows}


def _external_maxes(db: Session, window: Window) -> dict[int, float]:
    rows = db.execute(
        select(EventScore.criterion_id, func.max(EventScore.score))
        .join(ExternalEventMetadata, ExternalEventMetadata.es_event_id == EventScore.event_id)
        .where(
            ExternalEventMetadata.system_id == window.system_id,
            ExternalEventMetadata.event_timestamp >= as_utc(window.from_ts),
            ExternalEventMetadata.event_timestamp <= as_utc(window.to_ts),
            ExternalEventMetadata.acknowledged_at.is_(None),
        )
        .group_by(EventScore.criterion_id)
    ).all()
    return {cid: float(score or 0) for cid, score in rows}


def window_max_scores(db: Session, window: Window) -> dict[int, float]:
    """Per-criterion max over active native and external events of one window."""
    maxes = _native_maxes(db, window)
    for cid, score in _external_maxes(db, window).items():
        maxes[cid] = max(maxes.get(cid, 0.0), score)
    return maxes


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------

def _recalc_window(db: Session, window: Window, meta_weight: float, now: datetime) -> int:
    rows = list(db.scalars(
        select(EffectiveScore).where(
            EffectiveScore.window_id == window.id,
            EffectiveScore.system_id == window.system_id,
            EffectiveScore.criterion_id.in_(CRITERION_IDS),
        )
    ))
    if not rows:
        return 0

    maxes = window_max_scores(db, window)
    for row in rows:
        new_max = maxes.get(row.criterion_id, 0.0)
        meta = row.meta_score if new_max > 0 else 0.0
        row.max_event_score = new_max
        row.meta_score = meta
        row.effective_value = blend(meta, new_max, meta_weight)
        row.updated_at = now
    db.flush()
    return len(rows)


def recalc_effective_scores(
    db: Session,
    system_id: Optional[str] = None,
    meta_weight: Optional[float] = None,
) -> int:
    weight = settings.EFFECTIVE_SCORE_META_WEIGHT if meta_weight is None else meta_weight
    now = utcnow()
    since = now - timedelta(days=score_window_days(db))

    stmt = select(Window).where(Window.to_ts >= since)
    if system_id:
        stmt = stmt.where(Window.system_id == system_id)
    windows = list(db.scalars(stmt.order_by(Window.to_ts)))

    updated_windows = 0
    for window in windows:
        try:
            with db.begin_nested():
                updated = _recalc_window(db, window, weight, now)
        except Exception:
            logger.warning(
                "effective_score_window_failed",
                window_id=window.id,
                system_id=window.system_id,
                exc_info=True,
            )
            continue
        if updated:
            updated_windows += 1

    db.commit()
    logger.info(
        "effective_scores_recalculated",
        system_id=system_id,
        windows=len(windows),
        updated_windows=updated_windows,
    )
    return updated_windows
