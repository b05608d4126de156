"""
Acknowledgement coordinator.

Public API
----------
acknowledge_range(db, system_id, from_value, to_value, ctx)    → AckSummary
unacknowledge_range(db, system_id, from_value, to_value, ctx)  → AckSummary
acknowledge_group(db, system_id, group_key, ctx)               → AckSummary
unacknowledge_group(db, system_id, group_key, ctx)             → AckSummary
get_events_by_ids(db, ids)                                     → list[LogEvent]

Every flip runs the same pipeline:

  1. validate input (400 before any mutation)
  2. resolve the EventSource and flip-and-report; commit
     failure → AcknowledgementFailedError (500)
  3. zero flipped → return zeros, nothing else runs
  4. recalculate effective scores              (soft step)
  5. transition matching findings, ack only    (soft step)
  6. audit record                              (never raises)

Soft steps roll back their own work on failure, log it, and report 0; they
never undo step 2.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import structlog
from sqlalchemy.orm import Session

from app.core.errors import (
    AckEngineException,
    AcknowledgementFailedError,
    ExternalSearchError,
    MissingFieldError,
)
from app.core.timeutil import EPOCH, isoformat, parse_timestamp, utcnow
from app.services.audit import write_audit_log
from app.services.event_source import AckFilters, FlipResult, LogEvent
from app.services.event_source_factory import (
    external_systems,
    get_event_source,
    resolve_event_source,
)
from app.services.finding_lifecycle import transition_findings_for_acknowledged
from app.services.pg_event_source import PgEventSource
from app.services.score_recalc import recalc_effective_scores

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class StepOutcome:
    """Result of one pipeline step. Soft steps report ok=False instead of raising."""
    ok: bool
    value: int = 0
    error: Optional[str] = None


@dataclass
class RequestContext:
    """Who asked, for the audit record."""
    actor: Optional[str] = None
    ip: Optional[str] = None


@dataclass
class AckSummary:
    flipped: int = 0
    updated_windows: int = 0
    transitioned_findings: int = 0
    scores_deleted: int = 0


# ---------------------------------------------------------------------------
# Step runners
# ---------------------------------------------------------------------------

def _run_primary(
    db: Session,
    operation: str,
    system_id: Optional[str],
    flip: Callable[[], FlipResult],
) -> FlipResult:
    try:
        result = flip()
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.error(
            "event_flip_failed",
            operation=operation,
            system_id=system_id,
            error=str(exc),
            exc_info=True,
        )
        reason = exc.message if isinstance(exc, AckEngineException) else str(exc)
        raise AcknowledgementFailedError(operation, system_id, reason) from exc
    return result


def _run_soft(db: Session, step: str, context: dict[str, Any], fn: Callable[[], int]) -> StepOutcome:
    try:
        return StepOutcome(ok=True, value=fn())
    except Exception as exc:
        db.rollback()
        logger.warning(f"{step}_failed", error=str(exc), exc_info=True, **context)
        return StepOutcome(ok=False, error=str(exc))


def _after_flip(
    db: Session,
    flip: FlipResult,
    system_id: Optional[str],
    acknowledge: bool,
) -> AckSummary:
    context = {"system_id": system_id, "flipped": flip.count}
    recalc = _run_soft(
        db, "effective_score_recalc", context,
        lambda: recalc_effective_scores(db, system_id),
    )
    transition = StepOutcome(ok=True)
    if acknowledge:
        transition = _run_soft(
            db, "finding_transition", context,
            lambda: transition_findings_for_acknowledged(db, system_id, flip.messages),
        )
    return AckSummary(
        flipped=flip.count,
        updated_windows=recalc.value,
        transitioned_findings=transition.value,
        scores_deleted=flip.scores_deleted,
    )


# ---------------------------------------------------------------------------
# Range flips
# ---------------------------------------------------------------------------

def _range_filters(system_id: Optional[str], from_value: Any, to_value: Any) -> AckFilters:
    from_ts = parse_timestamp("from", from_value)
    to_ts = parse_timestamp("to", to_value)
    return AckFilters(
        system_id=system_id or None,
        from_ts=from_ts or EPOCH,
        to_ts=to_ts or utcnow(),
    )


def _flip_range(
    db: Session,
    system_id: Optional[str],
    from_value: Any,
    to_value: Any,
    ctx: RequestContext,
    acknowledge: bool,
) -> AckSummary:
    filters = _range_filters(system_id, from_value, to_value)
    operation = "acknowledge" if acknowledge else "unacknowledge"
    source = resolve_event_source(db, filters.system_id)

    flip = _run_primary(
        db, operation, filters.system_id,
        lambda: source.acknowledge_events(filters) if acknowledge else source.unacknowledge_events(filters),
    )
    if flip.count == 0:
        return AckSummary()

    summary = _after_flip(db, flip, filters.system_id, acknowledge)
    write_audit_log(
        db,
        action=f"event_{operation}",
        resource_type="events",
        details={
            "system_id": filters.system_id,
            "from": isoformat(filters.from_ts),
            "to": isoformat(filters.to_ts),
            "count": flip.count,
        },
        actor=ctx.actor,
        ip=ctx.ip,
    )
    logger.info(
        f"events_{operation}d",
        system_id=filters.system_id,
        count=flip.count,
        scores_deleted=flip.scores_deleted,
        updated_windows=summary.updated_windows,
        transitioned_findings=summary.transitioned_findings,
    )
    return summary


def acknowledge_range(
    db: Session,
    system_id: Optional[str],
    from_value: Any = None,
    to_value: Any = None,
    ctx: Optional[RequestContext] = None,
) -> AckSummary:
    return _flip_range(db, system_id, from_value, to_value, ctx or RequestContext(), acknowledge=True)


def unacknowledge_range(
    db: Session,
    system_id: Optional[str],
    from_value: Any = None,
    to_value: Any = None,
    ctx: Optional[RequestContext] = None,
) -> AckSummary:
    return _flip_range(db, system_id, from_value, to_value, ctx or RequestContext(), acknowledge=False)


# ---------------------------------------------------------------------------
# Group flips
# ---------------------------------------------------------------------------

def _require_group(system_id: Optional[str], group_key: Optional[str]) -> tuple[str, str]:
    sid = (system_id or "").strip()
    key = (group_key or "").strip()
    missing = [name for name, value in (("system_id", sid), ("group_key", key)) if not value]
    if missing:
        raise MissingFieldError(*missing)
    return sid, key


def _flip_group(
    db: Session,
    system_id: Optional[str],
    group_key: Optional[str],
    ctx: RequestContext,
    acknowledge: bool,
) -> AckSummary:
    sid, key = _require_group(system_id, group_key)
    operation = "group_acknowledge" if acknowledge else "group_unacknowledge"
    source = resolve_event_source(db, sid)

    flip = _run_primary(
        db, operation, sid,
        lambda: source.acknowledge_group(sid, key) if acknowledge else source.unacknowledge_group(sid, key),
    )
    if flip.count == 0:
        return AckSummary()

    summary = _after_flip(db, flip, sid, acknowledge)
    write_audit_log(
        db,
        action=f"event_{operation}",
        resource_type="events",
        resource_id=key,
        details={"system_id": sid, "group_key": key, "count": flip.count},
        actor=ctx.actor,
        ip=ctx.ip,
    )
    logger.info(
        f"events_{operation}d",
        system_id=sid,
        group_key=key,
        count=flip.count,
        scores_deleted=flip.scores_deleted,
        updated_windows=summary.updated_windows,
        transitioned_findings=summary.transitioned_findings,
    )
    return summary


def acknowledge_group(
    db: Session,
    system_id: Optional[str],
    group_key: Optional[str],
    ctx: Optional[RequestContext] = None,
) -> AckSummary:
    return _flip_group(db, system_id, group_key, ctx or RequestContext(), acknowledge=True)


def unacknowledge_group(
    db: Session,
    system_id: Optional[str],
    group_key: Optional[str],
    ctx: Optional[RequestContext] = None,
) -> AckSummary:
    return _flip_group(db, system_id, group_key, ctx or RequestContext(), acknowledge=False)


# ---------------------------------------------------------------------------
# Lookup by id
# ---------------------------------------------------------------------------

def get_events_by_ids(db: Session, ids: Sequence[str]) -> list[LogEvent]:
    """
    Native lookup first, then every external-store system for the ids still
    missing. External failures are logged and skipped.
    """
    found: dict[str, LogEvent] = {e.id: e for e in PgEventSource(db).get_events_by_ids(ids)}

    for system in external_systems(db):
        missing = [i for i in ids if i not in found]
        if not missing:
            break
        source = get_event_source(db, system)
        if isinstance(source, PgEventSource):
            continue
        try:
            events = source.get_events_by_ids(missing)
        except ExternalSearchError as exc:
            logger.warning("by_ids_external_lookup_failed", system_id=system.id, error=exc.message)
            continue
        for event in events:
            found.setdefault(event.id, event)

    return sorted(found.values(), key=lambda e: e.timestamp)
