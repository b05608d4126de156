"""
Events router.

POST /events/acknowledge           — acknowledge a time range
POST /events/unacknowledge         — undo a range acknowledgement
POST /events/acknowledge-group     — acknowledge a message-template group
POST /events/unacknowledge-group   — undo a group acknowledgement
POST /events/by-ids                — fetch events by id across backends
GET  /events/search                — paginated search
GET  /events/facets                — filter values seen recently
GET  /events/trace                 — correlated events across systems
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from app.core.errors import MissingFieldError
from app.core.timeutil import isoformat, parse_timestamp, utcnow
from app.db.base import get_db
from app.models.monitored_system import MonitoredSystem
from app.schemas.acknowledge import (
    AcknowledgeResponse,
    GroupAckRequest,
    RangeAckRequest,
    UnacknowledgeResponse,
)
from app.schemas.common import FLIP_ERROR_RESPONSES, SEARCH_ERROR_RESPONSES
from app.schemas.events import (
    ByIdsRequest,
    ByIdsResponse,
    EventFacetsResponse,
    EventSearchResponse,
    LogEventOut,
    SystemRef,
    TraceResponse,
    TraceSystemGroup,
    TraceWindow,
)
from app.services import acknowledgement
from app.services.acknowledgement import AckSummary, RequestContext
from app.services.event_source import EventSearchFilters, LogEvent, split_csv
from app.services.event_source_factory import resolve_event_source
from app.services.pg_event_source import PgEventSource

router = APIRouter(prefix="/events", tags=["events"])

FACET_DAYS_DEFAULT = 7
FACET_DAYS_MAX = 90
TRACE_WINDOW_HOURS_DEFAULT = 24
TRACE_WINDOW_HOURS_MAX = 168
TRACE_LIMIT_DEFAULT = 500
TRACE_LIMIT_MAX = 1000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _context(request: Request, actor: Optional[str]) -> RequestContext:
    return RequestContext(
        actor=actor,
        ip=request.client.host if request.client else None,
    )


def _events_word(n: int) -> str:
    return f"{n} event{'s' if n != 1 else ''}"


def _ack_response(summary: AckSummary, empty_message: str) -> AcknowledgeResponse:
    return AcknowledgeResponse(
        acknowledged=summary.flipped,
        updated_windows=summary.updated_windows,
        transitioned_findings=summary.transitioned_findings,
        message=f"{_events_word(summary.flipped)} acknowledged." if summary.flipped else empty_message,
    )


def _unack_response(summary: AckSummary) -> UnacknowledgeResponse:
    return UnacknowledgeResponse(
        unacknowledged=summary.flipped,
        updated_windows=summary.updated_windows,
        message=f"{_events_word(summary.flipped)} un-acknowledged.",
    )


def event_out(event: LogEvent) -> LogEventOut:
    return LogEventOut(
        id=event.id,
        system_id=event.system_id,
        system_name=event.system_name,
        timestamp=isoformat(event.timestamp),
        received_at=isoformat(event.received_at),
        message=event.message,
        severity=event.severity,
        host=event.host,
        source_ip=event.source_ip,
        service=event.service,
        program=event.program,
        facility=event.facility,
        trace_id=event.trace_id,
        span_id=event.span_id,
        raw=event.raw,
        template_id=event.template_id,
        acknowledged_at=isoformat(event.acknowledged_at),
    )


# ---------------------------------------------------------------------------
# Acknowledgement
# ---------------------------------------------------------------------------

@router.post(
    "/acknowledge",
    response_model=AcknowledgeResponse,
    responses=FLIP_ERROR_RESPONSES,
    summary="Acknowledge all active events in a time range",
)
def acknowledge_events(
    request: Request,
    payload: Optional[RangeAckRequest] = None,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """
    Marks every un-acknowledged event with timestamp in `[from, to]` as
    acknowledged, deletes their scores, recalculates effective scores and
    transitions matching open findings.

    Replaying the same request acknowledges 0 events.
    """
    payload = payload or RangeAckRequest()
    summary = acknowledgement.acknowledge_range(
        db, payload.system_id, payload.from_, payload.to, _context(request, x_actor)
    )
    return _ack_response(summary, "No events to acknowledge in the given range.")


@router.post(
    "/unacknowledge",
    response_model=UnacknowledgeResponse,
    responses=FLIP_ERROR_RESPONSES,
    summary="Un-acknowledge events in a time range",
)
def unacknowledge_events(
    request: Request,
    payload: Optional[RangeAckRequest] = None,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    payload = payload or RangeAckRequest()
    summary = acknowledgement.unacknowledge_range(
        db, payload.system_id, payload.from_, payload.to, _context(request, x_actor)
    )
    return _unack_response(summary)


@router.post(
    "/acknowledge-group",
    response_model=AcknowledgeResponse,
    responses=FLIP_ERROR_RESPONSES,
    summary="Acknowledge every active event of a message-template group",
)
def acknowledge_group(
    payload: GroupAckRequest,
    request: Request,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    summary = acknowledgement.acknowledge_group(
        db, payload.system_id, payload.group_key, _context(request, x_actor)
    )
    return _ack_response(summary, "No events to acknowledge for this group.")


@router.post(
    "/unacknowledge-group",
    response_model=UnacknowledgeResponse,
    responses=FLIP_ERROR_RESPONSES,
    summary="Un-acknowledge every event of a message-template group",
)
def unacknowledge_group(
    payload: GroupAckRequest,
    request: Request,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    summary = acknowledgement.unacknowledge_group(
        db, payload.system_id, payload.group_key, _context(request, x_actor)
    )
    return _unack_response(summary)


@router.post("/by-ids", response_model=ByIdsResponse, summary="Fetch events by id")
def events_by_ids(payload: ByIdsRequest, db: Session = Depends(get_db)):
    ids = list(dict.fromkeys(payload.ids))
    events = acknowledgement.get_events_by_ids(db, ids)
    return ByIdsResponse(events=[event_out(e) for e in events])


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/search",
    response_model=EventSearchResponse,
    responses=SEARCH_ERROR_RESPONSES,
    summary="Search events",
)
def search_events(
    q: Optional[str] = Query(default=None, description="Search text."),
    q_mode: str = Query(default="fulltext", description='"fulltext" or "contains".'),
    system_id: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None, description="Comma-separated, case-insensitive."),
    host: Optional[str] = Query(default=None, description="Comma-separated."),
    source_ip: Optional[str] = Query(default=None, description="Comma-separated."),
    program: Optional[str] = Query(default=None, description="Comma-separated."),
    service: Optional[str] = Query(default=None),
    trace_id: Optional[str] = Query(default=None),
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
    sort_by: str = Query(default="timestamp"),
    sort_dir: str = Query(default="desc"),
    page: int = Query(default=1),
    limit: int = Query(default=100),
    db: Session = Depends(get_db),
):
    filters = EventSearchFilters(
        system_id=system_id,
        q=q,
        q_mode=q_mode,
        severity=split_csv(severity),
        host=split_csv(host),
        source_ip=split_csv(source_ip),
        program=split_csv(program),
        service=service,
        trace_id=trace_id,
        from_ts=parse_timestamp("from", from_),
        to_ts=parse_timestamp("to", to),
        sort_by=sort_by,
        sort_dir=sort_dir,
        page=page,
        limit=limit,
    )
    result = resolve_event_source(db, system_id).search_events(filters)
    return EventSearchResponse(
        events=[event_out(e) for e in result.events],
        total=result.total,
        page=result.page,
        limit=result.limit,
        has_more=result.has_more,
    )


@router.get(
    "/facets",
    response_model=EventFacetsResponse,
    responses=SEARCH_ERROR_RESPONSES,
    summary="Distinct filter values",
)
def event_facets(
    system_id: Optional[str] = Query(default=None),
    days: float = Query(default=FACET_DAYS_DEFAULT),
    db: Session = Depends(get_db),
):
    window_days = min(days, FACET_DAYS_MAX) if days > 0 else FACET_DAYS_DEFAULT
    facets = resolve_event_source(db, system_id).get_facets(system_id, window_days)
    systems = db.query(MonitoredSystem).order_by(MonitoredSystem.name).all()
    return EventFacetsResponse(
        severities=facets.severities,
        hosts=facets.hosts,
        source_ips=facets.source_ips,
        programs=facets.programs,
        systems=[SystemRef(id=s.id, name=s.name) for s in systems],
    )


@router.get("/trace", response_model=TraceResponse, summary="Correlated events across systems")
def trace_events(
    value: Optional[str] = Query(default=None),
    field: str = Query(default="all", description='"trace_id", "message" or "all".'),
    anchor_time: Optional[str] = Query(default=None),
    window_hours: float = Query(default=TRACE_WINDOW_HOURS_DEFAULT),
    limit: int = Query(default=TRACE_LIMIT_DEFAULT),
    db: Session = Depends(get_db),
):
    """
    Searches the native store across every system within
    `anchor_time ± window_hours` and groups the hits per system.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        raise MissingFieldError("value")
    search_field = field if field in ("trace_id", "message", "all") else "all"
    hours = min(window_hours, TRACE_WINDOW_HOURS_MAX) if window_hours > 0 else TRACE_WINDOW_HOURS_DEFAULT
    capped = min(max(1, limit), TRACE_LIMIT_MAX)

    anchor = parse_timestamp("anchor_time", anchor_time) or utcnow()
    from_ts = anchor - timedelta(hours=hours)
    to_ts = anchor + timedelta(hours=hours)

    result = PgEventSource(db).trace_events(trimmed, search_field, from_ts, to_ts, capped)

    groups: dict[str, TraceSystemGroup] = {}
    events = [event_out(e) for e in result.events]
    for out in events:
        group = groups.get(out.system_id)
        if group is None:
            group = groups[out.system_id] = TraceSystemGroup(
                system_id=out.system_id, system_name=out.system_name or "", events=[]
            )
        group.events.append(out)

    return TraceResponse(
        value=trimmed,
        field=search_field,
        window=TraceWindow(from_=isoformat(from_ts), to=isoformat(to_ts)),
        total=result.total,
        systems=list(groups.values()),
        events=events,
    )
