"""
Native EventSource: events stored in the `events` table.

Range flips run in a loop of bounded chunks:

  SELECT id ... WHERE <range> AND <ack predicate> LIMIT CHUNK
  UPDATE events SET ... WHERE id IN (chunk) AND <ack predicate> RETURNING id, message
  DELETE FROM event_scores WHERE event_id IN (chunk)

until the select comes back empty. Group flips are a single
UPDATE ... RETURNING followed by chunked score deletion.

Nothing here commits; the acknowledgement coordinator owns the transaction.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.timeutil import as_utc, utcnow
from app.models.event import Event
from app.models.monitored_system import MonitoredSystem
from app.services.event_scores import delete_scores_for_events
from app.services.event_source import (
    FACET_LIMIT,
    AckFilters,
    EventFacets,
    EventSearchFilters,
    EventSearchResult,
    FlipResult,
    LogEvent,
    TraceField,
    TraceResult,
    escape_like,
)

logger = structlog.get_logger(__name__)


def _parse_raw(raw: Optional[str]) -> Any:
    if not raw:
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _to_log_event(event: Event, system_name: Optional[str] = None) -> LogEvent:
    return LogEvent(
        id=event.id,
        system_id=event.system_id,
        system_name=system_name,
        timestamp=as_utc(event.timestamp),
        received_at=as_utc(event.received_at),
        message=event.message or "",
        severity=event.severity,
        host=event.host,
        source_ip=event.source_ip,
        service=event.service,
        program=event.program,
        facility=event.facility,
        trace_id=event.trace_id,
        span_id=event.span_id,
        raw=_parse_raw(event.raw),
        template_id=event.template_id,
        acknowledged_at=as_utc(event.acknowledged_at),
    )


def _contains(column, value: str) -> ColumnElement[bool]:
    return column.ilike(f"%{escape_like(value)}%", escape="\\")


class PgEventSource:
    def __init__(self, db: Session):
        self.db = db

    # -----------------------------------------------------------------------
    # Search & retrieval
    # -----------------------------------------------------------------------

    def _is_postgres(self) -> bool:
        return self.db.get_bind().dialect.name == "postgresql"

    def _with_system_name(self):
        return (
            select(Event, MonitoredSystem.name)
            .outerjoin(MonitoredSystem, MonitoredSystem.id == Event.system_id)
        )

    def _search_conditions(self, filters: EventSearchFilters) -> list[ColumnElement[bool]]:
        conds: list[ColumnElement[bool]] = []
        if filters.system_id:
            conds.append(Event.system_id == filters.system_id)
        if filters.severity:
            conds.append(func.lower(Event.severity).in_(filters.severity))
        if filters.host:
            conds.append(Event.host.in_(filters.host))
        if filters.source_ip:
            conds.append(Event.source_ip.in_(filters.source_ip))
        if filters.program:
            conds.append(Event.program.in_(filters.program))
        if filters.service:
            conds.append(Event.service == filters.service)
        if filters.trace_id:
            conds.append(Event.trace_id == filters.trace_id)
        if filters.from_ts:
            conds.append(Event.timestamp >= as_utc(filters.from_ts))
        if filters.to_ts:
            conds.append(Event.timestamp <= as_utc(filters.to_ts))

        text = filters.query_text
        if text:
            if filters.q_mode == "contains" or not self._is_postgres():
                conds.append(_contains(Event.message, text))
            else:
                conds.append(
                    func.to_tsvector("english", Event.message).op("@@")(
                        func.websearch_to_tsquery("english", text)
                    )
                )
        return conds

    def search_events(self, filters: EventSearchFilters) -> EventSearchResult:
        filters.normalized()
        conds = self._search_conditions(filters)

        total = self.db.scalar(select(func.count(Event.id)).where(*conds)) or 0

        sort_column = getattr(Event, filters.sort_by)
        order = sort_column.asc() if filters.sort_dir == "asc" else sort_column.desc()
        rows = self.db.execute(
            self._with_system_name()
            .where(*conds)
            .order_by(order, Event.id.asc())
            .limit(filters.limit)
            .offset(filters.offset)
        ).all()

        return EventSearchResult(
            events=[_to_log_event(ev, name) for ev, name in rows],
            total=total,
            page=filters.page,
            limit=filters.limit,
            has_more=filters.offset + filters.limit < total,
        )

    def get_facets(self, system_id: Optional[str], days: int) -> EventFacets:
        since = utcnow() - timedelta(days=days)

        def distinct_values(column) -> list[str]:
            stmt = (
                select(column).distinct()
                .where(Event.timestamp >= since, column.is_not(None), column != "")
                .order_by(column)
                .limit(FACET_LIMIT)
            )
            if system_id:
                stmt = stmt.where(Event.system_id == system_id)
            return list(self.db.scalars(stmt))

        return EventFacets(
            severities=distinct_values(Event.severity),
            hosts=distinct_values(Event.host),
            source_ips=distinct_values(Event.source_ip),
            programs=distinct_values(Event.program),
        )

    def trace_events(
        self,
        value: str,
        field: TraceField,
        from_ts: datetime,
        to_ts: datetime,
        limit: int,
    ) -> TraceResult:
        if field == "trace_id":
            match = Event.trace_id == value
        elif field == "message":
            match = _contains(Event.message, value)
        else:
            match = or_(
                Event.trace_id == value,
                Event.span_id == value,
                _contains(Event.message, value),
            )

        rows = self.db.execute(
            self._with_system_name()
            .where(
                Event.timestamp >= as_utc(from_ts),
                Event.timestamp <= as_utc(to_ts),
                match,
            )
            .order_by(Event.timestamp.asc())
            .limit(limit)
        ).all()
        events = [_to_log_event(ev, name) for ev, name in rows]
        return TraceResult(events=events, total=len(events))

    def get_system_events(
        self,
        system_id: str,
        limit: int,
        event_ids: Optional[Sequence[str]] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> list[LogEvent]:
        stmt = select(Event).where(Event.system_id == system_id)
        if event_ids:
            stmt = stmt.where(Event.id.in_(list(event_ids)))
        if from_ts:
            stmt = stmt.where(Event.timestamp >= as_utc(from_ts))
        if to_ts:
            stmt = stmt.where(Event.timestamp <= as_utc(to_ts))
        stmt = stmt.order_by(Event.timestamp.desc()).limit(limit)
        return [_to_log_event(ev) for ev in self.db.scalars(stmt)]

    def get_events_by_ids(self, ids: Sequence[str]) -> list[LogEvent]:
        if not ids:
            return []
        rows = self.db.execute(
            self._with_system_name().where(Event.id.in_(list(ids)))
        ).all()
        return [_to_log_event(ev, name) for ev, name in rows]

    # -----------------------------------------------------------------------
    # Acknowledgement
    # -----------------------------------------------------------------------

    def acknowledge_events(self, filters: AckFilters) -> FlipResult:
        return self._flip_range(filters, acknowledge=True)

    def unacknowledge_events(self, filters: AckFilters) -> FlipResult:
        return self._flip_range(filters, acknowledge=False)

    def acknowledge_group(self, system_id: str, group_key: str) -> FlipResult:
        return self._flip_group(system_id, group_key, acknowledge=True)

    def unacknowledge_group(self, system_id: str, group_key: str) -> FlipResult:
        return self._flip_group(system_id, group_key, acknowledge=False)

    @staticmethod
    def _state_predicate(acknowledge: bool) -> ColumnElement[bool]:
        if acknowledge:
            return Event.acknowledged_at.is_(None)
        return Event.acknowledged_at.is_not(None)

    @staticmethod
    def _flip_values(acknowledge: bool) -> dict[str, Any]:
        if acknowledge:
            return {"acknowledged_at": utcnow()}
        return {"acknowledged_at": None, "scored_at": None}

    def _update_returning(self, where: list[ColumnElement[bool]], acknowledge: bool):
        return self.db.execute(
            update(Event)
            .where(*where)
            .values(**self._flip_values(acknowledge))
            .returning(Event.id, Event.message)
            .execution_options(synchronize_session=False)
        ).all()

    def _flip_range(self, filters: AckFilters, acknowledge: bool) -> FlipResult:
        chunk_size = settings.ACK_CHUNK_SIZE
        sample = settings.ACK_MESSAGE_SAMPLE_LIMIT
        state = self._state_predicate(acknowledge)

        range_conds = [
            Event.timestamp >= as_utc(filters.from_ts),
            Event.timestamp <= as_utc(filters.to_ts),
            state,
        ]
        if filters.system_id:
            range_conds.append(Event.system_id == filters.system_id)

        result = FlipResult()
        while True:
            ids = list(self.db.scalars(select(Event.id).where(*range_conds).limit(chunk_size)))
            if not ids:
                break
            rows = self._update_returning([Event.id.in_(ids), state], acknowledge)
            if not rows:
                break
            flipped = [row.id for row in rows]
            result.count += len(flipped)
            result.add_ids(flipped, limit=sample)
            result.add_messages([row.message for row in rows])
            result.scores_deleted += delete_scores_for_events(self.db, flipped, chunk_size)

        logger.debug(
            "pg_range_flip",
            acknowledge=acknowledge,
            system_id=filters.system_id,
            count=result.count,
            scores_deleted=result.scores_deleted,
        )
        return result

    def _flip_group(self, system_id: str, group_key: str, acknowledge: bool) -> FlipResult:
        rows = self._update_returning(
            [
                Event.system_id == system_id,
                or_(Event.template_id == group_key, Event.id == group_key),
                self._state_predicate(acknowledge),
            ],
            acknowledge,
        )
        result = FlipResult()
        if not rows:
            return result

        flipped = [row.id for row in rows]
        result.count = len(flipped)
        result.add_ids(flipped)
        result.add_messages([row.message for row in rows])
        result.scores_deleted = delete_scores_for_events(self.db, flipped)

        logger.debug(
            "pg_group_flip",
            acknowledge=acknowledge,
            system_id=system_id,
            group_key=group_key,
            count=result.count,
            scores_deleted=result.scores_deleted,
        )
        return result
