"""
External-search EventSource.

Event content lives in a search cluster reached over HTTP (es_client.py);
the only mutable state is the local shadow table `es_event_metadata`.

Range acknowledge
    page the cluster with search_after (page size ACK_CHUNK_SIZE), then per
    page: INSERT missing shadow rows ON CONFLICT DO NOTHING RETURNING, and
    UPDATE existing rows that are still unacknowledged. Only rows that
    actually changed are counted, so a replay reports 0.
Range unacknowledge
    shadow rows filtered by event_timestamp; rows still missing a timestamp
    are checked against the cluster by id and range, and backfilled when
    flipped. Clears scored_at too.
Group flips
    read matching shadow rows, update in chunks, then fetch message text for
    a bounded sample of ids from the cluster (best-effort).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import ColumnElement, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ExternalSearchError
from app.core.timeutil import as_utc, isoformat, utcnow
from app.models.external_event_metadata import ExternalEventMetadata
from app.services.es_client import EsClient, get_es_client
from app.services.event_scores import chunked, delete_scores_for_events
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
)

logger = structlog.get_logger(__name__)

# External field → LogEvent field (ECS names)
DEFAULT_FIELD_MAPPING: dict[str, str] = {
    "@timestamp": "timestamp",
    "message": "message",
    "log.level": "severity",
    "host.name": "host",
    "source.ip": "source_ip",
    "service.name": "service",
    "log.syslog.facility.name": "facility",
    "process.name": "program",
    "trace.id": "trace_id",
    "span.id": "span_id",
}

SHADOW_INSERT_BATCH = 1000
TRACE_MAX_SIZE = 1000
SYSTEM_EVENTS_MAX_SIZE = 500


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        return None


class EsEventSource:
    def __init__(
        self,
        db: Session,
        system_id: str,
        connection_id: str,
        config: dict[str, Any],
    ):
        self.db = db
        self.system_id = system_id
        self.connection_id = connection_id
        self.config = config
        self.index = config["index_pattern"]

        self.field_map: dict[str, str] = {**DEFAULT_FIELD_MAPPING, **(config.get("field_mapping") or {})}
        self.reverse_map: dict[str, str] = {v: k for k, v in self.field_map.items()}
        ts_field = config.get("timestamp_field")
        if ts_field and ts_field != "@timestamp":
            self.field_map[ts_field] = "timestamp"
            self.reverse_map["timestamp"] = ts_field
        msg_field = config.get("message_field")
        if msg_field and msg_field != "message":
            self.field_map[msg_field] = "message"
            self.reverse_map["message"] = msg_field

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _client(self) -> EsClient:
        return get_es_client(self.db, self.connection_id)

    def es_field(self, log_field: str) -> str:
        return self.reverse_map.get(log_field, log_field)

    def _lookup(self, source: dict[str, Any], log_field: str) -> Any:
        """Dot-path lookup of the mapped field in a hit's _source."""
        current: Any = source
        for part in self.es_field(log_field).split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(part)
        return current

    def _extract(self, source: dict[str, Any], log_field: str) -> Optional[str]:
        value = self._lookup(source, log_field)
        return None if value is None else str(value)

    def _hit_to_event(self, hit: dict[str, Any]) -> LogEvent:
        source = hit.get("_source") or {}
        timestamp = _coerce_timestamp(self._lookup(source, "timestamp"))
        return LogEvent(
            id=hit["_id"],
            system_id=self.system_id,
            timestamp=timestamp or utcnow(),
            message=self._extract(source, "message") or "",
            severity=self._extract(source, "severity"),
            host=self._extract(source, "host"),
            source_ip=self._extract(source, "source_ip"),
            service=self._extract(source, "service"),
            facility=self._extract(source, "facility"),
            program=self._extract(source, "program"),
            trace_id=self._extract(source, "trace_id"),
            span_id=self._extract(source, "span_id"),
            raw=source,
        )

    def _base_clauses(self) -> list[dict[str, Any]]:
        query_filter = self.config.get("query_filter")
        return [query_filter] if query_filter else []

    def _time_range(self, gte: Optional[datetime] = None, lte: Optional[datetime] = None) -> dict[str, Any]:
        bounds: dict[str, str] = {}
        if gte:
            bounds["gte"] = isoformat(gte)
        if lte:
            bounds["lte"] = isoformat(lte)
        return {"range": {self.es_field("timestamp"): bounds}}

    def _sort_by_time(self, order: str) -> dict[str, Any]:
        return {self.es_field("timestamp"): {"order": order, "unmapped_type": "date"}}

    @staticmethod
    def _hits(response: dict[str, Any]) -> list[dict[str, Any]]:
        return (response.get("hits") or {}).get("hits") or []

    def _enrich(self, events: list[LogEvent]) -> None:
        """Copy acknowledged_at / template_id from the shadow table onto events."""
        if not events:
            return
        rows = self.db.execute(
            select(
                ExternalEventMetadata.es_event_id,
                ExternalEventMetadata.acknowledged_at,
                ExternalEventMetadata.template_id,
            ).where(
                ExternalEventMetadata.system_id == self.system_id,
                ExternalEventMetadata.es_event_id.in_([e.id for e in events]),
            )
        ).all()
        meta = {row.es_event_id: row for row in rows}
        for event in events:
            row = meta.get(event.id)
            if row is not None:
                event.acknowledged_at = as_utc(row.acknowledged_at)
                event.template_id = row.template_id

    # -----------------------------------------------------------------------
    # Search & retrieval
    # -----------------------------------------------------------------------

    def search_events(self, filters: EventSearchFilters) -> EventSearchResult:
        filters.normalized()
        must: list[dict[str, Any]] = list(self._base_clauses())
        filter_clauses: list[dict[str, Any]] = []

        if filters.severity:
            filter_clauses.append({"terms": {self.es_field("severity"): filters.severity}})
        for log_field, values in (
            ("host", filters.host),
            ("source_ip", filters.source_ip),
            ("program", filters.program),
        ):
            if len(values) == 1:
                filter_clauses.append({"term": {self.es_field(log_field): values[0]}})
            elif values:
                filter_clauses.append({"terms": {self.es_field(log_field): values}})
        for log_field, value in (("service", filters.service), ("trace_id", filters.trace_id)):
            if value:
                filter_clauses.append({"term": {self.es_field(log_field): value}})
        if filters.from_ts or filters.to_ts:
            filter_clauses.append(self._time_range(filters.from_ts, filters.to_ts))

        text = filters.query_text
        if text:
            msg_field = self.es_field("message")
            if filters.q_mode == "contains":
                must.append({"wildcard": {msg_field: {"value": f"*{text}*", "case_insensitive": True}}})
            else:
                must.append({"match": {msg_field: {"query": text, "operator": "and"}}})

        bool_query: dict[str, Any] = {}
        if must:
            bool_query["must"] = must
        if filter_clauses:
            bool_query["filter"] = filter_clauses
        query = {"bool": bool_query} if bool_query else {"match_all": {}}

        client = self._client()
        total = client.count(self.index, query)
        response = client.search(self.index, {
            "query": query,
            "sort": [
                {self.es_field(filters.sort_by): {"order": filters.sort_dir, "unmapped_type": "date"}},
                {"_id": {"order": "asc"}},
            ],
            "from": filters.offset,
            "size": filters.limit,
            "_source": True,
        })
        events = [self._hit_to_event(h) for h in self._hits(response)]
        self._enrich(events)

        return EventSearchResult(
            events=events,
            total=total,
            page=filters.page,
            limit=filters.limit,
            has_more=filters.offset + filters.limit < total,
        )

    def get_facets(self, system_id: Optional[str], days: int) -> EventFacets:
        since = utcnow() - timedelta(days=days)
        response = self._client().search(self.index, {
            "size": 0,
            "query": {"bool": {"filter": self._base_clauses() + [self._time_range(gte=since)]}},
            "aggs": {
                name: {"terms": {"field": self.es_field(log_field), "size": FACET_LIMIT}}
                for name, log_field in (
                    ("severities", "severity"),
                    ("hosts", "host"),
                    ("source_ips", "source_ip"),
                    ("programs", "program"),
                )
            },
        })
        aggs = response.get("aggregations") or {}

        def keys(name: str) -> list[str]:
            return [str(b["key"]) for b in (aggs.get(name) or {}).get("buckets", [])]

        return EventFacets(
            severities=keys("severities"),
            hosts=keys("hosts"),
            source_ips=keys("source_ips"),
            programs=keys("programs"),
        )

    def trace_events(
        self,
        value: str,
        field: TraceField,
        from_ts: datetime,
        to_ts: datetime,
        limit: int,
    ) -> TraceResult:
        should: list[dict[str, Any]] = []
        if field in ("trace_id", "all"):
            should.append({"term": {self.es_field("trace_id"): value}})
        if field in ("message", "all"):
            should.append({"wildcard": {self.es_field("message"): {"value": f"*{value}*", "case_insensitive": True}}})
        if field == "all":
            should.append({"term": {self.es_field("span_id"): value}})

        response = self._client().search(self.index, {
            "query": {"bool": {
                "filter": self._base_clauses() + [self._time_range(from_ts, to_ts)],
                "should": should,
                "minimum_should_match": 1,
            }},
            "sort": [self._sort_by_time("asc")],
            "size": min(limit, TRACE_MAX_SIZE),
            "_source": True,
        })
        events = [self._hit_to_event(h) for h in self._hits(response)]
        self._enrich(events)
        return TraceResult(events=events, total=len(events))

    def get_system_events(
        self,
        system_id: str,
        limit: int,
        event_ids: Optional[Sequence[str]] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> list[LogEvent]:
        clauses = self._base_clauses()
        if event_ids:
            clauses.append({"ids": {"values": list(event_ids)}})
        if from_ts or to_ts:
            clauses.append(self._time_range(from_ts, to_ts))
        query = {"bool": {"filter": clauses}} if clauses else {"match_all": {}}

        response = self._client().search(self.index, {
            "query": query,
            "sort": [self._sort_by_time("desc")],
            "size": min(limit, SYSTEM_EVENTS_MAX_SIZE),
            "_source": True,
        })
        events = [self._hit_to_event(h) for h in self._hits(response)]
        self._enrich(events)
        return events

    def get_events_by_ids(self, ids: Sequence[str]) -> list[LogEvent]:
        if not ids:
            return []
        return self.get_system_events(self.system_id, limit=len(ids), event_ids=ids)

    # -----------------------------------------------------------------------
    # Acknowledgement
    # -----------------------------------------------------------------------

    def acknowledge_events(self, filters: AckFilters) -> FlipResult:
        chunk_size = settings.ACK_CHUNK_SIZE
        sample = settings.ACK_MESSAGE_SAMPLE_LIMIT
        client = self._client()
        ts_field = self.es_field("timestamp")
        msg_field = self.es_field("message")
        query = {"bool": {"filter": self._base_clauses() + [self._time_range(filters.from_ts, filters.to_ts)]}}

        result = FlipResult()
        search_after: Optional[list[Any]] = None
        while True:
            body: dict[str, Any] = {
                "query": query,
                "sort": [self._sort_by_time("asc"), {"_id": {"order": "asc"}}],
                "size": chunk_size,
                "_source": [msg_field, ts_field],
            }
            if search_after is not None:
                body["search_after"] = search_after
            hits = self._hits(client.search(self.index, body))
            if not hits:
                break

            events = [self._hit_to_event(h) for h in hits]
            changed = self._mark_acknowledged(events, utcnow())
            if changed:
                by_id = {e.id: e for e in events}
                result.count += len(changed)
                result.add_ids(changed, limit=sample)
                result.add_messages([by_id[i].message for i in changed])
                result.scores_deleted += delete_scores_for_events(self.db, changed, chunk_size)

            search_after = hits[-1].get("sort")
            if len(hits) < chunk_size or not search_after:
                break

        logger.debug(
            "es_range_acknowledge",
            system_id=self.system_id,
            count=result.count,
            scores_deleted=result.scores_deleted,
        )
        return result

    def _insert_stmt(self):
        if self.db.get_bind().dialect.name == "postgresql":
            return pg_insert(ExternalEventMetadata)
        return sqlite_insert(ExternalEventMetadata)

    def _mark_acknowledged(self, events: list[LogEvent], ack_ts: datetime) -> list[str]:
        """Upsert acknowledgement for one page of external events; return changed ids."""
        changed: list[str] = []
        for start in range(0, len(events), SHADOW_INSERT_BATCH):
            batch = events[start:start + SHADOW_INSERT_BATCH]
            inserted = set(self.db.scalars(
                self._insert_stmt()
                .values([
                    {
                        "system_id": self.system_id,
                        "es_event_id": e.id,
                        "event_timestamp": e.timestamp,
                        "acknowledged_at": ack_ts,
                    }
                    for e in batch
                ])
                .on_conflict_do_nothing(index_elements=["system_id", "es_event_id"])
                .returning(ExternalEventMetadata.es_event_id)
            ))
            changed.extend(e.id for e in batch if e.id in inserted)

            existing = [e for e in batch if e.id not in inserted]
            if not existing:
                continue
            timestamps = case(
                {e.id: e.timestamp for e in existing},
                value=ExternalEventMetadata.es_event_id,
            )
            updated = self.db.scalars(
                update(ExternalEventMetadata)
                .where(
                    ExternalEventMetadata.system_id == self.system_id,
                    ExternalEventMetadata.es_event_id.in_([e.id for e in existing]),
                    ExternalEventMetadata.acknowledged_at.is_(None),
                )
                .values(
                    acknowledged_at=ack_ts,
                    event_timestamp=func.coalesce(ExternalEventMetadata.event_timestamp, timestamps),
                )
                .returning(ExternalEventMetadata.es_event_id)
                .execution_options(synchronize_session=False)
            ).all()
            changed.extend(updated)
        return changed

    def unacknowledge_events(self, filters: AckFilters) -> FlipResult:
        chunk_size = settings.ACK_CHUNK_SIZE
        conds = [
            ExternalEventMetadata.system_id == self.system_id,
            ExternalEventMetadata.acknowledged_at.is_not(None),
            ExternalEventMetadata.event_timestamp >= as_utc(filters.from_ts),
            ExternalEventMetadata.event_timestamp <= as_utc(filters.to_ts),
        ]
        result = FlipResult()
        while True:
            ids = list(self.db.scalars(
                select(ExternalEventMetadata.es_event_id).where(*conds).limit(chunk_size)
            ))
            if not ids:
                break
            flipped = self._update_shadow(ids, acknowledge=False)
            if not flipped:
                break
            self._record_unacknowledged(result, flipped, chunk_size)

        self._unacknowledge_untimed(filters, result, chunk_size)

        logger.debug(
            "es_range_unacknowledge",
            system_id=self.system_id,
            count=result.count,
            scores_deleted=result.scores_deleted,
        )
        return result

    def _record_unacknowledged(self, result: FlipResult, flipped: list[str], chunk_size: int) -> None:
        result.count += len(flipped)
        result.add_ids(flipped, limit=settings.ACK_MESSAGE_SAMPLE_LIMIT)
        result.scores_deleted += delete_scores_for_events(self.db, flipped, chunk_size)

    def _unacknowledge_untimed(self, filters: AckFilters, result: FlipResult, chunk_size: int) -> None:
        """Acknowledged shadow rows without event_timestamp: ask the cluster which are in range."""
        last_id = ""
        while True:
            ids = list(self.db.scalars(
                select(ExternalEventMetadata.es_event_id)
                .where(
                    ExternalEventMetadata.system_id == self.system_id,
                    ExternalEventMetadata.acknowledged_at.is_not(None),
                    ExternalEventMetadata.event_timestamp.is_(None),
                    ExternalEventMetadata.es_event_id > last_id,
                )
                .order_by(ExternalEventMetadata.es_event_id)
                .limit(chunk_size)
            ))
            if not ids:
                return
            last_id = ids[-1]

            hits = self._hits(self._client().search(self.index, {
                "query": {"bool": {"filter": self._base_clauses() + [
                    {"ids": {"values": ids}},
                    self._time_range(filters.from_ts, filters.to_ts),
                ]}},
                "size": len(ids),
                "_source": [self.es_field("timestamp")],
            }))
            in_range = {e.id: e.timestamp for e in (self._hit_to_event(h) for h in hits)}
            if not in_range:
                continue

            flipped = list(self.db.scalars(
                update(ExternalEventMetadata)
                .where(
                    ExternalEventMetadata.system_id == self.system_id,
                    ExternalEventMetadata.es_event_id.in_(list(in_range)),
                    ExternalEventMetadata.acknowledged_at.is_not(None),
                )
                .values(
                    acknowledged_at=None,
                    scored_at=None,
                    event_timestamp=case(in_range, value=ExternalEventMetadata.es_event_id),
                )
                .returning(ExternalEventMetadata.es_event_id)
                .execution_options(synchronize_session=False)
            ).all())
            if flipped:
                self._record_unacknowledged(result, flipped, chunk_size)

    def acknowledge_group(self, system_id: str, group_key: str) -> FlipResult:
        return self._flip_group(group_key, acknowledge=True)

    def unacknowledge_group(self, system_id: str, group_key: str) -> FlipResult:
        return self._flip_group(group_key, acknowledge=False)

    def _state_predicate(self, acknowledge: bool) -> ColumnElement[bool]:
        if acknowledge:
            return ExternalEventMetadata.acknowledged_at.is_(None)
        return ExternalEventMetadata.acknowledged_at.is_not(None)

    def _update_shadow(self, ids: Sequence[str], acknowledge: bool) -> list[str]:
        values: dict[str, Any] = (
            {"acknowledged_at": utcnow()}
            if acknowledge
            else {"acknowledged_at": None, "scored_at": None}
        )
        return list(self.db.scalars(
            update(ExternalEventMetadata)
            .where(
                ExternalEventMetadata.system_id == self.system_id,
                ExternalEventMetadata.es_event_id.in_(list(ids)),
                self._state_predicate(acknowledge),
            )
            .values(**values)
            .returning(ExternalEventMetadata.es_event_id)
            .execution_options(synchronize_session=False)
        ).all())

    def _flip_group(self, group_key: str, acknowledge: bool) -> FlipResult:
        chunk_size = settings.ACK_CHUNK_SIZE
        sample = settings.ACK_MESSAGE_SAMPLE_LIMIT

        # Phase 1: matching shadow rows in the source state
        candidates = list(self.db.scalars(
            select(ExternalEventMetadata.es_event_id).where(
                ExternalEventMetadata.system_id == self.system_id,
                or_(
                    ExternalEventMetadata.template_id == group_key,
                    ExternalEventMetadata.es_event_id == group_key,
                ),
                self._state_predicate(acknowledge),
            )
        ))
        result = FlipResult()
        if not candidates:
            return result

        # Phase 2: flip in chunks
        for chunk in chunked(candidates, chunk_size):
            result.event_ids.extend(self._update_shadow(chunk, acknowledge))
        result.count = len(result.event_ids)
        if not result.count:
            return result
        result.scores_deleted = delete_scores_for_events(self.db, result.event_ids, chunk_size)

        # Phase 3: message text for finding matching
        if acknowledge:
            result.add_messages(self._fetch_messages(result.event_ids[:sample]))

        logger.debug(
            "es_group_flip",
            acknowledge=acknowledge,
            system_id=self.system_id,
            group_key=group_key,
            count=result.count,
            scores_deleted=result.scores_deleted,
        )
        return result

    def _fetch_messages(self, ids: Sequence[str]) -> list[str]:
        if not ids:
            return []
        try:
            response = self._client().search(self.index, {
                "query": {"ids": {"values": list(ids)}},
                "size": len(ids),
                "_source": [self.es_field("message")],
            })
        except ExternalSearchError as exc:
            logger.warning(
                "es_message_fetch_failed",
                system_id=self.system_id,
                ids=len(ids),
                error=exc.message,
            )
            return []
        return [self._extract(h.get("_source") or {}, "message") or "" for h in self._hits(response)]
