"""
EventSource — one acknowledgement contract over two event backends.

  PgEventSource  (app/services/pg_event_source.py)
      events live in the native `events` table
  EsEventSource  (app/services/es_event_source.py)
      events live in an external search cluster; only es_event_metadata
      (acknowledged_at, scored_at, template_id) is stored locally

Callers never branch on the backend: they resolve a source through
app/services/event_source_factory.py and use the operations below.

Idempotency: acknowledge predicates always require `acknowledged_at IS NULL`
and unacknowledge predicates `acknowledged_at IS NOT NULL`, so replaying any
flip reports 0.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Protocol, Sequence

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ALLOWED_SORT_COLUMNS = frozenset({
    "timestamp", "severity", "host", "source_ip", "program", "service",
})
DEFAULT_LIMIT = 100
MAX_LIMIT = 200
FACET_LIMIT = 200

TraceField = Literal["trace_id", "message", "all"]


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass
class LogEvent:
    """Backend-neutral view of a single event."""
    id: str
    system_id: str
    timestamp: datetime
    message: str = ""
    system_name: Optional[str] = None
    received_at: Optional[datetime] = None
    severity: Optional[str] = None
    host: Optional[str] = None
    source_ip: Optional[str] = None
    service: Optional[str] = None
    program: Optional[str] = None
    facility: Optional[str] = None
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    raw: Any = None
    template_id: Optional[str] = None
    acknowledged_at: Optional[datetime] = None


@dataclass
class EventSearchFilters:
    system_id: Optional[str] = None
    q: Optional[str] = None
    q_mode: str = "fulltext"   # "fulltext" | "contains"
    severity: list[str] = field(default_factory=list)
    host: list[str] = field(default_factory=list)
    source_ip: list[str] = field(default_factory=list)
    program: list[str] = field(default_factory=list)
    service: Optional[str] = None
    trace_id: Optional[str] = None
    from_ts: Optional[datetime] = None
    to_ts: Optional[datetime] = None
    sort_by: str = "timestamp"
    sort_dir: str = "desc"
    page: int = 1
    limit: int = DEFAULT_LIMIT

    def normalized(self) -> "EventSearchFilters":
        """Clamp paging and fall back to safe sort settings."""
        self.page = self.page if self.page and self.page >= 1 else 1
        self.limit = min(max(1, self.limit or DEFAULT_LIMIT), MAX_LIMIT)
        if self.sort_by not in ALLOWED_SORT_COLUMNS:
            self.sort_by = "timestamp"
        self.sort_dir = "asc" if self.sort_dir == "asc" else "desc"
        self.severity = [s.lower() for s in self.severity]
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def query_text(self) -> Optional[str]:
        text = (self.q or "").strip()
        return text or None


@dataclass
class EventSearchResult:
    events: list[LogEvent]
    total: int
    page: int
    limit: int
    has_more: bool


@dataclass
class EventFacets:
    severities: list[str] = field(default_factory=list)
    hosts: list[str] = field(default_factory=list)
    source_ips: list[str] = field(default_factory=list)
    programs: list[str] = field(default_factory=list)


@dataclass
class TraceResult:
    events: list[LogEvent]
    total: int


@dataclass
class AckFilters:
    """Range predicate: system (or all systems) × timestamp ∈ [from_ts, to_ts]."""
    from_ts: datetime
    to_ts: datetime
    system_id: Optional[str] = None


@dataclass
class FlipResult:
    """
    Outcome of one acknowledge / unacknowledge flip.

    count          — events whose state actually changed
    event_ids      — affected ids (range flips keep only a sample)
    messages       — distinct message text of flipped events
    scores_deleted — event_scores rows removed for the flipped ids
    """
    count: int = 0
    event_ids: list[str] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    scores_deleted: int = 0

    def add_messages(self, messages: Sequence[Optional[str]]) -> None:
        seen = set(self.messages)
        for message in messages:
            if message and message not in seen:
                seen.add(message)
                self.messages.append(message)

    def add_ids(self, ids: Sequence[str], limit: Optional[int] = None) -> None:
        if limit is None:
            self.event_ids.extend(ids)
            return
        room = limit - len(self.event_ids)
        if room > 0:
            self.event_ids.extend(ids[:room])


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class EventSource(Protocol):
    """Capability contract shared by every event backend."""

    def search_events(self, filters: EventSearchFilters) -> EventSearchResult: ...

    def get_facets(self, system_id: Optional[str], days: int) -> EventFacets: ...

    def trace_events(
        self,
        value: str,
        field: TraceField,
        from_ts: datetime,
        to_ts: datetime,
        limit: int,
    ) -> TraceResult: ...

    def acknowledge_events(self, filters: AckFilters) -> FlipResult: ...

    def unacknowledge_events(self, filters: AckFilters) -> FlipResult: ...

    def acknowledge_group(self, system_id: str, group_key: str) -> FlipResult: ...

    def unacknowledge_group(self, system_id: str, group_key: str) -> FlipResult: ...

    def get_system_events(
        self,
        system_id: str,
        limit: int,
        event_ids: Optional[Sequence[str]] = None,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> list[LogEvent]: ...

    def get_events_by_ids(self, ids: Sequence[str]) -> list[LogEvent]: ...


# ---------------------------------------------------------------------------
# Helpers shared by the backends
# ---------------------------------------------------------------------------

def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally (escape char '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
