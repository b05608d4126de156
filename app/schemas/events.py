"""
Event read schemas: search, facets, trace and lookup by id.
"""
from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field, StringConstraints

from app.core.config import settings

EventId = Annotated[str, StringConstraints(pattern=r"^[0-9a-zA-Z_-]{1,128}$")]


class LogEventOut(BaseModel):
    id: str
    system_id: str
    system_name: Optional[str] = None
    timestamp: str = Field(description="UTC ISO-8601 timestamp.")
    received_at: Optional[str] = None
    message: str
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
    acknowledged_at: Optional[str] = None


class EventSearchResponse(BaseModel):
    events: list[LogEventOut]
    total: int
    page: int
    limit: int
    has_more: bool


class SystemRef(BaseModel):
    id: str
    name: str


class EventFacetsResponse(BaseModel):
    severities: list[str]
    hosts: list[str]
    source_ips: list[str]
    programs: list[str]
    systems: list[SystemRef]


class TraceWindow(BaseModel):
    from_: str = Field(serialization_alias="from")
    to: str


class TraceSystemGroup(BaseModel):
    system_id: str
    system_name: str
    events: list[LogEventOut]


class TraceResponse(BaseModel):
    value: str
    field: str
    window: TraceWindow
    total: int
    systems: list[TraceSystemGroup]
    events: list[LogEventOut]


class ByIdsRequest(BaseModel):
    ids: list[EventId] = Field(
        min_length=1,
        max_length=settings.BY_IDS_MAX,
        description="Event ids (native or external).",
    )


class ByIdsResponse(BaseModel):
    events: list[LogEventOut]
