"""
EventSource resolution.

get_event_source(db, system)        → EventSource for a loaded MonitoredSystem
resolve_event_source(db, system_id) → same, by id; unknown / absent ids
                                      resolve to the native source

A system configured for the external store but missing its connection id,
config or index pattern is logged and served from the native store.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from app.models.monitored_system import EventSourceKind, MonitoredSystem
from app.services.es_event_source import EsEventSource
from app.services.event_source import EventSource
from app.services.pg_event_source import PgEventSource

logger = structlog.get_logger(__name__)


def _parse_es_config(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def get_event_source(db: Session, system: MonitoredSystem) -> EventSource:
    if system.event_source != EventSourceKind.elasticsearch.value:
        return PgEventSource(db)

    config = _parse_es_config(system.es_config)
    if not system.es_connection_id or not config or not config.get("index_pattern"):
        logger.error(
            "es_system_misconfigured",
            system_id=system.id,
            has_connection=bool(system.es_connection_id),
            has_config=bool(config),
        )
        return PgEventSource(db)

    return EsEventSource(db, system.id, system.es_connection_id, config)


def resolve_event_source(db: Session, system_id: Optional[str]) -> EventSource:
    if not system_id:
        return PgEventSource(db)
    system = db.get(MonitoredSystem, system_id)
    if system is None:
        return PgEventSource(db)
    return get_event_source(db, system)


def external_systems(db: Session) -> list[MonitoredSystem]:
    """Every system whose events live in the external store."""
    return list(
        db.query(MonitoredSystem)
        .filter(MonitoredSystem.event_source == EventSourceKind.elasticsearch.value)
        .order_by(MonitoredSystem.id)
        .all()
    )
