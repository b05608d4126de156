"""
Shared pytest fixtures.

Uses a SQLite database file so no Postgres is required for tests. The
external search cluster is replaced by an in-process fake served through
httpx.MockTransport.
"""
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db.base import Base, get_db
from app.main import app
from app.models.effective_score import EffectiveScore
from app.models.event import Event
from app.models.event_score import EventScore
from app.models.external_event_metadata import ExternalEventMetadata
from app.models.finding import Finding
from app.models.monitored_system import MonitoredSystem
from app.models.window import Window
from app.services.es_client import EsClient, invalidate_es_client, register_es_client
from helpers import iso

SQLITE_URL = "sqlite:///./test_ackengine.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

@pytest.fixture()
def make_system(db):
    def _make(event_source: str = "postgresql", **kwargs) -> MonitoredSystem:
        system = MonitoredSystem(
            id=kwargs.pop("id", f"sys-{uuid.uuid4().hex[:12]}"),
            name=kwargs.pop("name", "test system"),
            event_source=event_source,
            **kwargs,
        )
        db.add(system)
        db.commit()
        return system
    return _make


@pytest.fixture()
def add_event(db):
    def _add(
        system_id: str,
        timestamp: datetime,
        message: str = "disk usage high on node",
        template_id: Optional[str] = None,
        acknowledged_at: Optional[datetime] = None,
        scores: Optional[dict[int, float]] = None,
        **fields: Any,
    ) -> Event:
        event = Event(
            id=fields.pop("id", uuid.uuid4().hex),
            system_id=system_id,
            timestamp=timestamp,
            message=message,
            template_id=template_id,
            acknowledged_at=acknowledged_at,
            scored_at=fields.pop("scored_at", timestamp),
            **fields,
        )
        db.add(event)
        for criterion_id, score in (scores or {}).items():
            db.add(EventScore(event_id=event.id, criterion_id=criterion_id, score=score))
        db.commit()
        return event
    return _add


@pytest.fixture()
def add_window(db):
    def _add(
        system_id: str,
        from_ts: datetime,
        to_ts: datetime,
        meta_scores: Optional[dict[int, float]] = None,
    ) -> Window:
        window = Window(id=uuid.uuid4().hex, system_id=system_id, from_ts=from_ts, to_ts=to_ts)
        db.add(window)
        for criterion_id, meta in (meta_scores or {}).items():
            db.add(EffectiveScore(
                window_id=window.id,
                system_id=system_id,
                criterion_id=criterion_id,
                meta_score=meta,
                max_event_score=0.0,
                effective_value=0.0,
            ))
        db.commit()
        return window
    return _add


@pytest.fixture()
def add_finding(db):
    def _add(system_id: str, text: str, status: str = "open") -> Finding:
        finding = Finding(id=uuid.uuid4().hex, system_id=system_id, text=text, status=status)
        db.add(finding)
        db.commit()
        return finding
    return _add


@pytest.fixture()
def add_shadow(db):
    def _add(
        system_id: str,
        es_event_id: str,
        event_timestamp: Optional[datetime] = None,
        acknowledged_at: Optional[datetime] = None,
        template_id: Optional[str] = None,
        scores: Optional[dict[int, float]] = None,
    ) -> ExternalEventMetadata:
        row = ExternalEventMetadata(
            system_id=system_id,
            es_event_id=es_event_id,
            event_timestamp=event_timestamp,
            acknowledged_at=acknowledged_at,
            template_id=template_id,
            scored_at=event_timestamp,
        )
        db.add(row)
        for criterion_id, score in (scores or {}).items():
            db.add(EventScore(event_id=es_event_id, criterion_id=criterion_id, score=score))
        db.commit()
        return row
    return _add


# ---------------------------------------------------------------------------
# Fake search cluster
# ---------------------------------------------------------------------------

def _lookup(source: dict, path: str) -> Any:
    current: Any = source
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value)


class FakeCluster:
    """
    Minimal search cluster: stores documents in memory and answers the query
    shapes the external event source sends (bool / ids / range / term /
    terms / match / wildcard, search_after paging and terms aggregations).
    """

    def __init__(self, docs: Optional[list[dict]] = None, ts_field: str = "@timestamp"):
        self.docs: list[dict] = docs or []
        self.ts_field = ts_field
        self.requests: list[tuple[str, dict]] = []
        self.fail_status: Optional[int] = None

    def add(self, doc_id: str, timestamp: datetime, message: str, **source: Any) -> None:
        doc = {self.ts_field: iso(timestamp), "message": message}
        doc.update(source)
        self.docs.append({"_id": doc_id, "_source": doc})

    # -- query evaluation --

    def _matches(self, doc: dict, clause: Optional[dict]) -> bool:
        if not clause or "match_all" in clause:
            return True
        source = doc["_source"]
        if "ids" in clause:
            return doc["_id"] in clause["ids"]["values"]
        if "range" in clause:
            field, bounds = next(iter(clause["range"].items()))
            raw = _lookup(source, field)
            if raw is None:
                return False
            value = _parse(raw)
            if "gte" in bounds and value < _parse(bounds["gte"]):
                return False
            if "lte" in bounds and value > _parse(bounds["lte"]):
                return False
            return True
        if "term" in clause:
            field, value = next(iter(clause["term"].items()))
            return _lookup(source, field) == value
        if "terms" in clause:
            field, values = next(iter(clause["terms"].items()))
            return _lookup(source, field) in values
        if "match" in clause:
            field, spec = next(iter(clause["match"].items()))
            text = str(_lookup(source, field) or "").lower()
            return all(word in text for word in spec["query"].lower().split())
        if "wildcard" in clause:
            field, spec = next(iter(clause["wildcard"].items()))
            needle = spec["value"].strip("*").lower()
            return needle in str(_lookup(source, field) or "").lower()
        if "bool" in clause:
            b = clause["bool"]
            required = list(b.get("must", [])) + list(b.get("filter", []))
            if not all(self._matches(doc, c) for c in required):
                return False
            should = b.get("should") or []
            if should:
                return any(self._matches(doc, c) for c in should)
            return True
        raise AssertionError(f"unsupported clause {clause}")

    def _sort_key(self, doc: dict) -> tuple:
        return (_lookup(doc["_source"], self.ts_field) or "", doc["_id"])

    def _search(self, body: dict) -> dict:
        matching = [d for d in self.docs if self._matches(d, body.get("query"))]
        order = "asc"
        if body.get("sort"):
            first = body["sort"][0]
            order = next(iter(first.values())).get("order", "asc")
        matching.sort(key=self._sort_key, reverse=(order == "desc"))

        if "search_after" in body:
            after = tuple(body["search_after"])
            matching = [d for d in matching if self._sort_key(d) > after]

        if "aggs" in body:
            aggregations = {}
            for name, spec in body["aggs"].items():
                field = spec["terms"]["field"]
                keys = sorted({str(_lookup(d["_source"], field)) for d in matching if _lookup(d["_source"], field) is not None})
                aggregations[name] = {"buckets": [{"key": k, "doc_count": 1} for k in keys]}
            return {"hits": {"hits": []}, "aggregations": aggregations}

        start = body.get("from", 0)
        size = body.get("size", 10)
        page = matching[start:start + size]
        return {
            "hits": {
                "total": {"value": len(matching)},
                "hits": [
                    {"_id": d["_id"], "_source": d["_source"], "sort": list(self._sort_key(d))}
                    for d in page
                ],
            }
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, body))
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "unavailable"})
        if request.url.path.endswith("/_count"):
            matching = [d for d in self.docs if self._matches(d, body.get("query"))]
            return httpx.Response(200, json={"count": len(matching)})
        return httpx.Response(200, json=self._search(body))


@pytest.fixture()
def es_system(make_system):
    """Factory: an external-store system backed by a fresh FakeCluster."""
    registered: list[str] = []

    def _make(config: Optional[dict] = None) -> tuple[MonitoredSystem, FakeCluster]:
        connection_id = f"conn-{uuid.uuid4().hex[:8]}"
        cfg = {"index_pattern": "logs-*"}
        cfg.update(config or {})
        cluster = FakeCluster(ts_field=cfg.get("timestamp_field", "@timestamp"))
        http = httpx.Client(base_url="http://es.test", transport=httpx.MockTransport(cluster.handler))
        register_es_client(connection_id, EsClient(connection_id, http))
        registered.append(connection_id)
        system = make_system(
            event_source="elasticsearch",
            es_connection_id=connection_id,
            es_config=json.dumps(cfg),
        )
        return system, cluster

    yield _make
    for connection_id in registered:
        invalidate_es_client(connection_id)


@pytest.fixture()
def recent():
    """A reference instant one hour ago, so recent windows are in range."""
    return datetime.now(tz=timezone.utc).replace(microsecond=0) - timedelta(hours=1)
