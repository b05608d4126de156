"""
Tests for error handling: structured error responses, HTTP status codes,
and the custom exception classes.
"""
from sqlalchemy.exc import OperationalError

from app.core.errors import (
    AcknowledgementFailedError,
    EsConnectionNotFoundError,
    ExternalSearchError,
    FindingStateError,
    InvalidTimestampError,
    MissingFieldError,
)
from app.models.event import Event
from app.services import acknowledgement
from app.services.pg_event_source import PgEventSource
from helpers import utc


# ---------------------------------------------------------------------------
# Unit tests on exception classes
# ---------------------------------------------------------------------------

class TestExceptionClasses:
    def test_invalid_timestamp_error(self):
        err = InvalidTimestampError("from", "not-a-date")
        assert err.http_status == 400
        assert err.code == "INVALID_TIMESTAMP"
        assert '"from"' in err.message
        assert err.to_dict()["details"] == {"field": "from", "value": "not-a-date"}

    def test_missing_field_error_plural(self):
        err = MissingFieldError("system_id", "group_key")
        assert err.http_status == 400
        assert err.message == '"system_id", "group_key" are required.'
        assert err.details["fields"] == ["system_id", "group_key"]

    def test_acknowledgement_failed_error(self):
        err = AcknowledgementFailedError("acknowledge", "sys-1", "db down")
        assert err.http_status == 500
        assert err.code == "ACKNOWLEDGEMENT_FAILED"
        assert err.details == {"operation": "acknowledge", "system_id": "sys-1", "reason": "db down"}

    def test_connection_not_found_is_external_search_error(self):
        err = EsConnectionNotFoundError("conn-1")
        assert isinstance(err, ExternalSearchError)
        assert err.http_status == 502
        assert err.code == "ES_CONNECTION_NOT_FOUND"

    def test_finding_state_error(self):
        err = FindingStateError("f-1", "resolved", "nope")
        assert err.http_status == 409
        assert err.details == {"finding_id": "f-1", "status": "resolved"}

    def test_to_dict_without_details(self):
        err = ExternalSearchError("cluster down")
        d = err.to_dict()
        assert d == {"code": "EXTERNAL_SEARCH_UNAVAILABLE", "message": "cluster down"}


# ---------------------------------------------------------------------------
# Integration tests on HTTP error responses
# ---------------------------------------------------------------------------

class TestValidationErrors:
    def test_invalid_from_returns_400_before_any_change(self, client, db, make_system, add_event):
        system = make_system()
        ev = add_event(system.id, utc(2024, 1, 1))

        r = client.post("/events/acknowledge", json={"system_id": system.id, "from": "not-a-date"})
        assert r.status_code == 400
        body = r.json()
        assert body["code"] == "INVALID_TIMESTAMP"
        assert body["details"]["field"] == "from"

        db.expire_all()
        assert db.get(Event, ev.id).acknowledged_at is None

    def test_invalid_to_on_unacknowledge(self, client):
        r = client.post("/events/unacknowledge", json={"to": "31/12/2024"})
        assert r.status_code == 400
        assert r.json()["details"]["field"] == "to"

    def test_missing_group_fields_returns_validation_error(self, client):
        r = client.post("/events/acknowledge-group", json={})
        assert r.status_code == 400
        body = r.json()
        assert body["code"] == "VALIDATION_ERROR"
        fields = [e["field"] for e in body["details"]["errors"]]
        assert "system_id" in fields
        assert "group_key" in fields

    def test_blank_group_fields_return_missing_field(self, client):
        r = client.post("/events/unacknowledge-group", json={"system_id": " ", "group_key": ""})
        assert r.status_code == 400
        body = r.json()
        assert body["code"] == "MISSING_FIELD"
        assert body["details"]["fields"] == ["system_id", "group_key"]


class TestPrimaryFailure:
    def test_flip_failure_returns_500_and_changes_nothing(self, client, db, make_system, add_event, monkeypatch):
        system = make_system()
        ev = add_event(system.id, utc(2024, 2, 1), template_id="tpl-fail")

        def _boom(self, system_id, group_key, acknowledge):
            raise OperationalError("UPDATE events", {}, Exception("connection reset"))

        monkeypatch.setattr(PgEventSource, "_flip_group", _boom)

        r = client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": "tpl-fail"})
        assert r.status_code == 500
        body = r.json()
        assert body["code"] == "ACKNOWLEDGEMENT_FAILED"
        assert body["details"]["operation"] == "group_acknowledge"

        db.expire_all()
        assert db.get(Event, ev.id).acknowledged_at is None


class TestSoftStepFailure:
    def test_recalc_failure_keeps_the_flip(self, client, db, make_system, add_event, monkeypatch):
        system = make_system()
        ev = add_event(system.id, utc(2024, 3, 1), template_id="tpl-soft")

        def _boom(db_, system_id=None, meta_weight=None):
            raise OperationalError("UPDATE effective_scores", {}, Exception("deadlock"))

        monkeypatch.setattr(acknowledgement, "recalc_effective_scores", _boom)

        r = client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": "tpl-soft"})
        assert r.status_code == 200
        body = r.json()
        assert body["acknowledged"] == 1
        assert body["updated_windows"] == 0

        db.expire_all()
        assert db.get(Event, ev.id).acknowledged_at is not None

    def test_finding_transition_failure_keeps_the_flip(self, client, make_system, add_event, monkeypatch):
        system = make_system()
        add_event(system.id, utc(2024, 3, 2), template_id="tpl-soft-2")

        def _boom(db_, system_id, messages, threshold=None):
            raise RuntimeError("matcher exploded")

        monkeypatch.setattr(acknowledgement, "transition_findings_for_acknowledged", _boom)

        r = client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": "tpl-soft-2"})
        assert r.status_code == 200
        assert r.json()["acknowledged"] == 1
        assert r.json()["transitioned_findings"] == 0


class TestNotFound:
    def test_unknown_route(self, client):
        assert client.get("/does-not-exist").status_code == 404
