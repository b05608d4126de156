"""
Audit log writer: secret redaction and failure handling.
"""
import json

from sqlalchemy.exc import OperationalError

from app.services.audit import REDACTED, sanitize_details, write_audit_log


class TestSanitize:
    def test_sensitive_keys_redacted(self):
        out = sanitize_details({"system_id": "s1", "password": "hunter2", "API_KEY": "k"})
        assert out == {"system_id": "s1", "password": REDACTED, "API_KEY": REDACTED}

    def test_nested_and_lists(self):
        out = sanitize_details({
            "connection": {"url": "http://x", "credentials": {"username": "u"}},
            "items": [{"token": "t"}, {"count": 3}],
        })
        assert out["connection"]["url"] == "http://x"
        assert out["connection"]["credentials"] == REDACTED
        assert out["items"] == [{"token": REDACTED}, {"count": 3}]

    def test_scalars_pass_through(self):
        assert sanitize_details(5) == 5
        assert sanitize_details(None) is None


class TestWrite:
    def test_writes_sanitized_json(self, db):
        entry = write_audit_log(
            db,
            action="event_acknowledge",
            resource_type="events",
            details={"count": 2, "secret": "x"},
            actor="dave",
            ip="10.0.0.1",
        )
        assert entry is not None
        assert json.loads(entry.details) == {"count": 2, "secret": REDACTED}
        assert entry.actor == "dave"

    def test_commit_failure_returns_none(self, db, monkeypatch):
        def _fail():
            raise OperationalError("INSERT INTO audit_log", {}, Exception("disk full"))

        monkeypatch.setattr(db, "commit", _fail)
        assert write_audit_log(db, action="event_acknowledge", resource_type="events") is None
