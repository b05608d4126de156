"""
Effective score recalculation after acknowledgement changes.
"""
import json
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models.app_config import AppConfig
from app.models.effective_score import EffectiveScore
from app.services import score_recalc
from app.services.app_config import DASHBOARD_CONFIG_KEY, score_window_days
from app.services.score_recalc import blend, recalc_effective_scores

W = 0.7


def _rows(db, window_id):
    db.expire_all()
    return {
        r.criterion_id: r
        for r in db.scalars(select(EffectiveScore).where(EffectiveScore.window_id == window_id))
    }


@pytest.fixture()
def dashboard_config(db):
    """Set dashboard_config for one test and remove it afterwards."""
    def _set(value):
        db.merge(AppConfig(key=DASHBOARD_CONFIG_KEY, value=json.dumps(value)))
        db.commit()

    yield _set
    row = db.get(AppConfig, DASHBOARD_CONFIG_KEY)
    if row is not None:
        db.delete(row)
        db.commit()


class TestBlend:
    def test_weighted_sum(self):
        assert blend(0.5, 0.4, W) == pytest.approx(0.47)

    def test_zero_weight_is_max_score(self):
        assert blend(0.9, 0.2, 0.0) == pytest.approx(0.2)


class TestRecalcAfterAcknowledge:
    def test_max_drops_to_next_highest(self, client, db, make_system, add_event, add_window, recent):
        system = make_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {1: 0.5})
        top = add_event(system.id, recent, scores={1: 0.9})
        add_event(system.id, recent, scores={1: 0.4})

        r = client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": top.id})
        assert r.json()["updated_windows"] == 1

        row = _rows(db, window.id)[1]
        assert row.max_event_score == pytest.approx(0.4)
        assert row.meta_score == pytest.approx(0.5)
        assert row.effective_value == pytest.approx(W * 0.5 + (1 - W) * 0.4)

    def test_meta_forced_to_zero_when_no_active_events(self, client, db, make_system, add_event, add_window, recent):
        system = make_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {2: 0.8})
        ev = add_event(system.id, recent, scores={2: 0.6})

        client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": ev.id})

        row = _rows(db, window.id)[2]
        assert row.max_event_score == 0
        assert row.meta_score == 0
        assert row.effective_value == 0

    def test_rows_are_never_created(self, db, make_system, add_event, add_window, recent):
        system = make_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {1: 0.3})
        add_event(system.id, recent, scores={1: 0.5, 3: 0.9, 5: 0.7})

        recalc_effective_scores(db, system.id)

        rows = _rows(db, window.id)
        assert set(rows) == {1}
        assert rows[1].max_event_score == pytest.approx(0.5)

    def test_acknowledged_events_are_excluded(self, db, make_system, add_event, add_window, recent):
        system = make_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {4: 0.2})
        add_event(system.id, recent, acknowledged_at=recent, scores={4: 1.0})
        add_event(system.id, recent, scores={4: 0.3})

        recalc_effective_scores(db, system.id)

        assert _rows(db, window.id)[4].max_event_score == pytest.approx(0.3)

    def test_external_shadow_scores_count(self, client, db, es_system, add_shadow, add_window, recent):
        system, _ = es_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {1: 0.5})
        add_shadow(system.id, "ext-hi", event_timestamp=recent, template_id="tpl-hi", scores={1: 0.8})
        add_shadow(system.id, "ext-lo", event_timestamp=recent, template_id="tpl-lo", scores={1: 0.1})

        recalc_effective_scores(db, system.id)
        assert _rows(db, window.id)[1].max_event_score == pytest.approx(0.8)

        client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": "tpl-hi"})
        assert _rows(db, window.id)[1].max_event_score == pytest.approx(0.1)

    def test_unacknowledge_recalculates_without_restoring_scores(
        self, client, db, make_system, add_event, add_window, recent,
    ):
        system = make_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {1: 0.6})
        ev = add_event(system.id, recent, template_id="tpl-u", scores={1: 0.7})

        client.post("/events/acknowledge-group", json={"system_id": system.id, "group_key": "tpl-u"})
        r = client.post("/events/unacknowledge-group", json={"system_id": system.id, "group_key": "tpl-u"})
        assert r.json()["updated_windows"] == 1

        row = _rows(db, window.id)[1]
        # Scores were deleted on both flips; the event awaits re-scoring.
        assert row.max_event_score == 0
        assert row.effective_value == 0


class TestRecalcWindowSelection:
    def test_old_windows_untouched_by_default(self, db, make_system, add_event, add_window, recent):
        system = make_system()
        old_start = recent - timedelta(days=30)
        window = add_window(system.id, old_start, old_start + timedelta(hours=1), {1: 0.5})
        add_event(system.id, old_start + timedelta(minutes=5), scores={1: 0.9})

        assert recalc_effective_scores(db, system.id) == 0
        assert _rows(db, window.id)[1].max_event_score == 0

    def test_configured_window_days_widen_the_range(
        self, db, make_system, add_event, add_window, recent, dashboard_config,
    ):
        system = make_system()
        old_start = recent - timedelta(days=30)
        window = add_window(system.id, old_start, old_start + timedelta(hours=1), {1: 0.5})
        add_event(system.id, old_start + timedelta(minutes=5), scores={1: 0.9})
        dashboard_config({"score_display_window_days": 45})

        assert recalc_effective_scores(db, system.id) == 1
        assert _rows(db, window.id)[1].max_event_score == pytest.approx(0.9)

    @pytest.mark.parametrize("value", [0, -3, 120, "soon", None, True])
    def test_invalid_window_days_fall_back_to_default(self, db, dashboard_config, value):
        dashboard_config({"score_display_window_days": value})
        assert score_window_days(db) == 7

    def test_missing_config_uses_default(self, db):
        assert score_window_days(db) == 7

    def test_window_failure_does_not_stop_the_others(self, db, make_system, add_event, add_window, recent, monkeypatch):
        system = make_system()
        broken = add_window(system.id, recent - timedelta(hours=2), recent - timedelta(hours=1), {1: 0.5})
        healthy = add_window(system.id, recent - timedelta(minutes=30), recent + timedelta(minutes=30), {1: 0.5})
        add_event(system.id, recent, scores={1: 0.6})

        original = score_recalc._recalc_window

        def _flaky(db_, window, meta_weight, now):
            if window.id == broken.id:
                raise OperationalError("UPDATE effective_scores", {}, Exception("locked"))
            return original(db_, window, meta_weight, now)

        monkeypatch.setattr(score_recalc, "_recalc_window", _flaky)

        assert recalc_effective_scores(db, system.id) == 1
        assert _rows(db, healthy.id)[1].max_event_score == pytest.approx(0.6)

    def test_non_database_error_is_isolated_per_window(self, db, make_system, add_event, add_window, recent, monkeypatch):
        system = make_system()
        broken = add_window(system.id, recent - timedelta(hours=3), recent - timedelta(hours=2), {2: 0.5})
        healthy = add_window(system.id, recent - timedelta(minutes=20), recent + timedelta(minutes=20), {2: 0.5})
        add_event(system.id, recent, scores={2: 0.7})

        original = score_recalc._recalc_window

        def _flaky(db_, window, meta_weight, now):
            if window.id == broken.id:
                raise ValueError("bad score payload")
            return original(db_, window, meta_weight, now)

        monkeypatch.setattr(score_recalc, "_recalc_window", _flaky)

        assert recalc_effective_scores(db, system.id) == 1
        assert _rows(db, healthy.id)[2].max_event_score == pytest.approx(0.7)


class TestRecalculateEndpoint:
    def test_recalculate_for_system(self, client, db, make_system, add_event, add_window, recent):
        system = make_system()
        window = add_window(system.id, recent - timedelta(hours=1), recent + timedelta(minutes=30), {3: 0.4})
        add_event(system.id, recent, scores={3: 0.5})

        r = client.post("/scores/recalculate", json={"system_id": system.id})
        assert r.status_code == 200
        assert r.json() == {"updated_windows": 1}

        row = _rows(db, window.id)[3]
        assert row.effective_value == pytest.approx(W * 0.4 + (1 - W) * 0.5)
