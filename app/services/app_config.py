"""Read-only access to admin-edited settings in `app_config`."""
from __future__ import annotations

import json
from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.app_config import AppConfig

logger = structlog.get_logger(__name__)

DASHBOARD_CONFIG_KEY = "dashboard_config"


def get_config_value(db: Session, key: str) -> Optional[Any]:
    """Return the decoded JSON value for `key`, or None if absent or unparsable."""
    row = db.get(AppConfig, key)
    if row is None or row.value is None:
        return None
    try:
        return json.loads(row.value)
    except json.JSONDecodeError:
        logger.warning("app_config_unparsable", key=key)
        return None


def score_window_days(db: Session) -> float:
    """
    Days of windows the dashboard shows, from
    dashboard_config.score_display_window_days.

    Anything outside (0, SCORE_WINDOW_DAYS_MAX] falls back to the default.
    """
    default = settings.SCORE_WINDOW_DAYS_DEFAULT
    config = get_config_value(db, DASHBOARD_CONFIG_KEY)
    if not isinstance(config, dict):
        return default
    raw = config.get("score_display_window_days")
    if isinstance(raw, bool):
        return default
    try:
        days = float(raw)
    except (TypeError, ValueError):
        return default
    if 0 < days <= settings.SCORE_WINDOW_DAYS_MAX:
        return days
    return default
