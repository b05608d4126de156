"""
Audit log writer.

write_audit_log() never raises: a failed audit write is logged and the
session rolled back, leaving the already-committed mutation intact.
Secrets are redacted from `details` before they are stored.
"""
from __future__ import annotations

import json
import uuid
from typing import Any, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

logger = structlog.get_logger(__name__)

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = frozenset({
    "password", "passwd", "secret", "token", "api_key", "apikey",
    "authorization", "key_hash", "plain_key", "access_key",
    "private_key", "credential", "credentials", "client_secret",
})


def sanitize_details(value: Any) -> Any:
    """Recursively replace values under sensitive keys with REDACTED."""
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else sanitize_details(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_details(v) for v in value]
    return value


def write_audit_log(
    db: Session,
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    actor: Optional[str] = None,
    ip: Optional[str] = None,
) -> Optional[AuditLog]:
    entry = AuditLog(
        id=str(uuid.uuid4()),
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=json.dumps(sanitize_details(details), default=str) if details else None,
        ip=ip,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("audit_log_write_failed", action=action, resource_type=resource_type, exc_info=True)
        return None
    return entry
