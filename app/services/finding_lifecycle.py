"""
Finding lifecycle.

Automatic transition
--------------------
transition_findings_for_acknowledged(db, system_id, messages, threshold=None) → int

When events are acknowledged, open findings whose text overlaps enough with
the acknowledged messages move to "acknowledged" (acknowledged_by="system").

Matching is lexical: each message contributes its distinct lowercase tokens
of at least FINDING_MIN_WORD_LENGTH characters; a finding matches a message
when the share of those tokens found as substrings of the finding text is
>= threshold. The first matching message transitions the finding.

Manual transitions
------------------
list_findings(db, system_id, status, limit)     → list[Finding]
acknowledge_finding(db, finding_id, actor)      → Finding   (404 / 409 if resolved)
reopen_finding(db, finding_id)                  → Finding   (409 unless acknowledged)
"""
from __future__ import annotations

from typing import Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import FindingNotFoundError, FindingStateError
from app.core.timeutil import utcnow
from app.models.finding import Finding, FindingStatus

logger = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"
ACTIVE_STATUSES = (FindingStatus.open.value, FindingStatus.acknowledged.value)


# ---------------------------------------------------------------------------
# Lexical matching
# ---------------------------------------------------------------------------

def message_tokens(message: str, min_length: Optional[int] = None) -> set[str]:
    min_len = settings.FINDING_MIN_WORD_LENGTH if min_length is None else min_length
    return {tok for tok in message.lower().split() if len(tok) >= min_len}


def overlap_ratio(finding_text: str, tokens: set[str]) -> float:
    """Share of `tokens` that occur in `finding_text` (already lowercased)."""
    if not tokens:
        return 0.0
    hits = sum(1 for tok in tokens if tok in finding_text)
    return hits / len(tokens)


def _token_sets(messages: Iterable[str]) -> list[set[str]]:
    sets = []
    for message in messages:
        tokens = message_tokens(message or "")
        if tokens:
            sets.append(tokens)
    return sets


# ---------------------------------------------------------------------------
# Automatic transition
# ---------------------------------------------------------------------------

def transition_findings_for_acknowledged(
    db: Session,
    system_id: Optional[str],
    messages: list[str],
    threshold: Optional[float] = None,
) -> int:
    if not messages:
        return 0
    token_sets = _token_sets(messages)
    if not token_sets:
        return 0
    limit = settings.FINDING_MATCH_THRESHOLD if threshold is None else threshold

    q = db.query(Finding).filter(Finding.status == FindingStatus.open.value)
    if system_id:
        q = q.filter(Finding.system_id == system_id)

    now = utcnow()
    transitioned = 0
    for finding in q.all():
        text = (finding.text or "").lower()
        if any(overlap_ratio(text, tokens) >= limit for tokens in token_sets):
            finding.status = FindingStatus.acknowledged.value
            finding.updated_at = now
            finding.acknowledged_at = now
            finding.acknowledged_by = SYSTEM_ACTOR
            transitioned += 1

    if transitioned:
        db.commit()
        logger.info("findings_transitioned", system_id=system_id, count=transitioned)
    return transitioned


# ---------------------------------------------------------------------------
# Manual transitions
# ---------------------------------------------------------------------------

def list_findings(
    db: Session,
    system_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[Finding]:
    q = db.query(Finding)
    if system_id:
        q = q.filter(Finding.system_id == system_id)
    if status == "active":
        q = q.filter(Finding.status.in_(ACTIVE_STATUSES))
    elif status:
        q = q.filter(Finding.status == status)
    return q.order_by(Finding.created_at.desc(), Finding.id).limit(limit).all()


def _get_finding(db: Session, finding_id: str) -> Finding:
    finding = db.get(Finding, finding_id)
    if finding is None:
        raise FindingNotFoundError(finding_id)
    return finding


def acknowledge_finding(db: Session, finding_id: str, actor: Optional[str] = None) -> Finding:
    finding = _get_finding(db, finding_id)
    if finding.status == FindingStatus.resolved.value:
        raise FindingStateError(finding_id, finding.status, "Resolved findings cannot be acknowledged.")

    now = utcnow()
    finding.status = FindingStatus.acknowledged.value
    finding.acknowledged_at = now
    finding.acknowledged_by = actor or "user"
    finding.updated_at = now
    db.commit()
    db.refresh(finding)
    return finding


def reopen_finding(db: Session, finding_id: str) -> Finding:
    finding = _get_finding(db, finding_id)
    if finding.status != FindingStatus.acknowledged.value:
        raise FindingStateError(finding_id, finding.status, "Only acknowledged findings can be reopened.")

    finding.status = FindingStatus.open.value
    finding.acknowledged_at = None
    finding.acknowledged_by = None
    finding.updated_at = utcnow()
    db.commit()
    db.refresh(finding)
    return finding
