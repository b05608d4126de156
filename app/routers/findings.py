"""
Findings router.

GET /findings                      — list findings (status "active" = open + acknowledged)
PUT /findings/{id}/acknowledge     — manual acknowledge
PUT /findings/{id}/reopen          — undo an acknowledgement
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from app.core.timeutil import isoformat
from app.db.base import get_db
from app.models.finding import Finding
from app.schemas.findings import FindingListResponse, FindingOut
from app.services.audit import write_audit_log
from app.services.finding_lifecycle import acknowledge_finding, list_findings, reopen_finding

router = APIRouter(prefix="/findings", tags=["findings"])


def _finding_out(f: Finding) -> FindingOut:
    return FindingOut(
        id=f.id,
        system_id=f.system_id,
        text=f.text,
        severity=f.severity,
        status=f.status,
        created_at=isoformat(f.created_at),
        updated_at=isoformat(f.updated_at),
        acknowledged_at=isoformat(f.acknowledged_at),
        acknowledged_by=f.acknowledged_by,
    )


@router.get("", response_model=FindingListResponse, summary="List findings")
def get_findings(
    system_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None, description='"open", "acknowledged", "resolved" or "active".'),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    findings = list_findings(db, system_id=system_id, status=status, limit=limit)
    return FindingListResponse(findings=[_finding_out(f) for f in findings], total=len(findings))


@router.put("/{finding_id}/acknowledge", response_model=FindingOut, summary="Acknowledge a finding")
def put_acknowledge(
    finding_id: str,
    request: Request,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    finding = acknowledge_finding(db, finding_id, actor=x_actor)
    write_audit_log(
        db,
        action="finding_acknowledge",
        resource_type="finding",
        resource_id=finding_id,
        details={"system_id": finding.system_id},
        actor=x_actor,
        ip=request.client.host if request.client else None,
    )
    return _finding_out(finding)


@router.put("/{finding_id}/reopen", response_model=FindingOut, summary="Reopen an acknowledged finding")
def put_reopen(
    finding_id: str,
    request: Request,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    finding = reopen_finding(db, finding_id)
    write_audit_log(
        db,
        action="finding_reopen",
        resource_type="finding",
        resource_id=finding_id,
        details={"system_id": finding.system_id},
        actor=x_actor,
        ip=request.client.host if request.client else None,
    )
    return _finding_out(finding)
