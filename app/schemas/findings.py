from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class FindingOut(BaseModel):
    id: str
    system_id: str
    text: str
    severity: Optional[str] = None
    status: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    acknowledged_at: Optional[str] = None
    acknowledged_by: Optional[str] = None


class FindingListResponse(BaseModel):
    findings: list[FindingOut]
    total: int
