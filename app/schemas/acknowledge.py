"""
Acknowledgement request / response schemas.

Range:  POST /events/acknowledge        → RangeAckRequest → AcknowledgeResponse
        POST /events/unacknowledge      → RangeAckRequest → UnacknowledgeResponse
Group:  POST /events/acknowledge-group  → GroupAckRequest → AcknowledgeResponse
        POST /events/unacknowledge-group→ GroupAckRequest → UnacknowledgeResponse
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RangeAckRequest(BaseModel):
    """Time-range flip, optionally scoped to one system."""
    model_config = ConfigDict(populate_by_name=True)

    system_id: Optional[str] = Field(
        default=None,
        description="Monitored system id. Omit to flip events of all native systems.",
    )
    from_: Optional[str] = Field(
        default=None,
        alias="from",
        description="ISO-8601 lower bound (inclusive). Defaults to the epoch.",
        examples=["2026-01-01T00:00:00Z"],
    )
    to: Optional[str] = Field(
        default=None,
        description="ISO-8601 upper bound (inclusive). Defaults to now.",
        examples=["2026-01-02T00:00:00Z"],
    )


class GroupAckRequest(BaseModel):
    """Template-group flip. `group_key` is a template id or a single event id."""
    system_id: str = Field(description="Monitored system id.")
    group_key: str = Field(description="Template id (or event id for singleton groups).")


class AcknowledgeResponse(BaseModel):
    acknowledged: int = Field(description="Events flipped to acknowledged.")
    updated_windows: int = Field(description="Windows whose effective scores were recalculated.")
    transitioned_findings: int = Field(description="Open findings moved to acknowledged.")
    message: str


class UnacknowledgeResponse(BaseModel):
    unacknowledged: int = Field(description="Events flipped back to active.")
    updated_windows: int = Field(description="Windows whose effective scores were recalculated.")
    message: str
