from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RecalculateRequest(BaseModel):
    system_id: Optional[str] = Field(
        default=None,
        description="Limit recalculation to one system. Omit for all systems.",
    )


class RecalculateResponse(BaseModel):
    updated_windows: int
