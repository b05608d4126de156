"""
Scores router.

POST /scores/recalculate — bring effective scores in line with the current
acknowledged set (for collaborators that flip events out of band).
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.scores import RecalculateRequest, RecalculateResponse
from app.services.score_recalc import recalc_effective_scores

router = APIRouter(prefix="/scores", tags=["scores"])


@router.post("/recalculate", response_model=RecalculateResponse, summary="Recalculate effective scores")
def recalculate(payload: Optional[RecalculateRequest] = None, db: Session = Depends(get_db)):
    payload = payload or RecalculateRequest()
    return RecalculateResponse(updated_windows=recalc_effective_scores(db, payload.system_id))
