# configure_structlog must run before other app imports create loggers.
from app.core.config import settings
from app.core.logging import configure_structlog

configure_structlog(settings.LOG_LEVEL, settings.JSON_LOGS)

import structlog
from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.routers import events as events_router
from app.routers import findings as findings_router
from app.routers import scores as scores_router
from app.core.errors import (
    AckEngineException,
    ack_engine_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Event Acknowledgement Engine",
    description=(
        "**Event acknowledgement and score consistency**\n\n"
        "Flips events between active and acknowledged across the native and "
        "external event stores, keeps effective scores and findings in step, "
        "and exposes event search.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(AckEngineException, ack_engine_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(events_router.router)
app.include_router(findings_router.router)
app.include_router(scores_router.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Returns `{"status": "ok", "db": "ok"}` when both the API and the database
    are reachable. Returns HTTP 503 if the DB is down.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        logger.error("health_db_unreachable", exc_info=True)
        db_status = "unreachable"

    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": db_status},
        )
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
