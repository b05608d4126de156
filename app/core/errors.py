"""
Custom exception hierarchy for the acknowledgement engine.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

Primary mutations (the acknowledgement flip itself) surface as 5xx.
Side effects (score recalculation, finding transitions) never raise to the
client; they are logged and reported as zero counts.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class AckEngineException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidTimestampError(AckEngineException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "INVALID_TIMESTAMP"

    def __init__(self, field: str, value: Any):
        super().__init__(
            message=f'"{field}" must be a valid ISO date string.',
            details={"field": field, "value": str(value)},
        )


class MissingFieldError(AckEngineException):
    http_status = status.HTTP_400_BAD_REQUEST
    code = "MISSING_FIELD"

    def __init__(self, *fields: str):
        names = ", ".join(f'"{f}"' for f in fields)
        super().__init__(
            message=f"{names} {'is' if len(fields) == 1 else 'are'} required.",
            details={"fields": list(fields)},
        )


class AcknowledgementFailedError(AckEngineException):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "ACKNOWLEDGEMENT_FAILED"

    def __init__(self, operation: str, system_id: str | None, reason: str):
        super().__init__(
            message=f"Event {operation} failed.",
            details={"operation": operation, "system_id": system_id, "reason": reason},
        )


class ExternalSearchError(AckEngineException):
    """The external search cluster could not be reached or rejected a query."""
    http_status = status.HTTP_502_BAD_GATEWAY
    code = "EXTERNAL_SEARCH_UNAVAILABLE"

    def __init__(self, message: str, connection_id: str | None = None):
        super().__init__(
            message=message,
            details={"connection_id": connection_id} if connection_id else {},
        )


class EsConnectionNotFoundError(ExternalSearchError):
    code = "ES_CONNECTION_NOT_FOUND"

    def __init__(self, connection_id: str):
        super().__init__(
            message=f'Elasticsearch connection "{connection_id}" not found.',
            connection_id=connection_id,
        )


class FindingNotFoundError(AckEngineException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "FINDING_NOT_FOUND"

    def __init__(self, finding_id: str):
        super().__init__(
            message=f"Finding {finding_id} not found.",
            details={"finding_id": finding_id},
        )


class FindingStateError(AckEngineException):
    http_status = status.HTTP_409_CONFLICT
    code = "INVALID_FINDING_STATE"

    def __init__(self, finding_id: str, current: str, message: str):
        super().__init__(
            message=message,
            details={"finding_id": finding_id, "status": current},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def ack_engine_exception_handler(
    request: Request, exc: AckEngineException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 400 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
