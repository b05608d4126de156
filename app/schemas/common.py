"""
Error envelope, documented on routes that can fail with a coded error.
"""
from typing import Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """`{code, message, details}` returned for every 4xx/5xx response."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


FLIP_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid timestamp or missing field"},
    500: {"model": ErrorResponse, "description": "The acknowledgement flip failed"},
}

SEARCH_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid filter value"},
    502: {"model": ErrorResponse, "description": "External search store unavailable"},
}
