"""
Maps exceptions to structured JSON error responses.

Client mistakes get 400, backend unavailability 503, everything else 500.
Raw driver messages are only exposed when the app runs in a development env.
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..common.errors import (
    ConnectionFailed,
    DatabaseError,
    PoolClosed,
    PoolExhausted,
    QueryTimeout,
    RowShapeError,
)

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    error: str,
    message: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    body = {"error": error, "success": False}
    if message is not None:
        body["message"] = message
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def handle_api_error(exc: Exception, development: bool = False) -> JSONResponse:
    """Build the error response for an exception raised by a route."""
    if isinstance(exc, (RequestValidationError, ValidationError)):
        logger.warning("Invalid request parameters: %s", exc)
        return error_response(
            400,
            "Invalid request parameters",
            details=exc.errors(include_url=False) if isinstance(exc, ValidationError) else exc.errors(),
        )

    logger.error("API Error: %s", exc, exc_info=not isinstance(exc, DatabaseError))
    detail = str(exc) if development else None

    if isinstance(exc, ConnectionFailed):
        return error_response(
            503,
            "Database connection failed",
            message="Unable to connect to Vertica database",
            details=detail,
        )

    if isinstance(exc, (PoolExhausted, PoolClosed)):
        return error_response(
            503,
            "Connection pool timeout",
            message="All database connections are busy. Please try again in a moment.",
            details=detail,
        )

    if isinstance(exc, QueryTimeout):
        return error_response(
            503,
            "Query timeout",
            message="The query took too long to complete. Please try again in a moment.",
            details=detail,
        )

    return error_response(500, "Internal server error", message=detail)


def register_error_handlers(app: FastAPI) -> None:
    """Install handlers for the error taxonomy. Reads app.state.development."""

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        development = getattr(request.app.state, "development", False)
        return handle_api_error(exc, development)

    for exc_class in (RequestValidationError, ValidationError, DatabaseError, RowShapeError, Exception):
        app.add_exception_handler(exc_class, _handler)
