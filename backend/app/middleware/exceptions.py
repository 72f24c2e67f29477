"""Application exceptions and the handlers that turn them into JSON.

Every error leaves the API in one envelope:

    {"error": {"code": "ILLEGAL_TRANSITION", "message": "...", "details": {...}}}

``details`` is only present when there is something to add (validation
errors). Internal failures are logged in full and answered with a
generic message.
"""

import logging
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PickPackException(Exception):
    """Base class for errors raised deliberately by services."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class BusinessLogicError(PickPackException):
    def __init__(self, message: str, error_code: str = "BUSINESS_LOGIC_ERROR"):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, error_code)


class ResourceNotFoundError(PickPackException):
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} not found: {identifier}",
            status.HTTP_404_NOT_FOUND,
            "RESOURCE_NOT_FOUND",
        )


class PermissionDeniedError(PickPackException):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, status.HTTP_403_FORBIDDEN, "PERMISSION_DENIED")


class InvalidScopeError(PickPackException):
    """Unknown work center, unknown shift name, or malformed shift date."""

    def __init__(self, message: str):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, "INVALID_SCOPE")


class TaskTransitionError(PickPackException):
    """A picker task was asked to move along an edge its state machine forbids."""

    def __init__(self, task_id: str, from_status: str, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Picker task {task_id}: illegal transition {from_status} → {to_status}",
            status.HTTP_409_CONFLICT,
            "ILLEGAL_TRANSITION",
        )


class EmptyContainerCatalogError(PickPackException):
    """No container types are configured, so nothing can be packed."""

    def __init__(self, message: str = "No container types configured"):
        super().__init__(
            message, status.HTTP_422_UNPROCESSABLE_ENTITY, "EMPTY_CONTAINER_CATALOG"
        )


# ── Envelope ─────────────────────────────────────────────────

def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    error = {"code": error_code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})


def _where(request: Request) -> str:
    return f"{request.method} {request.url.path}"


# ── Handlers ─────────────────────────────────────────────────

async def pickpack_exception_handler(request: Request, exc: PickPackException) -> JSONResponse:
    logger.warning("%s on %s: %s", exc.error_code, _where(request), exc.message)
    return create_error_response(exc.status_code, exc.message, exc.error_code)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %d on %s: %s", exc.status_code, _where(request), exc.detail)
    return create_error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("Validation error on %s: %d problem(s)", _where(request), len(errors))
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        details={"errors": errors},
    )


# Matched in order against the lower-cased driver message
_INTEGRITY_KINDS = (
    ("unique", "DUPLICATE_RECORD", "A record with this value already exists"),
    ("foreign key", "FOREIGN_KEY_VIOLATION", "Referenced record does not exist"),
    ("not null", "NULL_VALUE_NOT_ALLOWED", "Required field is missing"),
    ("check", "CONSTRAINT_VIOLATION", "Record violates a table constraint"),
)


async def database_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Integrity error on %s: %s", _where(request), exc)
    driver_message = str(getattr(exc, "orig", exc)).lower()
    for needle, error_code, message in _INTEGRITY_KINDS:
        if needle in driver_message:
            break
    else:
        error_code, message = "INTEGRITY_ERROR", "Database constraint violation"
    return create_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, message, error_code)


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database unavailable on %s: %s", _where(request), exc)
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s", _where(request))
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Attach every handler above to the FastAPI app."""
    app.add_exception_handler(PickPackException, pickpack_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
