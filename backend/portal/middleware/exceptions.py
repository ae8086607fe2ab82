"""Custom exception handlers for consistent error responses.

Provides the portal's error taxonomy and the handlers that render every
failure in one error envelope.
"""

import enum
import logging
from typing import Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class PermissionErrorCode(str, enum.Enum):
    """Failure kinds of the state permissions workflow."""

    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    ADMIN_REQUIRED = "AdminRequired"
    INVALID_STATE = "InvalidState"
    INVALID_PRODUCT = "InvalidProduct"
    DELETE_FAILED = "DeleteFailed"
    INSERT_FAILED = "InsertFailed"
    VERIFICATION_MISMATCH = "VerificationMismatch"
    DATA_FETCH_ERROR = "DataFetchError"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    PermissionErrorCode.AUTHENTICATION_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    PermissionErrorCode.ADMIN_REQUIRED: status.HTTP_403_FORBIDDEN,
    PermissionErrorCode.INVALID_STATE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PermissionErrorCode.INVALID_PRODUCT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PermissionErrorCode.DELETE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PermissionErrorCode.INSERT_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PermissionErrorCode.VERIFICATION_MISMATCH: status.HTTP_409_CONFLICT,
    PermissionErrorCode.DATA_FETCH_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class PortalException(Exception):
    """Base exception for portal application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class DataFetchError(PortalException):
    """The store could not serve a read (transport or query failure)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=PermissionErrorCode.DATA_FETCH_ERROR.http_status,
            error_code=PermissionErrorCode.DATA_FETCH_ERROR.value,
            details=details,
        )


class PermissionsOperationError(PortalException):
    """A state permissions save ended in a failed result."""

    def __init__(self, code: PermissionErrorCode, message: str, details: dict | None = None):
        super().__init__(
            message=message,
            status_code=code.http_status,
            error_code=code.value,
            details=details,
        )
        self.code = code


class ResourceNotFoundError(PortalException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class ConflictError(PortalException):
    """The request conflicts with the current state of an editor session."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Build the `{"error": {"code", "message", "details"?}}` envelope."""
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _where(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def portal_exception_handler(request: Request, exc: PortalException) -> JSONResponse:
    logger.warning(
        "%s %s failed: %s - %s",
        request.method, request.url.path, exc.error_code, exc.message,
        extra={"error_code": exc.error_code, **_where(request)},
    )
    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s: %s", exc.status_code, exc.detail, extra=_where(request))
    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body / query validation; lists each failing field."""
    logger.warning("Validation error on %s", request.url.path, extra=_where(request))
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """Database unreachable outside the repository's own error mapping."""
    logger.error(
        "Database operational error on %s: %s", request.url.path, exc, extra=_where(request)
    )
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s: %s", request.url.path, exc,
        extra=_where(request), exc_info=exc,
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register the portal's exception handlers with the FastAPI app."""
    app.add_exception_handler(PortalException, portal_exception_handler)
    # FastAPI's HTTPException subclasses Starlette's
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
