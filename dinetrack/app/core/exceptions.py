"""
Custom exceptions and error handlers for consistent error responses.

Every failure leaves the API in the same envelope:
    {"success": false, "error_code": ..., "kind": ..., "message": ..., "details": {...}}
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger("dinetrack.http")


class ErrorKind:
    """Stable error kinds exposed to callers."""
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission_denied"
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    CONFLICT = "conflict"
    UPSTREAM_FAILURE = "upstream_failure"
    INTERNAL = "internal"


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        kind: str = ErrorKind.INTERNAL,
        status_code: int = 500,
        details: Dict[str, Any] = None
    ):
        self.message = message
        self.error_code = error_code
        self.kind = kind
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthenticatedError(AppException):
    """Raised when the caller has no (valid) identity."""

    def __init__(self, message: str = "Login required"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            kind=ErrorKind.UNAUTHENTICATED,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class PermissionDeniedError(AppException):
    """Raised when the caller's role does not allow the action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            kind=ErrorKind.PERMISSION_DENIED,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class InvalidArgumentError(AppException):
    """Raised for malformed or missing payload fields."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_BAD_REQUEST",
            kind=ErrorKind.INVALID_ARGUMENT,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            kind=ErrorKind.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ValidationFailedError(AppException):
    """Raised when a business rule rejects the request."""

    def __init__(self, message: str = "Validation failed", details: Dict[str, Any] = None, error_code: str = "ERR_VALIDATION_001"):
        super().__init__(
            message=message,
            error_code=error_code,
            kind=ErrorKind.VALIDATION_FAILED,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InsufficientBalanceError(ValidationFailedError):
    """Raised when a DineCoins spend exceeds the available balance."""

    def __init__(self, balance: float, requested: float):
        super().__init__(
            message="Insufficient DineCoins balance",
            details={"balance": balance, "requested": requested},
            error_code="ERR_BALANCE_001"
        )


class ConflictError(AppException):
    """Raised when a write collides with an existing resource."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            kind=ErrorKind.CONFLICT,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class UpstreamFailureError(AppException):
    """Raised when the payment gateway is unreachable or rejects a call."""

    def __init__(self, message: str = "Payment gateway error", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_UPSTREAM_001",
            kind=ErrorKind.UPSTREAM_FAILURE,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details
        )


class TransientStoreError(AppException):
    """Raised when a store transaction kept conflicting after all retries."""

    def __init__(self, message: str = "Store is busy, retry the request", attempts: int = 0):
        super().__init__(
            message=message,
            error_code="ERR_STORE_CONFLICT",
            kind=ErrorKind.INTERNAL,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"retryable": True, "attempts": attempts}
        )


class InternalError(AppException):
    """Raised for unexpected store failures."""

    def __init__(self, message: str = "An internal server error occurred"):
        super().__init__(
            message=message,
            error_code="ERR_INTERNAL_SERVER",
            kind=ErrorKind.INTERNAL,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


def error_envelope(error_code: str, kind: str, message: str, details: Dict[str, Any] = None) -> dict:
    return {
        "success": False,
        "error_code": error_code,
        "kind": kind,
        "message": message,
        "details": details or {}
    }


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_envelope(exc.error_code, exc.kind, exc.message, exc.details))
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code and kind
    error_map = {
        400: ("ERR_BAD_REQUEST", ErrorKind.INVALID_ARGUMENT),
        401: ("ERR_UNAUTHORIZED", ErrorKind.UNAUTHENTICATED),
        403: ("ERR_FORBIDDEN", ErrorKind.PERMISSION_DENIED),
        404: ("ERR_NOT_FOUND", ErrorKind.NOT_FOUND),
        405: ("ERR_METHOD_NOT_ALLOWED", ErrorKind.INVALID_ARGUMENT),
        500: ("ERR_INTERNAL_SERVER", ErrorKind.INTERNAL)
    }

    error_code, kind = error_map.get(exc.status_code, ("ERR_UNKNOWN", ErrorKind.INTERNAL))

    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(error_code, kind, str(exc.detail))
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder(error_envelope(
            "ERR_VALIDATION",
            ErrorKind.INVALID_ARGUMENT,
            "Validation error",
            {"errors": exc.errors()}
        ))
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope("ERR_INTERNAL_SERVER", ErrorKind.INTERNAL, "An internal server error occurred")
    )
