"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes, the ledger error taxonomy and the
global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List, Optional

logger = logging.getLogger("trip_ledger.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(AppException):
    """Raised when an operation targets a record outside the caller's ownership scope."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
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
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class LedgerValidationError(AppException):
    """
    Raised when a trip write breaks a ledger rule.

    Always blocks the write. ``findings`` holds every error finding as a dict
    (severity, code, message, context) so callers can build precise messages.
    """

    error_code_value = "ERR_LEDGER_VALIDATION"

    def __init__(self, message: str, findings: Optional[List[Dict[str, Any]]] = None):
        self.findings = findings or []
        super().__init__(
            message=message,
            error_code=self.error_code_value,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": self.findings}
        )

    @classmethod
    def from_findings(cls, findings) -> "LedgerValidationError":
        """Build the error from domain ``Finding`` objects."""
        message = "\n".join(f.message for f in findings)
        return cls(message, [f.as_dict() for f in findings])


class OdometerRegressionError(LedgerValidationError):
    """A trip starts below the end reading of the trip before it, or ends above the next one."""
    error_code_value = "ERR_LEDGER_ODOMETER"


class TripOverlapError(LedgerValidationError):
    """A trip's interval overlaps another trip of the same vehicle or driver."""
    error_code_value = "ERR_LEDGER_OVERLAP"


class CascadeLimitExceededError(LedgerValidationError):
    """A correction would shift more trips than a single cascade may touch."""
    error_code_value = "ERR_LEDGER_CASCADE_LIMIT"


class IntegrityProtectionError(AppException):
    """
    Raised when a hard delete would break the mileage chain.

    The deletion guard resolves it by converting the delete into a soft
    delete; it only reaches a client if that conversion itself fails.
    """

    def __init__(self, message: str, affected_trips: Optional[List[str]] = None):
        self.affected_trips = affected_trips or []
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_INTEGRITY",
            status_code=status.HTTP_409_CONFLICT,
            details={"affected_trips": self.affected_trips}
        )


class TripStateError(AppException):
    """Raised when an operation does not apply to the trip's lifecycle state."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_STATE",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raw ValueError raised by a model validator
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
