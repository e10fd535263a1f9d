"""
Error taxonomy for the contract lifecycle.

Every caller-facing failure is a LifecycleError carrying one ErrorKind.
The handlers registered in main.py render them as
{"success": false, "error": <kind>, "message": ..., "errors": [...]}.
"""

import enum
import logging
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    CONTRACT_CANCELLED = "contract_cancelled"
    VALIDATION_FAILED = "validation_failed"
    PRECONDITION_FAILED = "precondition_failed"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    DEPENDENCY_FAILED = "dependency_failed"
    INTERNAL_ERROR = "internal_error"


STATUS_CODES = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TOKEN_INVALID: 404,
    ErrorKind.TOKEN_EXPIRED: 410,
    ErrorKind.CONTRACT_CANCELLED: 410,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.PRECONDITION_FAILED: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.DEPENDENCY_FAILED: 502,
    ErrorKind.INTERNAL_ERROR: 500,
}


class LifecycleError(Exception):
    """A typed failure of a lifecycle operation"""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.errors = errors or []

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.kind.value,
            "message": self.message,
            "errors": self.errors,
        }

    def __repr__(self) -> str:
        return f"LifecycleError({self.kind.value!r}, {self.message!r})"


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} - {exc.kind.value}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.kind.value}: {exc.message}")

    headers = {"Retry-After": "900"} if exc.kind == ErrorKind.RATE_LIMITED else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Map request validation errors to VALIDATION_FAILED with field-level detail.

    A missing or malformed Authorization header is reported as UNAUTHORIZED
    rather than as a validation problem.
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content=LifecycleError(
                    ErrorKind.UNAUTHORIZED,
                    "Not authenticated. Please provide a valid Bearer token in the Authorization header.",
                ).to_dict(),
            )

    field_errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error for {request.url.path}: {field_errors}")
    return JSONResponse(
        status_code=400,
        content=LifecycleError(
            ErrorKind.VALIDATION_FAILED, "Invalid request data", field_errors
        ).to_dict(),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"❌ {request.method} {request.url.path} - Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content=LifecycleError(ErrorKind.INTERNAL_ERROR, "An unexpected error occurred").to_dict(),
    )


# Shorthand constructors used across the domain layer


def not_found(message: str = "Contract not found") -> LifecycleError:
    return LifecycleError(ErrorKind.NOT_FOUND, message)


def precondition_failed(message: str) -> LifecycleError:
    return LifecycleError(ErrorKind.PRECONDITION_FAILED, message)


def validation_failed(message: str, field: Optional[str] = None) -> LifecycleError:
    errors = [{"field": field, "message": message}] if field else None
    return LifecycleError(ErrorKind.VALIDATION_FAILED, message, errors)
