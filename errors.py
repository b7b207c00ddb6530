"""
Error taxonomy for the storefront API.

Every error is an HTTPException so handlers can raise them directly; the
handlers registered in main.py translate request validation and driver
errors into the same shapes.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(status_code=401, detail=detail)


class AccountLockedError(HTTPException):
    def __init__(self, wait_minutes: int):
        self.wait_minutes = wait_minutes
        super().__init__(
            status_code=423,
            detail=f"Account is temporarily locked. Please try again in {wait_minutes} minutes.",
        )


class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Admin access required"):
        super().__init__(status_code=403, detail=detail)


class ValidationError(HTTPException):
    def __init__(self, detail: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(status_code=400, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ExternalServiceError(HTTPException):
    def __init__(self, detail: str = "Service unavailable", status_code: int = 500):
        super().__init__(status_code=status_code, detail=detail)


def field_errors(errors) -> List[Dict[str, Any]]:
    """Flatten pydantic error dicts into {field, message} pairs."""
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return details


async def validation_error_handler(request: Request, exc: ValidationError):
    body: Dict[str, Any] = {"detail": exc.detail}
    if exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=400, content=body)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation error", "errors": field_errors(exc.errors())},
    )


async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


def register_error_handlers(app) -> None:
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
