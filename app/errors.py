"""
errors.py — API Error Taxonomy & Exception Handlers
Water Quality Tracker

Every error response has the shape ``{"success": false, "message": ...}``;
validation failures add an ``errors`` list with one entry per violated field.
"""

from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class ApiError(Exception):
    """Base for errors that map onto a structured 4xx response."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Bad request"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class DuplicateEmail(ApiError):
    message = "User with this email already exists"


class InvalidCredentials(ApiError):
    # shared by "no such user" and "wrong password"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid credentials"


class MissingToken(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Access token required"


class InvalidToken(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Invalid or expired token"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Admin privileges required"


class SelfDeleteForbidden(ApiError):
    message = "You cannot delete your own account"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"

    def __init__(self, entity: Optional[str] = None):
        super().__init__(f"{entity} not found" if entity else None)


# ── Handlers ──────────────────────────────────────────────────────────────────
def format_validation_errors(exc: RequestValidationError) -> list[dict]:
    """Flatten pydantic errors into ``[{field, message}]`` (all of them)."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return errors


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "Validation failed",
            "errors": format_validation_errors(exc),
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
