from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Iterable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_LOCATION_SECTIONS = {"body", "query", "path", "header", "cookie"}


class AppError(Exception):
    """Base for errors raised by services and rendered by a single handler."""

    status_code = 500
    code = "internal_server_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, code: str | None = None, details: Any = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        self.details = details
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    default_message = "Validation failed"

    def __init__(self, errors: list[dict[str, str]], message: str | None = None) -> None:
        self.errors = errors
        super().__init__(message or _summarize(errors), details={"errors": errors})

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class InvalidStateError(AppError):
    status_code = 400
    code = "invalid_state"
    default_message = "Operation not permitted in the current state"


class InactiveLoanError(InvalidStateError):
    code = "inactive_loan"
    default_message = "Loan is not active"


class InvalidTransitionError(AppError):
    status_code = 409
    code = "invalid_transition"
    default_message = "Status transition not permitted"


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Insufficient permissions"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class InternalError(AppError):
    status_code = 500
    code = "internal_server_error"
    default_message = "Internal server error"


def _summarize(errors: list[dict[str, str]]) -> str:
    if not errors:
        return "Validation failed"
    first = errors[0]
    if first.get("field"):
        return f"{first['field']}: {first['message']}"
    return first["message"]


def format_validation_errors(errors: Iterable[dict[str, Any]]) -> list[dict[str, str]]:
    """Flatten pydantic error dicts into `{field, message}` pairs, one per violation."""
    formatted: list[dict[str, str]] = []
    for error in errors:
        loc = [str(part) for part in (error.get("loc") or []) if part not in _LOCATION_SECTIONS]
        message = str(error.get("msg") or "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        formatted.append({"field": ".".join(loc), "message": message})
    return formatted


def _default_code(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        429: "rate_limited",
    }
    return mapping.get(status_code, "http_error")


def _default_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _normalize_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def _build_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    payload = {
        "code": code,
        "message": message,
        "data": None,
        "details": _normalize_details(details),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc.message, exc_info=exc)
        return _build_response(exc.status_code, exc.code, InternalError.default_message)
    return _build_response(exc.status_code, exc.code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _default_code(exc.status_code)
    detail = exc.detail
    if isinstance(detail, dict):
        return _build_response(
            exc.status_code,
            detail.get("code") or code,
            detail.get("message") or _default_message(exc.status_code),
            detail.get("details"),
        )
    message = detail if isinstance(detail, str) else _default_message(exc.status_code)
    response = _build_response(exc.status_code, code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    error = ValidationError(format_validation_errors(exc.errors()))
    return _build_response(error.status_code, error.code, error.message, error.details)


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = _build_response(
        status_code=429,
        code="rate_limited",
        message=_default_message(429),
        details=getattr(exc, "detail", None),
    )
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _build_response(
        status_code=500,
        code="internal_server_error",
        message="Internal server error",
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
