from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from ecosystem_auth.core.config import IS_DEV, IS_TEST

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Internal server error"


class AppError(Exception):
    """Base for every error that is rendered as a flat ``{"error": ...}`` body."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "UNEXPECTED_ERROR"
    default_message = GENERIC_ERROR_MESSAGE

    def __init__(self, error: str | None = None, **context: Any) -> None:
        self.message = error or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.context}

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_FAILED"
    default_message = "Authentication failed"

    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class AuthenticationRequiredError(AuthenticationError):
    code = "AUTHENTICATION_REQUIRED"
    default_message = "Authentication required"


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class InvalidTokenError(AuthenticationError):
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class TokenExpiredError(AuthenticationError):
    code = "TOKEN_EXPIRED"
    default_message = "Token expired"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_message = "Access denied"


class CompanySelectionRequiredError(AuthorizationError):
    code = "COMPANY_SELECTION_REQUIRED"
    default_message = "Company selection required"


class TenantStateError(AuthorizationError):
    code = "TENANT_UNAVAILABLE"

    _MESSAGES = {
        "suspended": (
            "Company subscription suspended",
            "This company's subscription has been suspended. Please contact support.",
        ),
        "pending": (
            "Company pending approval",
            "This company is awaiting approval. You will be notified once it is activated.",
        ),
    }

    def __init__(self, subscription_status: str) -> None:
        error, detail = self._MESSAGES.get(
            subscription_status,
            ("Company unavailable", "This company is not available right now."),
        )
        super().__init__(error, message=detail, subscriptionStatus=subscription_status)
        self.subscription_status = subscription_status


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Conflict"


class TooManyAttemptsError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "TOO_MANY_ATTEMPTS"
    default_message = "Too many attempts. Try again in a few minutes."


class UnexpectedError(AppError):
    pass


def _identity_for_log(request: Request) -> Any:
    identity = getattr(request.state, "identity", None)
    return getattr(identity, "user_id", None)


def _log_unexpected(request: Request, exc: Exception) -> None:
    logger.error(
        "Unexpected failure path=%s method=%s user_id=%s error=%s",
        request.url.path,
        request.method,
        _identity_for_log(request),
        exc.__class__.__name__,
        exc_info=exc,
    )


def _unexpected_body(exc: Exception) -> dict[str, Any]:
    body = {"error": GENERIC_ERROR_MESSAGE, "code": UnexpectedError.code}
    if IS_DEV or IS_TEST:
        body["detail"] = str(exc)
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        _log_unexpected(request, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        content = dict(exc.detail)
        content.setdefault("error", "Request failed")
    else:
        content = {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = None
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location) or None
        message = f"{field} is required" if first.get("type") == "missing" and field else first.get("msg", message)
    body: dict[str, Any] = {"error": message, "code": ValidationError.code}
    if field:
        body["field"] = field
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    _log_unexpected(request, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_unexpected_body(exc))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    _log_unexpected(request, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_unexpected_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
