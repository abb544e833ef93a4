# daswos/core/exceptions.py
from __future__ import annotations

"""
Unified exceptions & handlers for DasWos Coins.

- Domain exceptions raised by the ledger and the coin service
  (NotFoundError, InvalidArgumentError, StoreUnavailableError, InsufficientFundsError, ...)
- Global FastAPI handlers with structured logging via daswos.core.logging
- RFC 7807-style JSON body (problem+json-compatible fields)
- IntegrityError parsing (duplicate/foreign key/not null/check) for PG/SQLite
- RequestValidationError, HTTPException, SQLAlchemyError, OperationalError handling
"""

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from daswos.core.logging import bound_context, get_logger, redact_secrets

logger = get_logger(__name__)

# 422 Unprocessable Content (числом: имя константы в starlette устарело)
HTTP_422_UNPROCESSABLE = 422

# -----------------------------------------------------------------------------
# Custom domain exceptions
# -----------------------------------------------------------------------------

class DasWosException(Exception):
    """Base domain exception."""

    default_code = "DASWOS_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        http_status: Optional[int] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.extra = extra or {}
        self.headers = headers or {}
        self.http_status = http_status
        super().__init__(self.message)


class AuthenticationError(DasWosException):
    """Missing or invalid credentials."""

    default_code = "NOT_AUTHENTICATED"


class AuthorizationError(DasWosException):
    """Authenticated, but not allowed."""

    default_code = "FORBIDDEN"


class InvalidArgumentError(DasWosException):
    """Malformed or out-of-domain input (bad id, non-numeric or negative balance)."""

    default_code = "INVALID_ARGUMENT"


class NotFoundError(DasWosException):
    """Requested record does not exist (e.g. wallet never provisioned)."""

    default_code = "NOT_FOUND"


class WalletNotFoundError(NotFoundError):
    default_code = "WALLET_NOT_PROVISIONED"

    def __init__(self, user_id: int, message: Optional[str] = None):
        self.user_id = user_id
        super().__init__(
            message or f"Wallet for user {user_id} is not provisioned",
            extra={"user_id": user_id},
        )


class ConflictError(DasWosException):
    """Resource conflict errors."""

    default_code = "CONFLICT"


class InsufficientFundsError(ConflictError):
    """Debit larger than the available balance (or remaining supply)."""

    default_code = "INSUFFICIENT_FUNDS"


class StoreUnavailableError(DasWosException):
    """
    The persistent store could not be reached or the write could not be
    committed. Retryable, unlike NotFoundError.
    """

    default_code = "STORE_UNAVAILABLE"

    def __init__(self, message: str = "Wallet store is temporarily unavailable", *, retry_after: int = 1, **kwargs):
        headers = kwargs.pop("headers", None) or {}
        headers.setdefault("Retry-After", str(retry_after))
        super().__init__(message, headers=headers, **kwargs)


class ExternalServiceError(DasWosException):
    """Payment provider / upstream failures."""

    default_code = "UPSTREAM_ERROR"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _problem_json(
    title: str,
    detail: str,
    status_code: int,
    code: Optional[str] = None,
    instance: Optional[str] = None,
    extras: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    RFC 7807 inspired body (application/problem+json compatible).
    """
    body: Dict[str, Any] = {
        "type": f"https://httpstatuses.com/{status_code}",
        "title": title,
        "status": status_code,
        "detail": detail,
        "code": code,
    }
    if instance:
        body["instance"] = instance
    if extras:
        body["extra"] = redact_secrets(dict(extras))
    return {k: v for k, v in body.items() if v is not None}


def _extract_request_id(headers: Mapping[str, str]) -> str:
    for k in ("x-request-id", "x-correlation-id"):
        if k in headers:
            return headers.get(k, "")
    return ""


def _json_problem_response(
    status_code: int,
    content: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=headers or {}, media_type="application/problem+json")


# -----------------------------------------------------------------------------
# IntegrityError parsing (Postgres/SQLite common patterns)
# -----------------------------------------------------------------------------

_DUP_RE = re.compile(r"duplicate key|unique constraint|unique violation", re.IGNORECASE)
_FK_RE = re.compile(r"foreign key", re.IGNORECASE)
_NOTNULL_RE = re.compile(r"not null", re.IGNORECASE)
_CHECK_RE = re.compile(r"check constraint|violates check constraint", re.IGNORECASE)


def _parse_integrity_error(exc: IntegrityError) -> Tuple[str, str]:
    """
    Returns (message, code) for user-friendly error mapping.
    """
    text = str(getattr(exc, "orig", exc))
    if _DUP_RE.search(text):
        return ("A record with this value already exists", "DUPLICATE_VALUE")
    if _FK_RE.search(text):
        return ("Referenced record does not exist", "FOREIGN_KEY_ERROR")
    if _NOTNULL_RE.search(text):
        return ("Required field is missing", "REQUIRED_FIELD")
    if _CHECK_RE.search(text):
        return ("Invalid value provided", "INVALID_VALUE")
    return ("A database constraint was violated", "INTEGRITY_ERROR")


# -----------------------------------------------------------------------------
# Exception Handlers (FastAPI)
# -----------------------------------------------------------------------------

_DOMAIN_STATUS: Tuple[Tuple[type, int, str], ...] = (
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED, "Authentication error"),
    (AuthorizationError, status.HTTP_403_FORBIDDEN, "Forbidden"),
    (WalletNotFoundError, status.HTTP_404_NOT_FOUND, "Wallet not provisioned"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Resource not found"),
    (InsufficientFundsError, status.HTTP_409_CONFLICT, "Insufficient funds"),
    (ConflictError, status.HTTP_409_CONFLICT, "Conflict"),
    (InvalidArgumentError, HTTP_422_UNPROCESSABLE, "Invalid argument"),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable"),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY, "Upstream service error"),
)


def status_for(exc: DasWosException) -> Tuple[int, str]:
    """Map a domain exception to (http status, problem title)."""
    for exc_type, sc, title in _DOMAIN_STATUS:
        if isinstance(exc, exc_type):
            return exc.http_status or sc, title
    return exc.http_status or status.HTTP_400_BAD_REQUEST, "Bad request"


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Fallback handler for uncaught exceptions.
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

    body = _problem_json(
        title="Internal server error",
        detail="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


async def daswos_exception_handler(request: Request, exc: DasWosException) -> JSONResponse:
    """
    Handler for our domain exceptions. Maps to appropriate HTTP status codes.
    """
    sc, title = status_for(exc)
    if isinstance(exc, AuthenticationError):
        exc.headers.setdefault("WWW-Authenticate", 'Bearer realm="api"')

    rid = _extract_request_id(request.headers)
    log = logger.error if sc >= 500 else logger.warning
    with bound_context(request_id=rid):
        log(
            "DasWos exception",
            exception_type=type(exc).__name__,
            message=exc.message,
            code=exc.code,
            path=request.url.path,
            method=request.method,
            extra=redact_secrets(exc.extra),
        )

    body = _problem_json(
        title=title,
        detail=exc.message,
        status_code=sc,
        code=exc.code,
        instance=str(request.url),
        extras=exc.extra,
    )
    return _json_problem_response(sc, body, headers=exc.headers)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """
    Handler for DB integrity errors (duplicate, FK, not null, check).
    """
    rid = _extract_request_id(request.headers)
    msg, code = _parse_integrity_error(exc)

    with bound_context(request_id=rid):
        logger.warning(
            "Database integrity error",
            error=str(getattr(exc, "orig", exc)),
            path=request.url.path,
            method=request.method,
            code=code,
        )

    body = _problem_json(
        title="Integrity error",
        detail=msg,
        status_code=status.HTTP_409_CONFLICT,
        code=code,
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_409_CONFLICT, body)


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """
    Handler for Pydantic validation errors raised outside request parsing.
    """
    errs = exc.errors(include_url=False, include_context=False)
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.warning("Validation error", errors=redact_secrets(errs), path=request.url.path, method=request.method)

    body = _problem_json(
        title="Validation error",
        detail="One or more fields failed validation",
        status_code=HTTP_422_UNPROCESSABLE,
        code="VALIDATION_ERROR",
        instance=str(request.url),
        extras={"errors": errs},
    )
    return _json_problem_response(HTTP_422_UNPROCESSABLE, body)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handler for FastAPI RequestValidationError (body/query/path validation).
    """
    errs = [{k: v for k, v in e.items() if k in ("type", "loc", "msg")} for e in exc.errors()]

    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.warning("Request validation error", errors=redact_secrets(errs), path=request.url.path, method=request.method)

    body = _problem_json(
        title="Validation error",
        detail="Request validation failed",
        status_code=HTTP_422_UNPROCESSABLE,
        code="REQUEST_VALIDATION_ERROR",
        instance=str(request.url),
        extras={"errors": errs},
    )
    return _json_problem_response(HTTP_422_UNPROCESSABLE, body)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handler for FastAPI HTTP exceptions.
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.info(
            "HTTP exception",
            status_code=exc.status_code,
            detail=redact_secrets(exc.detail),
            path=request.url.path,
            method=request.method,
        )

    headers = exc.headers or {}
    body = _problem_json(
        title=f"HTTP {exc.status_code}",
        detail=str(exc.detail),
        status_code=exc.status_code,
        code=f"HTTP_{exc.status_code}",
        instance=str(request.url),
    )
    return _json_problem_response(exc.status_code, body, headers=headers)


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Generic SQLAlchemy errors (not integrity).
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.error("SQLAlchemy error", exc_info=exc, path=request.url.path, method=request.method)

    body = _problem_json(
        title="Database error",
        detail="Database operation failed",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="DB_ERROR",
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """
    Operational DB errors (timeouts, connection issues) that escaped the ledger.
    """
    rid = _extract_request_id(request.headers)
    with bound_context(request_id=rid):
        logger.error("DB operational error", exc_info=exc, path=request.url.path, method=request.method)

    body = _problem_json(
        title="Database unavailable",
        detail="Database is temporarily unavailable. Please retry later.",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code="DB_UNAVAILABLE",
        instance=str(request.url),
    )
    return _json_problem_response(status.HTTP_503_SERVICE_UNAVAILABLE, body, headers={"Retry-After": "1"})


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Attach all exception handlers to FastAPI app.
    """
    # Domain
    app.add_exception_handler(DasWosException, daswos_exception_handler)

    # HTTP / Pydantic / FastAPI request-level validation
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)

    # SQLAlchemy
    app.add_exception_handler(IntegrityError, integrity_error_handler)          # 409
    app.add_exception_handler(OperationalError, operational_error_handler)      # 503
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)    # 500

    # Fallback
    app.add_exception_handler(Exception, global_exception_handler)


__all__ = [
    "DasWosException",
    "AuthenticationError",
    "AuthorizationError",
    "InvalidArgumentError",
    "NotFoundError",
    "WalletNotFoundError",
    "ConflictError",
    "InsufficientFundsError",
    "StoreUnavailableError",
    "ExternalServiceError",
    "status_for",
    "register_exception_handlers",
]
