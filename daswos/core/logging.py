# daswos/core/logging.py
"""
Centralized logging for DasWos Coins.

Features:
- Stdlib logging (dictConfig) + structlog (JSON in prod or LOG_FORMAT=json, dev console otherwise).
- Sensitive fields redaction.
- Context (request_id, user_id, client_ip, user_agent) via contextvars.
- ASGI middleware for request context & access logs.
- Uvicorn integration (no duplicate handlers).
"""

from __future__ import annotations

import logging
import logging.config
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import structlog

from daswos.core import metrics

if TYPE_CHECKING:  # pragma: no cover
    from daswos.core.config import Settings

# ---------- Context vars ----------
_ctx_request_id: ContextVar[str] = ContextVar("request_id", default="")
_ctx_user_id: ContextVar[str] = ContextVar("user_id", default="")
_ctx_client_ip: ContextVar[str] = ContextVar("client_ip", default="")
_ctx_user_agent: ContextVar[str] = ContextVar("user_agent", default="")

_APP_INFO: Dict[str, str] = {"app": "DasWos Coins", "version": ""}
_CONFIGURED = False

# ---------- Secrets redaction ----------
_SECRET_KEYS = ("secret", "password", "token", "dsn", "api_key", "authorization", "signature")


def _mask_secret_value(v: Any) -> Any:
    s = str(v)
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def redact_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        out: Dict[str, Any] = {}
        for k, v in data.items():
            lk = str(k).lower()
            if any(x in lk for x in _SECRET_KEYS) and "public" not in lk:
                out[k] = _mask_secret_value(v)
            else:
                out[k] = redact_secrets(v)
        return out
    if isinstance(data, list):
        return [redact_secrets(v) for v in data]
    if isinstance(data, tuple):
        return tuple(redact_secrets(v) for v in data)
    return data


# ---------- structlog processors ----------
def _inject_context(_, __, event_dict):
    rid = _ctx_request_id.get()
    uid = _ctx_user_id.get()
    cip = _ctx_client_ip.get()
    ua = _ctx_user_agent.get()
    if rid:
        event_dict.setdefault("request_id", rid)
    if uid:
        event_dict.setdefault("user_id", uid)
    if cip:
        event_dict.setdefault("client_ip", cip)
    if ua:
        event_dict.setdefault("user_agent", ua)
    return event_dict


def _redact_processor(_, __, event_dict):
    return redact_secrets(event_dict)


def _add_app(_, __, event_dict):
    event_dict["app"] = _APP_INFO["app"]
    if _APP_INFO["version"]:
        event_dict["version"] = _APP_INFO["version"]
    return event_dict


# ---------- Stdlib dictConfig ----------
def _build_stdlib_dict_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(message)s"},
        },
        "handlers": {
            "console": {"level": level, "class": "logging.StreamHandler", "formatter": "plain", "stream": "ext://sys.stdout"},
        },
        "loggers": {
            "": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }


# ---------- structlog configure ----------
def _configure_structlog(json_logs: bool) -> None:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context,
        _redact_processor,
        _add_app,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ---------- Public API ----------
def setup_logging(settings: "Settings", *, force: bool = False) -> None:
    """
    Centralized logging setup:
    - stdlib dictConfig (console)
    - structlog (JSON/console)
    Idempotent unless ``force`` is set.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    level = (settings.LOG_LEVEL or "INFO").upper()
    _APP_INFO["app"] = settings.PROJECT_NAME
    _APP_INFO["version"] = settings.VERSION

    logging.config.dictConfig(_build_stdlib_dict_config(level))
    _configure_structlog(json_logs=settings.LOG_FORMAT == "json" or settings.is_production)

    lg = get_logger(__name__)
    lg.info("logging_initialized", level=level, format=settings.LOG_FORMAT)
    lg.debug("settings", **settings.dump_settings_safe())
    _CONFIGURED = True


def get_logger(name: str):
    return structlog.get_logger(name)


# ---------- Context helpers ----------
def clear_context() -> None:
    """Clear all logging context variables."""
    _ctx_request_id.set("")
    _ctx_user_id.set("")
    _ctx_client_ip.set("")
    _ctx_user_agent.set("")


def bind_user(user_id: Any) -> None:
    """Attach the authenticated user to the current request context."""
    _ctx_user_id.set(str(user_id))


def current_request_id() -> str:
    return _ctx_request_id.get()


# Context manager variant (scoped binding with automatic reset)
@contextmanager
def bound_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
):
    tokens: list[Tuple[ContextVar[str], Token]] = []
    if request_id is not None:
        tokens.append((_ctx_request_id, _ctx_request_id.set(request_id)))
    if user_id is not None:
        tokens.append((_ctx_user_id, _ctx_user_id.set(str(user_id))))
    if client_ip is not None:
        tokens.append((_ctx_client_ip, _ctx_client_ip.set(client_ip)))
    if user_agent is not None:
        tokens.append((_ctx_user_agent, _ctx_user_agent.set(user_agent)))
    try:
        yield
    finally:
        for var, tok in reversed(tokens):
            var.reset(tok)


# ---------- ASGI middleware ----------
class LoggingContextMiddleware:
    """
    - Generates/reads X-Request-ID
    - Binds request context
    - Echoes X-Request-ID in the response
    - Logs start/end with duration and status
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers", [])}
        request_id = headers.get("x-request-id") or headers.get("x-correlation-id") or str(uuid.uuid4())
        client = scope.get("client") or ("", 0)
        client_ip = client[0] if isinstance(client, (list, tuple)) and client else ""
        user_agent = headers.get("user-agent", "")
        path = scope.get("path", "")
        method = scope.get("method", "")

        start = time.perf_counter()
        status_code_holder = {"code": 500}

        async def _send(message):
            if message["type"] == "http.response.start":
                status_code_holder["code"] = message.get("status", 200)
                raw = list(message.get("headers", []))
                if not any(k.lower() == b"x-request-id" for k, _ in raw):
                    raw.append((b"x-request-id", request_id.encode("latin-1")))
                message["headers"] = raw
            await send(message)

        with bound_context(request_id=request_id, user_id="", client_ip=client_ip, user_agent=user_agent):
            lg = get_logger("http")
            lg.info("request_start", method=method, path=path)
            try:
                await self.app(scope, receive, _send)
            finally:
                dur_ms = (time.perf_counter() - start) * 1000.0
                metrics.request_latency_seconds.labels(method=method, status_code=str(status_code_holder["code"])).observe(dur_ms / 1000.0)
                lg.info(
                    "request_end",
                    method=method,
                    path=path,
                    status=status_code_holder["code"],
                    duration_ms=round(dur_ms, 2),
                )


def integrate_uvicorn_loggers() -> None:
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).propagate = False


__all__ = [
    "setup_logging",
    "get_logger",
    "bound_context",
    "bind_user",
    "clear_context",
    "current_request_id",
    "LoggingContextMiddleware",
    "integrate_uvicorn_loggers",
    "redact_secrets",
]
