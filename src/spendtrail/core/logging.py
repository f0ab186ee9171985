"""
Structured JSON logging.

Every record is one JSON object: ``ts``, ``level``, ``logger``, ``message`` and
``event`` plus the keyword fields passed to ``log_event``. Request id, user id
and the user's role are attached from context when set.
"""

from __future__ import annotations

import contextvars
import enum
import json
import logging
import os
import time
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_user_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "user_id", default=None
)
_user_role_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "user_role", default=None
)

_configured = False


def _json_default(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        if ts.endswith("+00:00"):
            ts = ts[:-6] + "Z"
        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            for key, value in fields.items():
                if value is None or key in payload:
                    continue
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, ensure_ascii=True)


def configure_logging() -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger("spendtrail")
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def set_request_context(*, request_id: str | None) -> tuple[contextvars.Token, ...]:
    return (
        _request_id_var.set(request_id),
        _user_id_var.set(None),
        _user_role_var.set(None),
    )


def reset_request_context(tokens: tuple[contextvars.Token, ...]) -> None:
    token_request, token_user, token_role = tokens
    _request_id_var.reset(token_request)
    _user_id_var.reset(token_user)
    _user_role_var.reset(token_role)


def set_user_context(user_id: str | None, *, role: str | None = None) -> None:
    _user_id_var.set(user_id)
    _user_role_var.set(role)


def _merge_fields(fields: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    request_id = _request_id_var.get()
    if request_id:
        payload["request_id"] = request_id
    user_id = _user_id_var.get()
    if user_id:
        payload["user_id"] = user_id
    role = _user_role_var.get()
    if role:
        payload["user_role"] = role
    for key, value in fields.items():
        if value is None:
            continue
        payload[key] = value
    return payload


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    payload = _merge_fields(fields)
    logger.log(level, event, extra={"event": event, "fields": payload})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    payload = _merge_fields(fields)
    logger.exception(event, extra={"event": event, "fields": payload})


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        tokens = set_request_context(request_id=request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            log_exception(
                get_logger(__name__),
                "http.request.error",
                method=request.method,
                path=request.url.path,
                query=str(request.url.query) if request.url.query else None,
                duration_ms=monotonic_ms(start),
            )
            raise
        else:
            response.headers["x-request-id"] = request_id
            if response.status_code >= 400:
                log_event(
                    get_logger(__name__),
                    "http.request.rejected",
                    level=logging.WARNING if response.status_code < 500 else logging.ERROR,
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=monotonic_ms(start),
                )
            return response
        finally:
            reset_request_context(tokens)


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
