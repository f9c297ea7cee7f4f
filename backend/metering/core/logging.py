# Structured JSON logging for the metering service. Each request produces
# one request.completed or request.failed line carrying request id, tenant
# header, route and latency, so a quota denial or a payment transition can
# be traced back to the call that caused it.

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from time import monotonic
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from metering.core.config import settings


# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Request fields are always rendered, even when empty.
_REQUEST_FIELDS = frozenset(
    {"request_id", "tenant_id", "route", "method", "status_code", "duration_ms", "error_code"}
)

PACKAGE_LOGGER = "metering"
REQUEST_LOGGER = "api_logger"


def _encode(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return repr(value)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and (value is not None or key in _REQUEST_FIELDS)
        }
        payload.update(extras)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=_encode)


def get_structured_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
        logger.setLevel(settings.LOG_LEVEL.upper())
        logger.propagate = False
    return logger


def configure_logging() -> None:
    """Route the package loggers through the JSON formatter."""
    get_structured_logger(PACKAGE_LOGGER)


logger = get_structured_logger(REQUEST_LOGGER)


def _request_fields(request: Request, request_id: str, started: float) -> dict[str, Any]:
    route = getattr(request.scope.get("route"), "path", None)
    return {
        "request_id": request_id,
        "tenant_id": request.headers.get(settings.TENANT_HEADER_NAME),
        "route": route or request.url.path,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((monotonic() - started) * 1000.0, 2),
    }


class APILoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = monotonic()
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra={
                    **_request_fields(request, request_id, started),
                    "status_code": 500,
                    "error_code": "unhandled_exception",
                },
            )
            raise

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request.completed",
            extra={
                **_request_fields(request, request_id, started),
                "status_code": response.status_code,
                "error_code": response.headers.get("X-Error-Code"),
            },
        )
        return response
