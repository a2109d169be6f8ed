"""
Logging setup for the auth service.

JSON lines in production, a compact single-line format in development.
Every record carries the request_id of the HTTP request that produced it
(set by RequestIdMiddleware), and structured fields that could hold a
credential are masked before they reach a handler.

Usage:
    from src.logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Refresh token rotated", extra={"user_id": str(user.id)})
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Field names passed via extra= whose values are never written out
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "new_password",
        "password_hash",
        "access_token",
        "refresh_token",
        "token",
        "code",
        "secret_key",
        "smtp_password",
    }
)
MASK = "***"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "request_id", "taskName"}


def get_request_id() -> Optional[str]:
    return request_id_var.get()


class RequestContextFilter(logging.Filter):
    """Stamps request_id on the record and masks credential-bearing extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"  # type: ignore[attr-defined]
        for key in SENSITIVE_FIELDS.intersection(record.__dict__):
            setattr(record, key, MASK)
        return True


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields a caller attached with extra=, JSON-safe."""
    fields: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS or value is None:
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        req_id = getattr(record, "request_id", "-")
        if req_id != "-":
            payload["request_id"] = req_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(extra_fields(record))
        return json.dumps(payload)


class DevFormatter(logging.Formatter):
    """Human-readable line with extras appended as key=value pairs."""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-5s [%(name)s] req=%(request_id)s %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = "-"  # type: ignore[attr-defined]
        line = super().format(record)
        fields = extra_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging(
    *,
    log_level: str = "INFO",
    environment: str = "development",
    debug: bool = False,
) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        environment: 'production' switches to JSON output
        debug: Forces DEBUG regardless of log_level
    """
    level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter() if environment == "production" else DevFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
