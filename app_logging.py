"""JSON logging for the course service.

Every record is rendered as one JSON object per line on stdout. Request
handlers and the data layer share a per-request context (correlation id,
route, signed-in user, accumulated database time) kept in a
:class:`contextvars.ContextVar`, so log lines emitted deep inside a data
operation still carry the request they belong to.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("lms_request_context")

REDACTED = "[REDACTED]"
_DEFAULT_SENSITIVE = "password,token,email,phone"
_SENSITIVE_FIELDS = frozenset(
    name.strip().lower()
    for name in os.environ.get("SENSITIVE_FIELDS", _DEFAULT_SENSITIVE).split(",")
    if name.strip()
)

# Output order of the rendered payload. Fields after ``request_id`` may be
# supplied by the request context or by ``extra=`` on the logging call.
_HEADER_FIELDS = ("ts", "level", "logger", "msg", "request_id")
_CONTEXT_FIELDS = (
    "method", "path", "route", "status", "duration_ms", "user_id",
    "operation", "db_time_ms", "error_type", "error",
)
_TRAILER_FIELDS = ("stack", "extra_context")


def get_request_context() -> Dict[str, Any]:
    """Return the context dictionary of the current request (never ``None``)."""
    return _context.get({})


def merge_request_context(**values: Any) -> None:
    """Copy-on-write merge; ``None`` values are ignored."""
    merged = dict(get_request_context())
    merged.update((key, value) for key, value in values.items() if value is not None)
    _context.set(merged)


def clear_request_context() -> None:
    _context.set({})


def get_request_id() -> Optional[str]:
    return get_request_context().get("request_id")


def set_request_id(request_id: str) -> None:
    merge_request_context(request_id=request_id)


def sensitive_fields() -> Iterable[str]:
    return _SENSITIVE_FIELDS


def redact_sensitive_data(data: Any, fields: Optional[Iterable[str]] = None) -> Any:
    """Replace values of sensitive keys in nested mappings and sequences.

    Key matching is case-insensitive. Non-container values are returned as is.
    """
    names = frozenset(name.lower() for name in (fields or _SENSITIVE_FIELDS))
    if isinstance(data, Mapping):
        return {key: REDACTED if str(key).lower() in names else redact_sensitive_data(value, names)
                for key, value in data.items()}
    if isinstance(data, (list, tuple, set)):
        return [redact_sensitive_data(item, names) for item in data]
    return data


class JSONFormatter(logging.Formatter):
    """Render log records as compact single-line JSON."""

    # LogRecord attributes that are never copied into ``extra_context``.
    _RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload = self._header(record)
        payload.update(self._context_fields(record))
        payload.update(self._error_fields(record))
        extra = self._extra(record, payload)
        if extra:
            payload["extra_context"] = redact_sensitive_data(extra)
        ordered = {name: payload.pop(name, None)
                   for name in _HEADER_FIELDS + _CONTEXT_FIELDS + _TRAILER_FIELDS}
        ordered.update(payload)
        return json.dumps(ordered, default=_json_default, separators=(",", ":"))

    @staticmethod
    def _header(record: logging.LogRecord) -> Dict[str, Any]:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return {
            "ts": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": get_request_id(),
        }

    @staticmethod
    def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
        fields = {key: value for key, value in get_request_context().items() if key != "request_id"}
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                fields[name] = value
        return fields

    def _error_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            return {
                "error_type": exc_type.__name__,
                "error": str(exc_value),
                "stack": self.formatException(record.exc_info),
            }
        if record.stack_info:
            return {"stack": record.stack_info}
        return {}

    def _extra(self, record: logging.LogRecord, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in vars(record).items()
                if key not in self._RESERVED and key not in payload and not key.startswith("_")}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    return str(obj)


_QUIET_LOGGERS = ("gunicorn.access", "werkzeug", "sqlalchemy.engine")
_configured = False


def configure_logging() -> None:
    """Install the JSON handler on the root logger (idempotent).

    ``LOG_LEVEL`` selects the root level. Access logs of the server and SQL
    echo are held at WARNING; request lines come from the request middleware.
    """
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))
    logging.captureWarnings(True)

    for name in _QUIET_LOGGERS:
        quiet = logging.getLogger(name)
        quiet.handlers = []
        quiet.propagate = True
        quiet.setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


class DBTimer:
    """Accumulate database time of the current request into ``db_time_ms``."""

    def __enter__(self) -> "DBTimer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        elapsed = (time.perf_counter() - self._start) * 1000
        previous = get_request_context().get("db_time_ms") or 0.0
        self.elapsed_ms = round(elapsed, 2)
        merge_request_context(db_time_ms=round(previous + elapsed, 2))


__all__ = [
    "DBTimer",
    "JSONFormatter",
    "clear_request_context",
    "configure_logging",
    "get_logger",
    "get_request_context",
    "get_request_id",
    "merge_request_context",
    "redact_sensitive_data",
    "sensitive_fields",
    "set_request_id",
]
