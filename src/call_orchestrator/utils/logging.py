"""Logging for the call orchestrator.

Everything logs under the ``call_orchestrator`` logger tree. Production
writes one JSON object per line; other environments get a readable line
format. The current request id is attached to every record emitted while a
request is being handled, including records from background tasks it starts.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from call_orchestrator.config import get_settings

ROOT_LOGGER_NAME = "call_orchestrator"

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "request_id",
    "extra_fields",
}

_THIRD_PARTY_LEVELS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "celery": logging.INFO,
}

_configured: Optional[logging.Logger] = None


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record, with ``extra`` fields flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        document: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            document["request_id"] = request_id
        document.update(getattr(record, "extra_fields", {}))
        document.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


class StandardFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = getattr(record, "request_id", None) or "-"
        return super().format(record)


def setup_logging() -> logging.Logger:
    """Attach a stdout handler to the service's logger tree. Idempotent."""
    global _configured
    if _configured is not None:
        return _configured

    settings = get_settings()
    level = logging.getLevelName(settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else StandardFormatter())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers = [handler]
    root.setLevel(level)
    root.propagate = False

    for name, third_party_level in _THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(third_party_level)
    logging.getLogger("twilio.http_client").setLevel(
        logging.DEBUG if settings.debug else logging.WARNING
    )
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    _configured = root
    root.info(f"Logging configured at {settings.log_level} for {settings.environment.value}")
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def log_request(
    method: str, path: str, status_code: int, duration_ms: float, **fields: Any
) -> None:
    """One access line per request; ``fields`` go to the JSON output only."""
    get_logger("http").info(
        f"{method} {path} {status_code} {duration_ms:.1f}ms",
        extra={
            "extra_fields": {
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                **fields,
            }
        },
    )


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None, **fields: Any) -> None:
    """Log an exception with its traceback and the given context."""
    get_logger("error").error(
        f"{type(error).__name__}: {error}",
        exc_info=error,
        extra={
            "extra_fields": {
                "error_type": type(error).__name__,
                "context": context or {},
                **fields,
            }
        },
    )
