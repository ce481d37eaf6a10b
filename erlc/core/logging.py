"""Structured logging configuration for the client.

The library only creates module loggers under the ``erlc`` namespace;
:func:`setup_logging` is opt-in for applications that want the bundled
console handlers and JSON formatting.
"""

import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from erlc.core.config import settings

# Request and subscription attributes passed through ``extra=``
CONTEXT_FIELDS = (
    "trace_id",
    "span_id",       # span of the current HTTP attempt
    "method",
    "path",
    "status_code",
    "attempt",       # 0-based attempt within a retry sequence
    "duration_ms",
    "event_type",    # subscription event type
)

# Attributes every LogRecord carries; anything else came from ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_STRUCTURED_FORMAT = _TEXT_FORMAT + " - trace_id=%(trace_id)s - method=%(method)s - path=%(path)s"


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Known context fields are emitted at the top level; other ``extra``
    attributes are grouped under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {"file": record.pathname, "line": record.lineno, "function": record.funcName},
        }

        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in CONTEXT_FIELDS:
                if value not in (None, "-"):
                    payload[key] = value
            elif key not in _RECORD_ATTRS:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the context attributes so %-style formats never fail."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


def get_logging_config(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a dictConfig for the ``erlc`` logger hierarchy.

    Args:
        log_level: Level name, defaults to ``settings.log_level``
        log_format: ``text``, ``structured`` or ``json``, defaults to ``settings.log_format``

    Returns:
        A dict accepted by ``logging.config.dictConfig``
    """
    log_format = (log_format or settings.log_format).lower()
    log_level = (log_level or settings.log_level).upper()

    formatters: Dict[str, Any] = {
        "standard": {"format": _TEXT_FORMAT},
        "structured": {"format": _STRUCTURED_FORMAT},
    }
    if log_format == "json":
        formatters["json"] = {"()": "erlc.core.logging.JSONFormatter"}
        formatter = "json"
    elif log_format == "structured":
        formatter = "structured"
    else:
        formatter = "standard"

    def library_logger(level: str) -> Dict[str, Any]:
        return {"level": level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {"context": {"()": "erlc.core.logging.ContextFilter"}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
                "level": log_level,
                "formatter": formatter,
                "filters": ["context"],
            },
        },
        "loggers": {
            "erlc": library_logger(log_level),
            # httpx logs every request at INFO
            "httpx": library_logger("WARNING"),
        },
    }


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure the ``erlc`` logger hierarchy."""
    logging.config.dictConfig(get_logging_config(log_level, log_format))


def get_logger(name: str = "erlc") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping fields that are None.

    Example:
        >>> logger.warning(
        ...     "Retrying request",
        ...     extra=get_log_context(method="GET", path="/server", attempt=2),
        ... )
    """
    return {key: value for key, value in fields.items() if value is not None}
