"""Structured logging foundation for the lag tracker.

Provides JSON logging (prod) or colored console (dev) via structlog.
Secret-looking keys are masked before any renderer sees them.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import Any, cast

import structlog

_REDACTED = "[REDACTED]"
_SENSITIVE_MARKERS = (
    "password",
    "secret",
    "private_key",
    "api_key",
    "token",
    "dsn",
    "authorization",
)


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _REDACTED if isinstance(k, str) and _is_sensitive(k) else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return type(value)(_redact(v) for v in value)
    return value


def redact_sensitive(
    _logger: Any,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor: mask values whose key names look like secrets.

    Nested dicts (e.g. a logged config section) are walked as well.
    """
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if _is_sensitive(key):
            event_dict[key] = _REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


_METHOD_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "exception": logging.ERROR,
    "critical": logging.CRITICAL,
}


def filter_by_level(
    _logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor: drop events below LAGTRACK_LOG_LEVEL."""
    threshold = logging.getLevelNamesMapping().get(_LOG_LEVELS["current"], logging.INFO)
    if _METHOD_LEVELS.get(method_name, logging.INFO) < threshold:
        raise structlog.DropEvent
    return event_dict


def _configure_structlog() -> None:
    """Configure structlog based on LAGTRACK_ENV."""
    env = os.environ.get("LAGTRACK_ENV", "development")
    log_level_name = os.environ.get("LAGTRACK_LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive,
    ]

    if env == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _LOG_LEVELS["current"] = log_level_name


_LOG_LEVELS: dict[str, str] = {"current": "INFO"}
_CONFIGURED = False


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance.

    Args:
        name: Logger name (typically module __name__).

    Returns:
        Configured structlog BoundLogger.
    """
    global _CONFIGURED
    if not _CONFIGURED:
        _configure_structlog()
        _CONFIGURED = True

    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def child_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a named logger with module-level context already bound.

    Args:
        name: Logger name (typically module __name__).
        **context: Key/value pairs attached to every event (e.g. module="lag-tracker").
    """
    return get_logger(name).bind(**context)
