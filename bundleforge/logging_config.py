from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

from bundleforge.config.runtime_paths import logs_dir

DEFAULT_LOG_FILE = "bundleforge.log"
_BUILD_ID_VAR: ContextVar[str | None] = ContextVar("bundleforge_build_id", default=None)
_CONTEXT_FILTER: logging.Filter | None = None

_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "build_id",
    }
)


class StructuredJsonFormatter(logging.Formatter):
    """Render log records as structured JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        build_id = getattr(record, "build_id", None)
        if build_id:
            payload["build_id"] = build_id

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extras:
            payload["extra"] = _serialise_extra(extras)

        return json.dumps(payload, ensure_ascii=True)


class BuildContextFilter(logging.Filter):
    """Inject the current build id into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        bid = get_build_id()
        if bid:
            record.build_id = bid
        elif not hasattr(record, "build_id"):
            record.build_id = None
        return True


def _serialise_extra(data: Dict[str, Any]) -> Dict[str, Any]:
    serialised: Dict[str, Any] = {}
    for key, value in data.items():
        try:
            json.dumps(value)
            serialised[key] = value
        except (TypeError, ValueError):
            serialised[key] = repr(value)
    return serialised


def set_build_id(value: str | None) -> Token:
    """Set the current build id for log records."""
    return _BUILD_ID_VAR.set(value)


def get_build_id() -> str | None:
    """Return the current build id."""
    return _BUILD_ID_VAR.get()


def reset_build_id(token: Token) -> None:
    """Restore the previous build id context."""
    try:
        _BUILD_ID_VAR.reset(token)
    except (RuntimeError, ValueError):
        pass


def _coerce_level(level: str) -> int:
    value = getattr(logging, str(level).upper(), None)
    if isinstance(value, int):
        return value
    return logging.INFO


def _apply_context_filter(logger: logging.Logger) -> None:
    global _CONTEXT_FILTER
    if _CONTEXT_FILTER is None:
        _CONTEXT_FILTER = BuildContextFilter()
    if _CONTEXT_FILTER not in logger.filters:
        logger.addFilter(_CONTEXT_FILTER)


def init_logging(
    log_dir: str | os.PathLike[str] | None = None,
    *,
    level: str = "INFO",
    filename: str = DEFAULT_LOG_FILE,
) -> Path:
    """Initialise root logging with structured JSON output."""

    base = Path(log_dir).expanduser().resolve() if log_dir else logs_dir()
    base.mkdir(parents=True, exist_ok=True)
    log_path = base / filename

    root_logger = logging.getLogger()
    root_logger.setLevel(_coerce_level(level))
    _apply_context_filter(root_logger)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = StructuredJsonFormatter()
    file_handler = RotatingFileHandler(
        str(log_path),
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(BuildContextFilter())
    root_logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(BuildContextFilter())
    stream_handler.setLevel(logging.WARNING)
    root_logger.addHandler(stream_handler)

    os.environ.setdefault("BUNDLEFORGE_LOG_FILE", str(log_path))
    return log_path


__all__ = [
    "BuildContextFilter",
    "StructuredJsonFormatter",
    "get_build_id",
    "init_logging",
    "reset_build_id",
    "set_build_id",
]
