"""Application logging configuration utilities."""

from __future__ import annotations

import contextvars
import json
import logging
import os
import pathlib
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

from usagewatch.core.redactor import redact

_LOG_CONFIGURED = False
_CYCLE_ID_CTX: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cycle_id", default=None
)

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent


class CycleContextFilter(logging.Filter):
    """Inject the current refresh-cycle ID into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle_id = _CYCLE_ID_CTX.get()
        return True


class RedactingFilter(logging.Filter):
    """Mask credential-shaped substrings before a record reaches any handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        for key in ("detail", "reason", "payload"):
            value = getattr(record, key, None)
            if isinstance(value, str):
                setattr(record, key, redact(value))
        return True


class JsonFormatter(logging.Formatter):
    """Serialize log records as JSON lines."""

    _RESERVED = {
        "args",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        "created",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cycle_id = getattr(record, "cycle_id", None)
        if cycle_id:
            payload["cycle_id"] = cycle_id

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key.startswith("_") or key == "cycle_id":
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = redact(self.formatException(record.exc_info))

        return json.dumps(payload, ensure_ascii=True, default=str)


def set_cycle_id(cycle_id: str | None) -> contextvars.Token[str | None]:
    """Bind the current refresh cycle ID to the logging context."""
    return _CYCLE_ID_CTX.set(cycle_id)


def reset_cycle_id(token: contextvars.Token[str | None]) -> None:
    _CYCLE_ID_CTX.reset(token)


def get_cycle_id() -> str | None:
    return _CYCLE_ID_CTX.get()


def _log_file_path() -> pathlib.Path:
    configured = os.getenv("LOG_FILE", "logs/usagewatch.jsonl")
    path = pathlib.Path(configured)
    if not path.is_absolute():
        path = BASE_DIR.parent / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def configure_logging() -> None:
    """Configure global logging for the application."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    console_level_name = os.getenv("LOG_LEVEL", "WARNING").upper()
    console_level = getattr(logging, console_level_name, logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Remove default handlers that may exist in certain execution environments.
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    context_filter = CycleContextFilter()
    redacting_filter = RedactingFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.addFilter(context_filter)
    console_handler.addFilter(redacting_filter)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s (cycle_id=%(cycle_id)s)")
    )
    root_logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        _log_file_path(),
        maxBytes=10_000_000,
        backupCount=5,
    )
    file_handler.setLevel(logging.INFO)
    file_handler.addFilter(context_filter)
    file_handler.addFilter(redacting_filter)
    file_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(file_handler)

    # Suppress verbose third-party loggers.
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _LOG_CONFIGURED = True


__all__ = [
    "CycleContextFilter",
    "JsonFormatter",
    "RedactingFilter",
    "configure_logging",
    "get_cycle_id",
    "reset_cycle_id",
    "set_cycle_id",
]
