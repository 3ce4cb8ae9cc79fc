"""Logging for pydirenv.

Stdout belongs to the shell (it carries the code the prompt hook evals), so
every handler configured here writes to stderr.

Usage:
    from pydirenv.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", format="json")
    logger = get_logger("rc")
    logger.info("loading script", path="/project/.envrc")
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Literal

__all__ = [
    "HumanFormatter",
    "JSONFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "ROOT_LOGGER_NAME",
]

ROOT_LOGGER_NAME = "pydirenv"

LogFormat = Literal["human", "json"]

# Attributes every LogRecord has; anything else on a record is an extra field.
_RECORD_ATTRS = frozenset(
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
        "message",
        "asctime",
        "taskName",
    }
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.ERROR:
            data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        for key, value in _extra_fields(record).items():
            try:
                json.dumps(value)
                data[key] = value
            except (TypeError, ValueError):
                data[key] = repr(value)

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data)


class HumanFormatter(logging.Formatter):
    """Compact single-line output: ``LEVEL logger: message key=value``."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname} {record.name}: {record.getMessage()}"
        extras = _extra_fields(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Structured logger
# =============================================================================


class StructuredLogger:
    """Thin wrapper over ``logging.Logger`` accepting keyword context.

    Keyword arguments become ``extra`` fields on the record, so both
    formatters render them.
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def child(self, name: str) -> StructuredLogger:
        return StructuredLogger(f"{self._logger.name}.{name}")

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, exc_info: Any = None, **context: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {(f"ctx_{k}" if k in _RECORD_ATTRS else k): v for k, v in context.items()}
        self._logger.log(level, msg, exc_info=exc_info, extra=extra, stacklevel=3)

    def debug(self, msg: str, exc_info: Any = None, **context: Any) -> None:
        self._log(logging.DEBUG, msg, exc_info=exc_info, **context)

    def info(self, msg: str, exc_info: Any = None, **context: Any) -> None:
        self._log(logging.INFO, msg, exc_info=exc_info, **context)

    def warning(self, msg: str, exc_info: Any = None, **context: Any) -> None:
        self._log(logging.WARNING, msg, exc_info=exc_info, **context)

    def error(self, msg: str, exc_info: Any = None, **context: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **context)

    def exception(self, msg: str, **context: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=True, **context)


# =============================================================================
# Configuration
# =============================================================================


def configure_logging(
    level: str | int | None = None,
    format: LogFormat | None = None,
    stream: Any = None,
) -> logging.Logger:
    """Configure the ``pydirenv`` logger hierarchy.

    ``DIRENV_LOG_LEVEL`` and ``DIRENV_LOG_FORMAT`` fill in whatever is not
    passed explicitly. Defaults are WARNING and human.

    Args:
        level: Level name or number.
        format: "human" or "json".
        stream: Output stream (default: stderr).

    Returns:
        The configured root ``pydirenv`` logger.
    """
    level = level or os.environ.get("DIRENV_LOG_LEVEL") or "WARNING"
    format = format or os.environ.get("DIRENV_LOG_FORMAT") or "human"  # type: ignore[assignment]

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING
    else:
        resolved = level

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if format == "json" else HumanFormatter())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved)
    return root


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger under the ``pydirenv`` namespace."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return StructuredLogger(name)
