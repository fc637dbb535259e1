"""Logging setup for generation runs.

Engine modules log through children of the ``datasetforge`` logger and attach
batch context with ``extra=batch_extra(task)``. Console lines show that
context as a ``[batch N backend/model]`` tag; JSON lines carry it as fields.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping

LOGGER_NAME = "datasetforge"
LOG_FILE = "datasetforge.log"
BATCH_FIELDS = ("batch_id", "backend", "model_id", "attempt")

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def batch_extra(task: Any, **fields: Any) -> Dict[str, Any]:
    """``extra=`` mapping describing the batch a record belongs to."""

    backend = getattr(task, "backend", None)
    extra: Dict[str, Any] = {
        "batch_id": task.batch_id,
        "backend": getattr(backend, "value", backend),
        "model_id": getattr(task, "model_id", None),
    }
    extra.update(fields)
    return extra


def _batch_tag(record: logging.LogRecord) -> str:
    batch_id = getattr(record, "batch_id", None)
    if batch_id is None:
        return ""
    parts = [f"batch {batch_id}"]
    backend = getattr(record, "backend", None)
    model_id = getattr(record, "model_id", None)
    if backend:
        parts.append(f"{backend}/{model_id}" if model_id else str(backend))
    attempt = getattr(record, "attempt", None)
    if attempt is not None:
        parts.append(f"attempt {attempt}")
    return "[" + " ".join(parts) + "] "


class BatchFormatter(logging.Formatter):
    """Text formatter that prefixes batch context and colours by level on a TTY."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, *, use_color: bool = False) -> None:
        super().__init__(fmt)
        self.use_color = use_color

    def formatMessage(self, record: logging.LogRecord) -> str:
        original = record.message
        record.message = _batch_tag(record) + original
        try:
            line = super().formatMessage(record)
        finally:
            record.message = original
        colour = self.LEVEL_COLOURS.get(record.levelno) if self.use_color else None
        return f"{colour}{line}{self.RESET}" if colour else line


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per record, batch context as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in BATCH_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _console_handler(level: int, use_color: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(BatchFormatter(_CONSOLE_FORMAT, use_color=use_color and sys.stderr.isatty()))
    return handler


def _file_handler(directory: Path, level: int, json_logs: bool) -> logging.Handler:
    directory.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        directory / LOG_FILE,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JsonLinesFormatter() if json_logs else BatchFormatter(_FILE_FORMAT))
    return handler


def configure_logging(config: Mapping[str, object] | None = None) -> logging.Logger:
    """Attach console and optional rotating-file handlers to the ``datasetforge`` logger.

    Recognised keys: ``console_level``, ``file_level``, ``json_logs``,
    ``color`` and ``log_dir``. Calling it again replaces earlier handlers.
    """

    config = config or {}
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(
        _console_handler(coerce_level(config.get("console_level")), bool(config.get("color", True)))
    )
    log_dir = config.get("log_dir")
    if log_dir:
        logger.addHandler(
            _file_handler(
                Path(str(log_dir)),
                coerce_level(config.get("file_level"), default=logging.DEBUG),
                bool(config.get("json_logs")),
            )
        )
    return logger


def coerce_level(level: object, *, default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        value = logging.getLevelName(level.strip().upper())
        if isinstance(value, int):
            return value
    return default


__all__ = [
    "BATCH_FIELDS",
    "LOGGER_NAME",
    "BatchFormatter",
    "JsonLinesFormatter",
    "batch_extra",
    "coerce_level",
    "configure_logging",
]
