"""Structured loggers for the middleware, in text or JSON form."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from geofence.writer import BufferedFileWriter

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_LABELS = {"WARNING": "WARN", "CRITICAL": "ERROR"}


class _FieldLogger(logging.LoggerAdapter):
    """Adapter that merges bound fields with per-call ``extra={"fields": ...}``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(kwargs.get("extra") or {})
        fields = {**self.extra.get("fields", {}), **extra.get("fields", {})}
        extra["fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


def _record_items(record: logging.LogRecord) -> dict[str, Any]:
    stamp = datetime.fromtimestamp(record.created).astimezone()
    items: dict[str, Any] = {
        "time": stamp.isoformat(timespec="milliseconds"),
        "level": _LEVEL_LABELS.get(record.levelname, record.levelname),
        "msg": record.getMessage(),
    }
    items.update(getattr(record, "fields", {}) or {})
    return items


def _quote(value: Any) -> str:
    text = str(value)
    if text == "" or any(c in ' ="\\' or not c.isprintable() for c in text):
        return json.dumps(text, ensure_ascii=False)
    return text


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return " ".join(f"{key}={_quote(value)}" for key, value in _record_items(record).items())


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_record_items(record), default=str)


def create_bootstrap_logger(name: str) -> logging.LoggerAdapter:
    """Return a debug-level text logger writing to standard error."""
    logger = logging.Logger(f"geofence.bootstrap.{name}", logging.DEBUG)
    logger.propagate = False
    handler = logging.StreamHandler()
    handler.setFormatter(_TextFormatter())
    logger.addHandler(handler)
    return _FieldLogger(logger, {"fields": {"plugin": name}})


def create_logger(
    name: str,
    level: str,
    fmt: str,
    path: str,
    bootstrap_logger: logging.Logger | logging.LoggerAdapter,
) -> logging.LoggerAdapter:
    """Return the middleware logger.

    ``level`` is one of debug, info, warn or error (info otherwise),
    ``fmt`` is json or text, and ``path`` names a file to append to;
    when empty, or when the file cannot be opened, output goes to
    standard error. Problems are reported on ``bootstrap_logger``.
    """
    level_key = (level or "").lower()
    log_level = _LEVELS.get(level_key, logging.INFO)
    if level_key and level_key not in _LEVELS:
        bootstrap_logger.warning("Unknown log level", extra={"fields": {"level": level_key}})

    destination = "stderr"
    handler = None
    if path:
        try:
            handler = logging.StreamHandler(BufferedFileWriter(path, 1024, 2.0))
            destination = path
        except OSError as err:
            bootstrap_logger.error(
                "Failed to create buffered file writer",
                extra={"fields": {"path": path, "error": str(err)}},
            )
    if handler is None:
        handler = logging.StreamHandler()

    format_name = (fmt or "").lower()
    if format_name == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_TextFormatter())
        format_name = "text"

    logger = logging.Logger(f"geofence.{name}", log_level)
    logger.propagate = False
    logger.addHandler(handler)

    if log_level <= logging.DEBUG:
        label = _LEVEL_LABELS.get(logging.getLevelName(log_level), logging.getLevelName(log_level))
        bootstrap_logger.debug(
            f"Logging to {destination} with {format_name} format at {label} level"
        )
    return _FieldLogger(logger, {"fields": {"plugin": name}})