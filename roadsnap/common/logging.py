"""JSON-lines logging with a fixed field set per record."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from roadsnap.common.constants import JSON_LOG_FIELDS
from roadsnap.common.fs import ensure_dir

ROOT_LOGGER_NAME = "roadsnap"
LOG_FILENAME = "roadsnap.log.jsonl"


class JsonLineFormatter(logging.Formatter):
    """Every record carries all of ``JSON_LOG_FIELDS``; absent ones are null."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {field: getattr(record, field, None) for field in JSON_LOG_FIELDS}
        payload["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
            timespec="milliseconds"
        )
        payload["message"] = record.getMessage()
        payload["level"] = record.levelname
        payload["logger"] = record.name
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _handler(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(JsonLineFormatter())
    return handler


def build_logger(log_dir: Path | None = None, level: str = "INFO") -> logging.Logger:
    """Configure the package root logger; module loggers propagate to it."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level.upper())
    logger.handlers.clear()
    logger.addHandler(_handler(logging.StreamHandler()))

    if log_dir is not None:
        ensure_dir(log_dir)
        logger.addHandler(_handler(logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8")))
    return logger


def log_event(logger: logging.Logger, message: str, *, level: int = logging.INFO, **event_fields: Any) -> None:
    logger.log(level, message, extra=event_fields)
