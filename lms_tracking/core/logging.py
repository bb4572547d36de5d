"""Root logger setup for the API process and the worker.

Both write to stdout through a single handler. Locally the output is a
plain text line; with LOG_JSON=true every record becomes one JSON object.

Tracking code passes learner, course, lesson and attempt identifiers via
``extra={...}``. In JSON mode those become top-level keys, so failed
rollups can be filtered by ``learner_id`` in the log pipeline.
"""

from __future__ import annotations

import json
import logging
import sys

_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

# Libraries that are chatty at DEBUG; clamped to WARNING or the root level.
_NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
)

# Attributes copied from the record onto the JSON line when set.
_LIFTED_FIELDS = (
    # request scope (RequestContextMiddleware)
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "tenant_id",
    "organisation_id",
    # tracking scope (extra= at the call site)
    "learner_id",
    "course_id",
    "module_id",
    "lesson_id",
    "attempt_id",
    "rollup_mode",
)


def _timestamp(formatter: logging.Formatter, record: logging.LogRecord) -> str:
    stamp = logging.Formatter.formatTime(formatter, record, _DATEFMT)
    # "...T12:00:00+0000" -> "...T12:00:00.123+0000"
    return f"{stamp[:-5]}.{int(record.msecs):03d}{stamp[-5:]}"


class _StampedFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return _timestamp(self, record)


class _ContainerFormatter(_StampedFormatter):
    """One text line per record; WARNING and above carry ``[file:line]``."""

    _FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"

    def __init__(self) -> None:
        super().__init__(self._FMT, datefmt=_DATEFMT)
        self._located = _StampedFormatter(
            self._FMT + "  [%(filename)s:%(lineno)d]", datefmt=_DATEFMT
        )

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return self._located.format(record)
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": _timestamp(self, record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in _LIFTED_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Install the stdout handler on the root logger.

    Unknown level names fall back to INFO.
    """
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
