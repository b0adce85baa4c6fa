"""Logging setup and run-scoped loggers for relay runs.

Two output styles share one configuration path:

- human-readable lines for terminals
- one JSON object per line for log shippers (``--json-logs``)

Modules log through ``logging.getLogger(__name__)``; the pipeline wraps its
logger in a ``RunLogger`` so every record carries the buckets being relayed.
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, MutableMapping, Optional, Tuple

__all__ = [
    "HUMAN_FORMAT",
    "JSONFormatter",
    "NOISY_LOGGERS",
    "RunLogger",
    "setup_logging",
]

HUMAN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
HUMAN_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers held at WARNING
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON line.

    Attributes passed through ``extra=`` (run context, metric fields) are
    grouped under ``"extra"``. Names listed in ``exclude_fields`` are dropped.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "relay.lib.fetch", "message": "Merged 5 rows from 2 object(s)",
         "thread": "MainThread"}
    """

    def __init__(self, exclude_fields: Optional[Iterable[str]] = None) -> None:
        super().__init__()
        self.exclude_fields = frozenset(exclude_fields or ())

    def _extras(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            name: value
            for name, value in vars(record).items()
            if name not in _STANDARD_ATTRS and name not in self.exclude_fields
        }

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extras = self._extras(record)
        if extras:
            payload["extra"] = extras
        return json.dumps(payload, default=str)


class RunLogger(logging.LoggerAdapter):
    """Logger adapter that stamps records with the current run's context.

    Caller-supplied ``extra=`` fields are kept and the bound context is
    layered on top, unlike the base adapter which replaces them.

    Example:
        log = RunLogger.for_module(__name__, source_bucket="raw")
        log.info("Merged %d rows", 5)          # record.source_bucket == "raw"
        log.metric("rows_merged", 5, unit="rows")
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(logger, {})
        self.bind(**(context or {}))

    @classmethod
    def for_module(cls, name: str, **context: Any) -> "RunLogger":
        return cls(logging.getLogger(name), context)

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self.extra)

    def bind(self, **context: Any) -> "RunLogger":
        """Add context fields; None values are skipped."""
        self.extra.update({k: v for k, v in context.items() if v is not None})
        return self

    def unbind(self) -> None:
        self.extra.clear()

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        merged = dict(kwargs.get("extra") or {})
        merged.update(self.extra)
        kwargs["extra"] = merged
        return msg, kwargs

    def metric(self, name: str, value: Any, unit: Optional[str] = None, **tags: Any) -> None:
        """Log a named measurement (rows, bytes, seconds) at INFO."""
        fields: Dict[str, Any] = {"metric_name": name, "metric_value": value, **tags}
        if unit:
            fields["metric_unit"] = unit
        self.info("METRIC %s=%s", name, value, extra=fields)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger for a relay run.

    Replaces any handlers already on the root logger.

    Args:
        verbose: DEBUG instead of INFO
        json_format: Emit JSON lines instead of human-readable text
        log_file: Also write records to this file
    """
    level = "DEBUG" if verbose else "INFO"

    formatter: Dict[str, Any]
    if json_format:
        formatter = {"()": JSONFormatter}
    else:
        formatter = {"format": HUMAN_FORMAT, "datefmt": HUMAN_DATEFMT}

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "relay",
        },
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": log_file,
            "encoding": "utf-8",
            "formatter": "relay",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"relay": formatter},
            "handlers": handlers,
            "root": {"level": level, "handlers": list(handlers)},
            "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        }
    )
