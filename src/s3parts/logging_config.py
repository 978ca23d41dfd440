"""Structured logging configuration for s3parts.

The upload engine attaches its context (bucket, key, upload id, part number,
attempt) to log records through ``extra=``. Both formatters render that
context: as JSON fields, or as a trailing ``key=value`` list in text mode.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Extra fields the upload engine attaches to its log records
_EXTRA_FIELDS = (
    "bucket",
    "key",
    "upload_id",
    "part_number",
    "attempt",
    "operation",
    "status",
    "duration_ms",
)

# httpx logs every request at INFO; the client logs its own summary
_NOISY_LOGGERS = ("httpx", "httpcore")


def _record_context(record: logging.LogRecord) -> dict:
    context = {}
    for name in _EXTRA_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = value
    return context


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any upload context.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_record_context(record))
        return json.dumps(entry, default=str)


class ContextFormatter(logging.Formatter):
    """Human-readable formatter that appends the upload context.

    Example: ``... INFO s3parts.coordinator: Uploaded b/k (3 parts) [upload_id=abc]``
    """

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = _record_context(record)
        if not context:
            return text
        pairs = " ".join(f"{name}={value}" for name, value in context.items())
        first, sep, rest = text.partition("\n")
        return f"{first} [{pairs}]{sep}{rest}"


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure root logging with the specified level and format.

    Existing root handlers are replaced. The httpx and httpcore loggers are
    raised to WARNING unless ``level`` is DEBUG.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Format type: 'text' for human-readable, 'json' for structured.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ContextFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
        )
