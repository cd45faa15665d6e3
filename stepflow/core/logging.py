"""Logging setup for the StepFlow service.

Console output always; a rotating file when ``log_file`` is set; JSON lines
when ``structured`` is on. Records carry the trace and request ids of the
work they belong to through a shared context filter.
"""

import logging
import sys
import json
import traceback
from contextlib import contextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
from pathlib import Path


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Promoted to top-level keys of structured records
CORRELATION_FIELDS = ("trace_id", "request_id")

# Third-party loggers and the level they are capped at
NOISY_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "asyncio": logging.WARNING,
    "websockets": logging.WARNING,
}


class StructuredFormatter(logging.Formatter):
    """Renders records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        extra_fields: Dict[str, Any] = dict(getattr(record, "extra_fields", {}))

        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CORRELATION_FIELDS:
            if field in extra_fields:
                log_entry[field] = extra_fields.pop(field)

        log_entry["location"] = f"{record.module}:{record.funcName}:{record.lineno}"

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if extra_fields:
            log_entry["context"] = extra_fields

        return json.dumps(log_entry, default=str)


class TraceContextFilter(logging.Filter):
    """Attaches the current logging context (trace id, request id...) to records."""

    def __init__(self):
        super().__init__()
        self._context: Dict[str, Any] = {}

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def set_context(self, **kwargs):
        self._context.update(kwargs)

    def replace_context(self, context: Dict[str, Any]):
        self._context = dict(context)

    def clear_context(self):
        self._context.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        # Fields passed explicitly through log_with_context take precedence
        fields = dict(self._context)
        fields.update(getattr(record, "extra_fields", {}))
        record.extra_fields = fields
        return True


_context_filter = TraceContextFilter()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger for the service.

    Existing root handlers are replaced, so calling this again (for example
    once per test application) does not duplicate output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path; rotated at ``max_size`` bytes
        log_format: Format string for plain-text output
        structured: Emit JSON lines instead of plain text
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    numeric_level = getattr(logging, level.upper())

    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
        root_logger.addHandler(handler)

    for name, cap in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(cap, numeric_level))

    # Per-step simulator chatter is only interesting when debugging
    logging.getLogger("stepflow.core.simulator").setLevel(
        logging.DEBUG if numeric_level <= logging.DEBUG else max(logging.INFO, numeric_level)
    )

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs):
    """Set context fields for all subsequent log messages."""
    _context_filter.set_context(**kwargs)


def clear_logging_context():
    """Clear all logging context fields."""
    _context_filter.clear_context()


def get_logging_context() -> Dict[str, Any]:
    return _context_filter.context


@contextmanager
def logging_context(**kwargs):
    """Add context fields for the duration of a block, then restore the previous ones."""
    previous = _context_filter.context
    _context_filter.set_context(**kwargs)
    try:
        yield
    finally:
        _context_filter.replace_context(previous)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with additional context fields."""
    logger.log(level, message, extra={"extra_fields": context})
