"""Structured logging configuration for torrentctl.

Provides logging setup with correlation IDs, structured output, a Rich
console handler, and an optional rotating log file.
"""

from __future__ import annotations

import json
import logging
import logging.config
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, cast

from rich.console import Console
from rich.logging import RichHandler

from torrentctl.utils.exceptions import TorrentCtlError

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.models import ObservabilityConfig

# Context variable for correlation ID
correlation_id: ContextVar[str | None] = cast(
    "ContextVar[str | None]",
    ContextVar("correlation_id", default=None),
)


class CorrelationFilter(logging.Filter):
    """Filter to add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record."""
        record.correlation_id = correlation_id.get() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    EXCLUDED_KEYS: ClassVar[frozenset[str]] = frozenset(
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
            "getMessage",
            "correlation_id",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Extra fields passed through ``extra=``
        log_entry.update(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in self.EXCLUDED_KEYS
            }
        )

        return json.dumps(log_entry, default=str)


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
) -> logging.Handler:
    """Create a RichHandler writing to stderr so it does not fight the live view."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        level=level,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.addFilter(CorrelationFilter())
    return handler


def setup_logging(config: ObservabilityConfig, console: Console | None = None) -> None:
    """Set up logging configuration."""
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "simple": {
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "filters": {
            "correlation": {
                "()": CorrelationFilter,
            },
        },
        "handlers": {},
        "loggers": {
            "torrentctl": {
                "level": config.log_level,
                "handlers": [],
                "propagate": False,
            },
        },
        "root": {
            "level": config.log_level,
            "handlers": [],
        },
    }

    if config.log_file:
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": config.log_level,
            "formatter": "structured" if config.structured_logging else "simple",
            "filters": ["correlation"],
            "filename": config.log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
        }
        logging_config["loggers"]["torrentctl"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)

    # Console output goes through Rich; structured mode keeps JSON on the console too
    if config.structured_logging:
        console_handler: logging.Handler = logging.StreamHandler()
        console_handler.setFormatter(StructuredFormatter())
        console_handler.addFilter(CorrelationFilter())
        console_handler.setLevel(config.log_level)
    else:
        console_handler = create_rich_handler(console, level=config.log_level)

    logging.getLogger("torrentctl").addHandler(console_handler)
    logging.getLogger().addHandler(console_handler)

    if config.log_correlation_id:
        correlation_id.set(str(uuid.uuid4()))


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    if name.startswith("torrentctl"):
        return logging.getLogger(name)
    return logging.getLogger(f"torrentctl.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set correlation ID for the current context."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id.get()


class LoggingContext:
    """Context manager for logging operations."""

    def __init__(self, operation: str, **kwargs):
        """Initialize operation context manager."""
        self.operation = operation
        self.kwargs = kwargs
        self.logger = get_logger(self.__class__.__module__)
        self.start_time = None

    def __enter__(self):
        """Enter the context manager."""
        self.start_time = time.time()
        set_correlation_id()
        self.logger.info("Starting %s", self.operation, extra=self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit the context manager."""
        duration = time.time() - self.start_time if self.start_time else 0

        if exc_type is None:
            self.logger.info(
                "Completed %s in %.3fs",
                self.operation,
                duration,
                extra=self.kwargs,
            )
        else:
            self.logger.error(
                "Failed %s in %.3fs: %s",
                self.operation,
                duration,
                exc_val,
                extra=self.kwargs,
                exc_info=exc_val is not None,
            )

        return False  # Don't suppress exceptions


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log an exception with context."""
    if isinstance(exc, TorrentCtlError):
        logger.error(
            "%s: %s",
            context,
            exc.message,
            extra={"details": exc.details},
        )
    else:
        logger.error("%s: %s", context, exc, exc_info=True)
