"""
Logging configuration for the pharmacy accessibility pipeline.
Plain text for interactive runs, JSON lines for batch sweeps.
"""

import json
import logging
import sys
from datetime import datetime, timezone

APP_LOGGER = "pharmacy_access"

# Structured fields copied from `extra=` into JSON records
EXTRA_FIELDS = (
    "facility_count",
    "region",
    "error_type",
    "batch_index",
    "duration",
    "operation",
    "api_name",
)


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Set up logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to emit JSON lines instead of plain text
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Chatty third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("pulp").setLevel(logging.WARNING)

    logging.getLogger(APP_LOGGER).setLevel(numeric_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under the application logger."""
    return logging.getLogger(f"{APP_LOGGER}.{name}")


def log_error(logger: logging.Logger, error_type: str, message: str, **kwargs) -> None:
    """Log an error with its kind as a structured field."""
    logger.error(message, extra={"error_type": error_type, **kwargs})


def log_performance(logger: logging.Logger, operation: str, duration: float, **kwargs) -> None:
    """Log how long an operation took."""
    logger.info(
        f"Performance: {operation} took {duration:.2f}s",
        extra={"operation": operation, "duration": duration, **kwargs},
    )
