"""
Structured logging utilities for the PulseFind scan engine.

JSON output for production log aggregation, colored text for local
development. Scan-scoped context (scan id, segment label, provider name)
is carried through a LoggerAdapter and flattened into every JSON record.
"""

import json
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# Attributes callers may attach via ``extra=``; copied into JSON output
CONTEXT_FIELDS = ("scan_id", "segment", "provider", "platform", "mode")


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field_name in CONTEXT_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                log_obj[field_name] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Formatter that adds colors to log levels for terminal output.

    The scan id, when present, is appended so interleaved concurrent
    scans stay readable.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        # Work on a copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        message = super().format(record)
        scan_id = getattr(record, "scan_id", None)
        if scan_id:
            message = f"{message} [scan={scan_id}]"
        return message


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    max_bytes: int = 10485760,
    backup_count: int = 5,
    console_enabled: bool = True,
    colored: bool = True,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Console output format ("json" or "text")
        log_file: Optional file path for rotated JSON log output
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup files to keep
        console_enabled: Whether to log to stderr
        colored: Whether to color text output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    if log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        datefmt = "%Y-%m-%d %H:%M:%S"
        if colored and console_enabled:
            formatter = ColoredFormatter(fmt, datefmt)
        else:
            formatter = logging.Formatter(fmt, datefmt)

    if console_enabled:
        # stdout is reserved for scan results
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Third-party HTTP noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("numba").setLevel(logging.WARNING)


def setup_logging_from_config(config: Dict[str, Any], verbose: bool = False) -> None:
    """
    Configure logging from the ``logging`` section of the app config.

    Args:
        config: Full application configuration dict
        verbose: Force DEBUG level regardless of configuration
    """
    section = config.get("logging", {})
    setup_logging(
        level="DEBUG" if verbose else section.get("level", "INFO"),
        log_format=section.get("format", "json"),
        log_file=section.get("file"),
        max_bytes=section.get("max_bytes", 10485760),
        backup_count=section.get("backup_count", 5),
        console_enabled=section.get("console", True),
        colored=section.get("colored", True),
    )


def get_logger(name: str) -> logging.Logger:
    """Return the named logger."""
    return logging.getLogger(name)


class ScanLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps scan context onto every record.

    Context keys become record attributes, which is what JSONFormatter
    and ColoredFormatter read.
    """

    def process(
        self, msg: str, kwargs: Dict[str, Any]
    ) -> tuple[str, Dict[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        return msg, kwargs


def create_logger_with_context(
    name: str, context: Dict[str, Any]
) -> ScanLoggerAdapter:
    """
    Create a logger with persistent context.

    Args:
        name: Logger name
        context: Fields added to all records (e.g. {"scan_id": "..."})

    Returns:
        ScanLoggerAdapter: Logger that includes context in all messages

    Example:
        logger = create_logger_with_context("engine", {"scan_id": "3f2a9c"})
        logger.info("Local cache miss")
        # {"message": "Local cache miss", "scan_id": "3f2a9c", ...}
    """
    return ScanLoggerAdapter(get_logger(name), context)
