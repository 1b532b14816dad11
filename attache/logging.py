"""
Logging configuration for Attache.

Two destinations:

  - Console: DEBUG if --verbose, WARNING+ otherwise. Config
    ``console_format`` options:
    - "simple" - (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
    - "full"   - same structured format as the file handler
    - "clean"  - no console output at all (file logging still active)
  - File: always DEBUG level, attached by ``attach_log_file()``.
    Format: "timestamp | level | name | tag | message"

Log files are stored in ~/.attache/logs/.
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import get_data_dir

LOGGER_NAME = "attache"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(log_tag)s | %(message)s"


def tagged(tag: str) -> dict:
    """Return ``extra`` dict for logger calls: ``logger.debug("...", extra=tagged("x"))``."""
    return {"log_tag": tag}


# Module-level state (shared across re-inits)
_tag_filter: Optional["_TagFilter"] = None


class _TagFilter(logging.Filter):
    """Gives untagged records an empty ``log_tag`` so the formatters never fail."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def log_dir() -> Path:
    return get_data_dir() / "logs"


def attach_log_file(name: str = "server") -> Path:
    """Attach a file handler writing to ``<data_dir>/logs/attache_<name>.log``.

    Replaces any file handler attached earlier.
    """
    directory = log_dir()
    directory.mkdir(parents=True, exist_ok=True)

    log_file = directory / f"attache_{name}.log"

    logger = get_logger()
    logger.handlers = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(file_handler)

    logger.info("=" * 60)
    logger.info("Log started at %s", datetime.now().isoformat())
    logger.info("Log file: %s", log_file)
    return log_file


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console logging for the ``attache`` logger.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.

    Returns:
        Configured logger instance.
    """
    global _tag_filter

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    logger.propagate = False

    # Clear existing handlers (in case of re-init)
    logger.handlers.clear()

    if _tag_filter is None:
        _tag_filter = _TagFilter()
    logger.addFilter(_tag_filter)

    import config as _config
    console_format = _config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "full":
            console_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the package logger, creating a default console setup if needed."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        return setup_logging(verbose=False)
    return logger


def log_error(
    message: str,
    exc: Optional[BaseException] = None,
    context: Optional[dict] = None,
    bus=None,
) -> None:
    """Log an error with full details including stack trace.

    Routes through the EventBus when one is given; the DebugLogListener
    subscribed on it writes the record to the logger. Without a bus the
    record goes straight to the logger.

    Args:
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, args, etc.)
        bus: Optional EventBus to emit an ``error_log`` event on
    """
    lines = [message]

    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")

    if exc is not None:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        lines.append("Stack trace:")
        lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    full_message = "\n".join(lines)

    if bus is None:
        get_logger().error(full_message, extra=tagged("error"))
        return

    from .event_bus import ERROR_LOG
    bus.emit(ERROR_LOG, level="error", summary=full_message,
             data={"short": message, "context": context or {}})
