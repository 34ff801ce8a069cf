#!/usr/bin/env python3
"""
OBSWS Logging Configuration

Centralized logging setup for consistent formatting across the client.
Module loggers carry no output handlers of their own, so an application that
imports the client keeps control of logging. configure_root_logging() installs
the console handler (coloured on a terminal) and, when OBSWS_LOG_FILE is set,
a log file.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting...")
    logger.error("Request failed", extra={"request_id": "1f0c...", "op": 6})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # Protocol context passed through ``extra=``
        context = []

        if hasattr(record, 'endpoint'):
            context.append(f"endpoint={record.endpoint}")
        if hasattr(record, 'op'):
            context.append(f"op={record.op}")
        if hasattr(record, 'request_id'):
            context.append(f"req={str(record.request_id)[:8]}")
        if hasattr(record, 'event_type'):
            context.append(f"event={record.event_type}")

        message = super().format(record)
        if context:
            return f"[{' '.join(context)}] {message}"
        return message


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Client starting")

        # With context
        logger.warning("Unknown response id", extra={
            "request_id": "0d6c6c0e-...",
            "op": 7,
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Library loggers only get a level; records propagate to the host's handlers"""

    resolved = _get_log_level(level)
    if resolved is not None:
        logger.setLevel(resolved)

    # Silent unless the application configures logging
    if not any(isinstance(h, logging.NullHandler) for h in logger.handlers):
        logger.addHandler(logging.NullHandler())


def _get_log_level(level: Optional[str] = None) -> Optional[int]:
    """Determine appropriate log level, None to inherit from the parent"""

    level = level or os.getenv('OBSWS_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else None


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_file: Path) -> None:
    """Add file handler writing to ``log_file``"""

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stderr must be a terminal
    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    # Windows-specific check
    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

    return True
# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    resolved = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    _add_console_handler(root_logger)
    log_file = os.getenv('OBSWS_LOG_FILE')
    if log_file:
        _add_file_handler(root_logger, Path(log_file))

    for name in _loggers_configured:
        logging.getLogger(name).setLevel(resolved)


def log_frame(logger: logging.Logger, level: str, message: str,
              envelope: Optional[Dict[str, Any]] = None,
              **context: Any) -> None:
    """
    Log a protocol frame with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        envelope: ``{"op": ..., "d": {...}}`` frame dict for automatic context extraction
        **context: Additional context fields

    Example:
        log_frame(logger, "debug", "Received frame", envelope=frame.to_dict())
    """

    extra_context: Dict[str, Any] = {}

    # Extract context from the frame
    if envelope:
        extra_context['op'] = envelope.get('op')
        data = envelope.get('d')
        if isinstance(data, dict):
            if 'requestId' in data:
                extra_context['request_id'] = data['requestId']
            if 'eventType' in data:
                extra_context['event_type'] = data['eventType']

    # Add additional context
    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
