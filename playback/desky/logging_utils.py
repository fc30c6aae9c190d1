"""
Logging utilities for structured logging
"""

import logging
import json
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED = frozenset((
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message', 'asctime',
))

_SECRET_KEYS = ("access_token", "refresh_token", "client_secret", "code")
_SECRET_PATTERN = re.compile(
    r"\b((?:%s)=)([^&\s]+)" % "|".join(_SECRET_KEYS)
)


def redact(text: str) -> str:
    """Mask secret query/form values in a message"""
    return _SECRET_PATTERN.sub(r"\1***", text)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields from record
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)


class DeskyLogFilter(logging.Filter):
    """Masks token material before any handler sees the record"""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact(arg) if isinstance(arg, str) else arg for arg in record.args)
        for key in _SECRET_KEYS:
            if key in record.__dict__ and record.__dict__[key]:
                record.__dict__[key] = "***"
        return True


def setup_logging(log_level: str = "INFO", log_format: str = "text",
                  log_file: Optional[str] = None) -> None:
    """
    Setup logging for the Desky client.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ("json" or "text")
        log_file: Optional log file path
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    if log_format.lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(DeskyLogFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(DeskyLogFilter())
        root_logger.addHandler(file_handler)

    logging.getLogger('spotipy').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_state_change(logger: logging.Logger, old_state: str, new_state: str, **kwargs) -> None:
    """
    Log session state changes.

    Args:
        logger: Logger instance
        old_state: Previous state
        new_state: New state
        **kwargs: Additional context
    """
    logger.info(
        f"Session state change: {old_state} -> {new_state}",
        extra={
            "event_type": "state_change",
            "old_state": old_state,
            "new_state": new_state,
            **kwargs
        }
    )


def log_token_event(logger: logging.Logger, event: str, **kwargs) -> None:
    logger.info(
        f"Token event: {event}",
        extra={
            "event_type": "token",
            "token_action": event,
            **kwargs
        }
    )


def log_error(logger: logging.Logger, error: Exception,
              context: Optional[Dict[str, Any]] = None) -> None:
    """
    Log errors with context.

    Args:
        logger: Logger instance
        error: Exception that occurred
        context: Additional context
    """
    logger.error(
        f"Error occurred: {str(error)}",
        extra={
            "event_type": "error",
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context or {}
        },
        exc_info=error
    )
