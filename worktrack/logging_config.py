"""
WorkTrack Notify - Centralized Logging Configuration
Supports both interactive (plain text) and machine-readable (JSON) logging
"""

import logging
import sys
import json
import traceback
from datetime import datetime, timezone
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from contextvars import ContextVar


# Context variables for delivery tracing
user_id_var: ContextVar[str] = ContextVar('user_id', default='')
channel_var: ContextVar[str] = ContextVar('channel', default='')


def get_user_id() -> str:
    """Get current user ID from context"""
    return user_id_var.get() or ''


def set_user_id(user_id: str) -> None:
    """Set user ID in context"""
    user_id_var.set(user_id)


def get_channel() -> str:
    """Get current delivery channel (stream, poll, inbox) from context"""
    return channel_var.get() or ''


def set_channel(channel: str) -> None:
    """Set delivery channel in context"""
    channel_var.set(channel)


_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName', 'user_id', 'channel',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging
    One object per line, easy to feed into log aggregation tools
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        user_id = get_user_id()
        if user_id:
            log_data["user_id"] = user_id

        channel = get_channel()
        if channel:
            log_data["channel"] = channel

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        # Add extra fields from record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    """
    Formatter that includes context variables (user_id, channel)
    Used for interactive runs with readable output
    """

    def format(self, record: logging.LogRecord) -> str:
        record.user_id = get_user_id() or '-'
        record.channel = get_channel() or '-'

        return super().format(record)


class WorkTrackLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_request(self, method: str, path: str, status_code: int,
                    duration_ms: float, **kwargs) -> None:
        """Log collaborator API call details"""
        self.debug(
            f"HTTP {method} {path} - {status_code} ({duration_ms:.2f}ms)",
            extra={
                "event_type": "http_request",
                "http_method": method,
                "http_path": path,
                "http_status": status_code,
                "duration_ms": duration_ms,
                **kwargs
            }
        )

    def log_delivery(self, notification_id: Any, channel: str,
                     platform: bool, **kwargs) -> None:
        """Log a presented notification"""
        self.info(
            f"Delivered notification {notification_id} via {channel}" +
            (" (+platform)" if platform else ""),
            extra={
                "event_type": "delivery",
                "notification_id": notification_id,
                "delivery_channel": channel,
                "platform_notification": platform,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: str = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )


def _get_logger() -> WorkTrackLogger:
    logging.setLoggerClass(WorkTrackLogger)
    try:
        base = logging.getLogger("worktrack")
    finally:
        logging.setLoggerClass(logging.Logger)
    base.__class__ = WorkTrackLogger  # Ensure it's our custom class
    return base


logger: WorkTrackLogger = _get_logger()


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Optional[str] = None
) -> WorkTrackLogger:
    """Configure the worktrack logger for an interactive or headless run"""

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if json_logs:
        formatter: logging.Formatter = JSONFormatter()
        file_formatter: logging.Formatter = formatter
    else:
        simple_format = "%(levelname)-8s | %(message)s"
        detailed_format = (
            "%(asctime)s | %(levelname)-8s | "
            "[%(user_id)s] [%(channel)s] | "
            "%(funcName)s:%(lineno)d | %(message)s"
        )
        formatter = ContextualFormatter(simple_format)
        file_formatter = ContextualFormatter(detailed_format)

    # Logs go to stderr so they never mix with rendered tables
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logger.level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=5242880,  # 5MB
            backupCount=3
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger.debug(
        "Logging initialized",
        extra={"log_level": level, "json_logging": json_logs}
    )

    return logger


__all__ = [
    'logger',
    'setup_logging',
    'get_user_id',
    'set_user_id',
    'get_channel',
    'set_channel',
    'JSONFormatter',
    'ContextualFormatter',
    'WorkTrackLogger',
]
