#!/usr/bin/env python3
"""
In-memory log handler for capturing application logs.
Provides a thread-safe circular buffer for recent log messages,
served by the admin logs endpoint.
"""

import logging
import os
from collections import deque
import threading
from datetime import datetime
from typing import List, Dict, Optional
from zoneinfo import ZoneInfo

from config.constants import DEFAULT_LOG_TIMEZONE, LOG_DATE_FORMAT, LOG_FILE, LOG_FORMAT


class LocalTimeFormatter(logging.Formatter):
    """Formatter that displays timestamps in the dashboard's timezone."""

    def __init__(self, fmt=None, datefmt=None, tz_name: str = DEFAULT_LOG_TIMEZONE):
        super().__init__(fmt, datefmt)
        self.tz = ZoneInfo(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime(LOG_DATE_FORMAT)


class InMemoryLogHandler(logging.Handler):
    """Custom logging handler that stores recent log messages in memory.

    Thread-safe circular buffer with configurable size. Useful for
    displaying logs in the admin API without file system access.
    """

    def __init__(self, maxlen=500, tz_name: str = DEFAULT_LOG_TIMEZONE):
        super().__init__()
        self.log_records = deque(maxlen=maxlen)
        self.lock = threading.Lock()
        self.setFormatter(LocalTimeFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT, tz_name=tz_name))

    def emit(self, record):
        """Store formatted log record in buffer."""
        try:
            msg = self.format(record)
            with self.lock:
                self.log_records.append({
                    'timestamp': datetime.fromtimestamp(record.created),
                    'level': record.levelname,
                    'module': record.name,
                    'message': record.getMessage(),
                    'formatted': msg
                })
        except Exception:
            self.handleError(record)

    def get_logs(self, n=None, level=None, module=None, search=None) -> List[Dict]:
        """Get recent log records with optional filtering.

        Args:
            n: Number of recent logs to return (None = all)
            level: Filter by log level (e.g., 'INFO', 'ERROR')
            module: Filter by module name (partial match)
            search: Filter by message text (case-insensitive)

        Returns:
            List of log record dictionaries
        """
        with self.lock:
            logs = list(self.log_records)

        if level:
            logs = [log for log in logs if log['level'] == level]

        if module:
            logs = [log for log in logs if module.lower() in log['module'].lower()]

        if search:
            search_lower = search.lower()
            logs = [log for log in logs if search_lower in log['message'].lower()]

        if n:
            logs = logs[-n:]

        return logs

    def clear(self):
        """Clear all log records."""
        with self.lock:
            self.log_records.clear()


# Global handler instance
_log_handler: Optional[InMemoryLogHandler] = None

# Loggers the service owns; third-party loggers keep their own configuration
APP_LOGGERS = [
    'sync_dashboard',
    'data',
    'config',
    'utils',
    '__main__',
]


def get_log_handler() -> InMemoryLogHandler:
    """Get the global in-memory log handler instance."""
    global _log_handler
    if _log_handler is None:
        _log_handler = InMemoryLogHandler(maxlen=500)
    return _log_handler


def setup_logging(level=logging.INFO, log_file: Optional[str] = LOG_FILE, tz_name: str = DEFAULT_LOG_TIMEZONE,
                  console: bool = False) -> None:
    """Setup logging for the app's loggers.

    Attaches a FileHandler (logs/app.log by default) and the in-memory
    handler to each application logger, not the root logger.

    Args:
        level: Log level (int or name, default: INFO)
        log_file: Path of the log file, None to skip file logging
        tz_name: Timezone used for timestamps
        console: Also write to stderr (CLI use)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    formatter = LocalTimeFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT, tz_name=tz_name)
    handlers: List[logging.Handler] = []

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        handlers.append(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(level)
        handlers.append(stream_handler)

    memory_handler = get_log_handler()
    memory_handler.setFormatter(formatter)
    handlers.append(memory_handler)

    for module_name in APP_LOGGERS:
        logger = logging.getLogger(module_name)

        # Remove existing handlers to avoid duplicates on repeated setup
        for h in logger.handlers[:]:
            logger.removeHandler(h)

        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
