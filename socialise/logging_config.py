"""
Socialise Logging Configuration
Structured logging with context for the API, the publish queue and the worker
"""
import logging
import sys
import json
import threading
import traceback
from datetime import datetime, timezone
from typing import Dict, Optional
from functools import wraps
import time

from .config import get_settings

# ============================================================
# LOG LEVELS
# ============================================================

_settings = get_settings()
LOG_LEVEL = _settings.log_level.upper()
LOG_FORMAT = _settings.log_format  # json or text

# ============================================================
# STRUCTURED LOGGING
# ============================================================

class StructuredLogger:
    """Logger that attaches keyword context to every record.

    ``bind(job_id=...)`` returns a view that repeats the same context on
    each call, which keeps per-job worker logs greppable.
    """

    def __init__(self, name: str, context: Optional[Dict] = None):
        self.name = name
        self.context = context or {}
        self.logger = logging.getLogger(name)

        if not self.logger.handlers:
            self.logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(StructuredFormatter() if LOG_FORMAT == "json" else TextFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def bind(self, **context) -> "StructuredLogger":
        return StructuredLogger(self.name, {**self.context, **context})

    def _log(self, level: int, message: str, context: Dict):
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, message, extra={
            "context": {**self.context, **context},
            "logger_name": self.name,
        })

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, context)

    def error(self, message: str, error: Optional[BaseException] = None, **context):
        if error is not None:
            context["error_type"] = type(error).__name__
            context["error_message"] = str(error)
            # Worker threads log after the except block, so format from the exception itself
            context["traceback"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        self._log(logging.ERROR, message, context)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": getattr(record, "logger_name", record.name),
            "message": record.getMessage(),
        }
        if record.threadName != threading.main_thread().name:
            log_data["thread"] = record.threadName

        log_data.update(getattr(record, "context", {}))
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Coloured single-line output for local development"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
    }
    DIM = "\033[90m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        short_name = getattr(record, "logger_name", record.name).rsplit(".", 1)[-1]

        line = f"{color}[{timestamp}] {record.levelname:<7} {short_name}{self.RESET} {record.getMessage()}"

        context = getattr(record, "context", None) or {}
        fields = " ".join(f"{k}={v}" for k, v in context.items() if k != "traceback")
        if fields:
            line += f" {self.DIM}({fields}){self.RESET}"
        if "traceback" in context and record.levelno >= logging.ERROR:
            line += "\n" + context["traceback"].rstrip()
        return line


# ============================================================
# FUNCTION TIMING DECORATOR
# ============================================================

def timed(logger: StructuredLogger):
    """Log how long a call took (debug) or how long it ran before raising (error)"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__name__} failed",
                    error=e,
                    function=func.__qualname__,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                raise
            logger.debug(
                f"{func.__name__} finished",
                function=func.__qualname__,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return result

        return wrapper

    return decorator


# ============================================================
# LOGGER INSTANCES
# ============================================================

api_logger = StructuredLogger("socialise.api")
queue_logger = StructuredLogger("socialise.queue")
worker_logger = StructuredLogger("socialise.worker")
publisher_logger = StructuredLogger("socialise.publisher")
db_logger = StructuredLogger("socialise.db")
