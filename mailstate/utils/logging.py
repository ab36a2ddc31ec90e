"""Logging utility for mailstate"""

import json
import logging
import re
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

from rich.logging import RichHandler

from .paths import LOGS_DIR

ROOT_LOGGER_NAME = "mailstate"


def _ensure_log_dir(log_dir: Path) -> Path:
    """Create the log directory on first use."""

    from .errors import FileSystemError

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileSystemError(f"Failed to create log directory: {log_dir}") from e

    return log_dir


## Custom JSON Formatter


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for log records."""

    # Attributes every LogRecord carries; anything else came in through `extra`.
    _RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._RESERVED
        }
        if context:
            log_entry["context"] = context

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter to add contextual information."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if "extra" not in kwargs:
            kwargs["extra"] = {}

        kwargs["extra"].update(self.extra)
        return msg, kwargs


## Log Masking


class SensitiveDataFilter(logging.Filter):
    """Logging filter that redacts credentials from records."""

    SENSITIVE_FIELDS = {
        "password",
        "passwd",
        "secret",
        "token",
        "access_token",
        "authorization",
        "credential",
    }

    PATTERN = re.compile(
        r'((?:password|passwd|secret|token|authorization)["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)',
        re.IGNORECASE,
    )

    REDACTED = "[REDACTED]"

    def mask_string(self, text: str) -> str:
        """Redact `key=value` style secrets inside a message."""

        if not text:
            return text

        return self.PATTERN.sub(lambda m: m.group(1) + self.REDACTED, text)

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Redact sensitive keys in a (possibly nested) dictionary."""

        masked = {}
        for key, value in data.items():
            if str(key).lower() in self.SENSITIVE_FIELDS:
                masked[key] = self.REDACTED
            elif isinstance(value, dict):
                masked[key] = self.mask_dict(value)
            elif isinstance(value, str):
                masked[key] = self.mask_string(value)
            else:
                masked[key] = value

        return masked

    def filter(self, record) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask_string(record.msg)

        for key, value in list(record.__dict__.items()):
            if key.lower() in self.SENSITIVE_FIELDS:
                setattr(record, key, self.REDACTED)
            elif isinstance(value, dict):
                setattr(record, key, self.mask_dict(value))

        return True


## Main Log Manager


class LogManager:
    """Manages logging configuration and provides logger instances."""

    def __init__(
        self,
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        file_logging: bool = True,
        max_file_size: int = 5_242_880,
        backup_count: int = 5,
    ):
        try:
            self.log_level = getattr(logging, log_level.upper())
        except AttributeError as e:
            raise ValueError(f"Invalid logging level: {log_level}") from e

        self.log_dir = log_dir or LOGS_DIR
        self.file_logging = file_logging
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.root_logger.setLevel(logging.DEBUG)
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Setup console and file handlers with sensitive data filtering."""

        from .errors import FileSystemError

        sensitive_filter = SensitiveDataFilter()

        self.root_logger.handlers.clear()

        console_handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(max(self.log_level, logging.WARNING))
        console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        console_handler.addFilter(sensitive_filter)
        self.root_logger.addHandler(console_handler)

        if not self.file_logging:
            return

        log_dir = _ensure_log_dir(self.log_dir)

        try:
            app_handler = RotatingFileHandler(
                log_dir / "app.log",
                maxBytes=self.max_file_size,
                backupCount=self.backup_count,
                encoding="utf-8",
            )
            event_handler = RotatingFileHandler(
                log_dir / "events.log",
                maxBytes=2_048_000,
                backupCount=3,
                encoding="utf-8",
            )
        except OSError as e:
            raise FileSystemError(f"Failed to create log file handlers: {e}") from e

        app_handler.setLevel(self.log_level)
        app_handler.setFormatter(JSONFormatter())
        app_handler.addFilter(sensitive_filter)

        event_handler.setLevel(logging.INFO)
        event_handler.setFormatter(JSONFormatter())
        event_handler.addFilter(lambda record: hasattr(record, "event_type"))
        event_handler.addFilter(sensitive_filter)

        self.root_logger.addHandler(app_handler)
        self.root_logger.addHandler(event_handler)

    def get_logger(
        self, name: Optional[str] = None, **context
    ) -> logging.Logger | ContextAdapter:
        """Get a logger under the mailstate root, optionally carrying context."""

        if not name:
            logger = self.root_logger
        elif name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
            logger = logging.getLogger(name)
        else:
            logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

        if context:
            return ContextAdapter(logger, context)

        return logger

    def set_level(self, level: str) -> None:
        """Set logging level at runtime"""

        try:
            self.log_level = getattr(logging, level.upper())
        except AttributeError as e:
            raise ValueError(f"Invalid logging level: {level}") from e

        for handler in self.root_logger.handlers:
            if isinstance(handler, RichHandler):
                handler.setLevel(max(self.log_level, logging.WARNING))
            else:
                handler.setLevel(self.log_level)

    def log_event(self, event_type: str, message: str, level: str = "INFO", **extra):
        """Log an event with specific type and extra context."""

        try:
            log_level = getattr(logging, level.upper())
        except AttributeError as e:
            raise ValueError(f"Invalid logging level: {level}") from e

        extra_dict = {"event_type": event_type}
        extra_dict.update(extra)
        self.root_logger.log(log_level, message, extra=extra_dict)


## Decorators for Logging


def log_call(func):
    """Decorator to log function entry, exit and duration at DEBUG."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        func_name = f"{func.__module__}.{func.__qualname__}"
        logger.debug(f"-> Entering {func_name}")
        start_time = datetime.now()

        try:
            result = func(*args, **kwargs)
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Exiting {func_name} (Duration: {duration:.3f}s)")
            return result

        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Error in {func_name} after {duration:.3f}s: {e}")
            raise

    return wrapper


def async_log_call(func):
    """Async variant of log_call."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        func_name = f"{func.__module__}.{func.__qualname__}"
        logger.debug(f"-> Entering {func_name} (async)")
        start_time = datetime.now()

        try:
            result = await func(*args, **kwargs)
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Exiting {func_name} (Duration: {duration:.3f}s)")
            return result

        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            logger.debug(f"<- Error in {func_name} after {duration:.3f}s: {e}")
            raise

    return wrapper


## Module-level LogManager Instance and Helper Functions

_log_manager: Optional[LogManager] = None


def init_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    file_logging: bool = True,
    max_file_size: int = 5_242_880,
    backup_count: int = 5,
) -> LogManager:
    """Initialize logging system and return LogManager instance."""

    global _log_manager

    if _log_manager is None:
        _log_manager = LogManager(
            log_level,
            log_dir=log_dir,
            file_logging=file_logging,
            max_file_size=max_file_size,
            backup_count=backup_count,
        )

    return _log_manager


def get_logger(
    name: Optional[str] = None, **context
) -> logging.Logger | ContextAdapter:
    """Get a logger instance with optional context.

    Loggers are plain children of the ``mailstate`` logger, so handlers are
    only attached once ``init_logging`` runs; until then records propagate to
    whatever the host application configured.
    """

    if _log_manager is not None:
        return _log_manager.get_logger(name, **context)

    if not name:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
    elif name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        logger = logging.getLogger(name)
    else:
        logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

    return ContextAdapter(logger, context) if context else logger


def log_event(event_type: str, message, **extra):
    """Log an event with specific type and extra context (module-level wrapper)."""

    if isinstance(message, dict):
        extra.update(message)
        message = f"Event: {event_type}"

    if _log_manager is None:
        extra_dict = {"event_type": event_type}
        extra_dict.update(extra)
        logging.getLogger(ROOT_LOGGER_NAME).info(message, extra=extra_dict)
        return

    _log_manager.log_event(event_type, message, **extra)
