import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional

# ANSI color codes
COLOR_CODES = {
    "DEBUG": "\033[36m",     # Cyan
    "INFO": "\033[32m",      # Green
    "WARNING": "\033[33m",   # Yellow
    "ERROR": "\033[31m",     # Red
    "CRITICAL": "\033[41m",  # Red background
    "RESET": "\033[0m",      # Reset
}

# ------------------ FORMATTERS ------------------


class JSONFormatter(logging.Formatter):
    """Formatter for structured (JSON) logs."""

    def __init__(self, default_context: Optional[Dict[str, str]] = None, show_environment: bool = True):
        super().__init__()
        self.default_context = default_context or {}
        self.show_environment = show_environment

    def format(self, record):
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }

        context = {**self.default_context}
        if hasattr(record, "method"):
            context["method"] = record.method
        if hasattr(record, "url"):
            context["url"] = record.url
        if self.show_environment and hasattr(record, "environment"):
            context["environment"] = record.environment

        if context:
            log_record["context"] = context

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def __init__(
        self,
        default_context: Optional[Dict[str, str]] = None,
        show_environment: bool = False,
        colored: bool = True,
    ):
        super().__init__(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.default_context = default_context or {}
        self.show_environment = show_environment
        self.colored = colored

    def format(self, record):
        levelname = record.levelname
        if self.colored and levelname in COLOR_CODES:
            record.levelname = f"\u001b[1m{COLOR_CODES[levelname]}{levelname}{COLOR_CODES['RESET']}\u001b[0m"

        try:
            base = super().format(record)
        finally:
            # other handlers share the record
            record.levelname = levelname

        context = []
        if hasattr(record, "method"):
            context.append(f"method={record.method}")
        if hasattr(record, "url"):
            context.append(f"url={record.url}")
        if self.show_environment and hasattr(record, "environment"):
            context.append(f"env={record.environment}")

        for key, value in self.default_context.items():
            context.append(f"{key}={value}")

        if context:
            base += " " + " ".join(context)
        return base


# ------------------ ADAPTERS ------------------


class EnvironmentLoggerAdapter(logging.LoggerAdapter):
    """
    A LoggerAdapter that injects 'environment' into every log record.
    """

    def __init__(self, logger, environment: str):
        super().__init__(logger, {"environment": environment})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        extra["environment"] = self.extra["environment"]
        kwargs["extra"] = extra
        return msg, kwargs


def request_extra(request) -> Dict[str, str]:
    """Logging ``extra`` fields describing ``request``."""
    return {
        "method": getattr(request, "method", "-"),
        "url": getattr(request, "original_url", None) or getattr(request, "url", "-"),
    }


# ------------------ LOGGER FACTORY ------------------


def _build_formatter(json_logs: bool, default_context, show_environment: bool, colored: bool) -> logging.Formatter:
    if json_logs:
        return JSONFormatter(default_context, show_environment)
    return TextFormatter(default_context, show_environment, colored)


def _attach_handlers(
    logger: logging.Logger,
    formatter: logging.Formatter,
    log_file: Optional[str],
    max_bytes: int,
    backup_count: int,
    to_console: bool,
) -> None:
    # Avoid duplicate handlers if logger is re-created
    if logger.handlers:
        logger.handlers.clear()

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if to_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)


class Logger:
    """
    Configurable application logger that supports JSON or text output,
    file or console handlers, and contextual metadata.

    Example:
        log = Logger("myapp", json_logs=False, environment="development")
        app = Vireo(logger=log)
    """

    def __new__(
        cls,
        name: str,
        log_file: Optional[str] = None,
        level: int = logging.INFO,
        max_bytes: int = 5_000_000,
        backup_count: int = 3,
        json_logs: bool = True,
        to_console: bool = True,
        environment: str = "production",
        default_context: Optional[Dict[str, str]] = None,
        show_environment: bool = False,
        colored_console: bool = True,
    ) -> logging.LoggerAdapter:
        """
        Returns a configured logger instance directly.
        """
        instance = super(Logger, cls).__new__(cls)
        base_logger = instance._create_logger(
            name=name,
            log_file=log_file,
            level=level,
            max_bytes=max_bytes,
            backup_count=backup_count,
            json_logs=json_logs,
            to_console=to_console,
            default_context=default_context,
            show_environment=show_environment,
            colored_console=colored_console,
        )

        # Wrap with adapter to inject environment automatically
        return EnvironmentLoggerAdapter(base_logger, environment)

    def _create_logger(
        self,
        name: str,
        log_file: Optional[str],
        level: int,
        max_bytes: int,
        backup_count: int,
        json_logs: bool,
        to_console: bool,
        default_context: Optional[Dict[str, str]],
        show_environment: bool,
        colored_console: bool,
    ) -> logging.Logger:
        """Internal method to configure and return the base logger."""
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.propagate = False

        formatter = _build_formatter(json_logs, default_context or {}, show_environment, colored_console)
        _attach_handlers(logger, formatter, log_file, max_bytes, backup_count, to_console)
        return logger


def configure_logging(
    level: int = logging.INFO,
    json_logs: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
    to_console: bool = True,
    colored_console: bool = True,
) -> logging.Logger:
    """
    Attach handlers to the "vireo" package logger.

    The framework's modules log through ``logging.getLogger(__name__)``;
    call this with ``level=logging.DEBUG`` to see registration and dispatch
    traces.
    """
    logger = logging.getLogger("vireo")
    logger.setLevel(level)

    formatter = _build_formatter(json_logs, {}, True, colored_console)
    _attach_handlers(logger, formatter, log_file, max_bytes, backup_count, to_console)
    return logger
