"""
Logging and error handling framework for taskmux.

This module provides:
- Structured logging configuration
- The exception taxonomy shared by every component
- Context-aware logging utilities
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, TextIO


class LogLevel(str, Enum):
    """Log level enumeration for type safety."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogContext(str, Enum):
    """Log context categories for structured logging."""

    PARSER = "parser"
    WORKSPACE = "workspace"
    REGISTRY = "registry"
    SESSION = "session"
    LIFECYCLE = "lifecycle"
    LAUNCHER = "launcher"
    TOOLS = "tools"
    CLI = "cli"


class TaskmuxError(Exception):
    """Base exception class for all taskmux errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)


class ValidationError(TaskmuxError):
    """Missing or malformed input: task documents, unknown ids, bad names."""

    pass


class ResourceError(TaskmuxError):
    """Errors related to version-control workspaces."""

    pass


class SessionError(TaskmuxError):
    """Errors related to terminal multiplexer sessions."""

    pass


class RegistryError(TaskmuxError):
    """Errors reading or writing the session registry file."""

    pass


class ConfigurationError(TaskmuxError):
    """Errors related to configuration and setup."""

    pass


class AgentLaunchError(TaskmuxError):
    """Errors starting the external agent inside a session."""

    pass


class ToolError(TaskmuxError):
    """Errors returned by an external tool-protocol server."""

    pass


class ToolTimeoutError(ToolError):
    """A tool-protocol call did not answer within its timeout."""

    pass


class OrchestrationInterrupted(TaskmuxError):
    """A batch orchestration was interrupted by a signal and cleaned up."""

    def __init__(
        self,
        signum: int,
        batch_id: str,
        errors: list[str] | None = None,
    ):
        super().__init__(
            f"Orchestration of batch {batch_id} interrupted by signal {signum}",
            context={"signal": signum, "batch_id": batch_id, "errors": errors or []},
        )
        self.signum = signum
        self.batch_id = batch_id
        self.errors = errors or []

    @property
    def exit_code(self) -> int:
        return 128 + self.signum


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    # Attributes every LogRecord carries; anything else came in through `extra`.
    standard_fields = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "context",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "context"):
            log_data["context"] = record.context

        for key, value in record.__dict__.items():
            if key not in self.standard_fields and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ContextualLogger:
    """Logger with context management for structured logging."""

    def __init__(self, name: str, context: LogContext):
        self.logger = logging.getLogger(name)
        self.context = context.value

    def _log(
        self,
        level: int,
        message: str,
        extra_context: dict[str, Any] | None = None,
        exception: BaseException | None = None,
    ) -> None:
        """Internal logging method with context injection."""
        extra: dict[str, Any] = {"context": self.context}
        if extra_context:
            extra.update(extra_context)

        if exception is not None:
            self.logger.log(level, message, exc_info=exception, extra=extra)
        else:
            self.logger.log(level, message, extra=extra)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with context."""
        self._log(logging.WARNING, message, kwargs)

    def error(
        self, message: str, exception: BaseException | None = None, **kwargs
    ) -> None:
        """Log error message with context and optional exception."""
        self._log(logging.ERROR, message, kwargs, exception)

    def critical(
        self, message: str, exception: BaseException | None = None, **kwargs
    ) -> None:
        """Log critical message with context and optional exception."""
        self._log(logging.CRITICAL, message, kwargs, exception)


def get_logger(name: str, context: LogContext) -> ContextualLogger:
    """Get a contextual logger instance."""
    return ContextualLogger(name, context)


def setup_logging(
    log_level: str | LogLevel = LogLevel.INFO,
    log_file: Path | None = None,
    enable_structured: bool = True,
    enable_console: bool = True,
    console_level: str | LogLevel | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Setup logging configuration.

    Args:
        log_level: Minimum log level to capture
        log_file: Optional file path for structured log output
        enable_structured: Use JSON structured logging format for the file
        enable_console: Enable console output
        console_level: Separate threshold for the console handler
        stream: Console stream, stderr by default so command output stays clean
    """
    if isinstance(log_level, LogLevel):
        log_level = log_level.value
    if isinstance(console_level, LogLevel):
        console_level = console_level.value

    handlers: list[logging.Handler] = []

    if enable_console:
        console_handler = logging.StreamHandler(stream or sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        if console_level:
            console_handler.setLevel(getattr(logging, console_level.upper()))
        handlers.append(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
        except OSError as e:
            # An unwritable log location must not stop the command itself.
            sys.stderr.write(f"Warning: cannot open log file {log_file}: {e}\n")
        else:
            if enable_structured:
                file_handler.setFormatter(StructuredFormatter())
            else:
                file_handler.setFormatter(
                    logging.Formatter(
                        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                    )
                )
            handlers.append(file_handler)

    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("git").setLevel(logging.WARNING)
    logging.getLogger("libtmux").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
