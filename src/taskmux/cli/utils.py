"""CLI utilities for output formatting, bootstrapping and error handling."""

import dataclasses
import json
import sys
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Any

import click
from pydantic import BaseModel

from ..config import load_config
from ..core.context import RuntimeContext
from ..utils.logging import (
    LogContext,
    OrchestrationInterrupted,
    TaskmuxError,
    ValidationError,
    get_logger,
    setup_logging,
)

logger = get_logger(__name__, LogContext.CLI)


def build_context(ctx: click.Context) -> RuntimeContext:
    """Load configuration, configure logging and build the runtime context once."""
    obj = ctx.ensure_object(dict)
    if obj.get("runtime") is not None:
        return obj["runtime"]

    config = load_config(obj.get("config"), obj.get("cli_overrides"))
    runtime = RuntimeContext(config)
    obj["log_file"] = runtime.log_file

    verbose = bool(obj.get("verbose"))
    setup_logging(
        log_level="DEBUG" if verbose else config.log_level,
        log_file=runtime.log_file,
        enable_structured=True,
        enable_console=True,
        console_level="DEBUG" if verbose else "WARNING",
    )
    obj["runtime"] = runtime
    return runtime


def error_handler(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator mapping taskmux errors to messages and exit codes."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except OrchestrationInterrupted as e:
            click.echo(click.style(f"Interrupted: {e.message}", fg="yellow"), err=True)
            for error in e.errors:
                click.echo(f"  cleanup error: {error}", err=True)
            sys.exit(e.exit_code)
        except ValidationError as e:
            click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
            sys.exit(1)
        except TaskmuxError as e:
            logger.error("Command failed", exception=e, **_safe_context(e.context))
            click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
            sys.exit(1)
        except (click.exceptions.Exit, click.Abort, click.ClickException):
            raise
        except Exception as e:
            logger.critical("Unexpected error", exception=e)
            log_file = _current_log_file()
            hint = f" See {log_file} for details." if log_file else ""
            click.echo(
                click.style(f"Unexpected internal error.{hint}", fg="red"), err=True
            )
            sys.exit(1)

    return wrapper


def _safe_context(context: dict[str, Any]) -> dict[str, Any]:
    # LogRecord reserves a few attribute names; keep extras out of their way.
    return {f"error_{key}": value for key, value in context.items()}


def _current_log_file() -> Path | None:
    ctx = click.get_current_context(silent=True)
    if ctx is None or not ctx.obj:
        return None
    return ctx.find_root().obj.get("log_file")


def success_message(message: str) -> None:
    """Display a success message."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def warning_message(message: str) -> None:
    click.echo(click.style(f"! {message}", fg="yellow"), err=True)


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, pydantic models, enums and paths to JSON types."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def output_json(data: Any) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(to_jsonable(data), indent=2))


def output_table(headers: list[str], rows: list[list[str]]) -> None:
    """Output data as a formatted table."""
    if not rows:
        click.echo("No data to display")
        return

    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(col_widths):
                col_widths[i] = max(col_widths[i], len(str(cell)))

    header_row = " | ".join(h.ljust(w) for h, w in zip(headers, col_widths))
    click.echo(header_row)
    click.echo("-" * len(header_row))

    for row in rows:
        click.echo(" | ".join(str(cell).ljust(w) for cell, w in zip(row, col_widths)))


def format_output(
    ctx: click.Context, data: Any, human_format_func: Callable[[Any], None]
) -> None:
    """Format output based on context (JSON or human-readable)."""
    if ctx.find_root().obj.get("json"):
        output_json(data)
    else:
        human_format_func(data)
