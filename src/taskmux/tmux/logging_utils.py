"""Logging helpers for multiplexer operations."""

from typing import Any

from ..utils.logging import ContextualLogger


def log_session_operation(
    logger: ContextualLogger,
    operation: str,
    session_name: str,
    status: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Log session operation."""
    message = f"Session {operation} {status} - {session_name}"
    extra = dict(context or {})

    if status == "error":
        logger.error(message, operation=operation, session_name=session_name, **extra)
    elif status == "skipped":
        logger.debug(message, operation=operation, session_name=session_name, **extra)
    else:
        logger.info(message, operation=operation, session_name=session_name, **extra)


def log_session_list(logger: ContextualLogger, names: list[str], prefix: str) -> None:
    """Log session listing."""
    logger.debug(
        f"Sessions listed - count: {len(names)}", prefix=prefix, sessions=names
    )


def log_orphaned_sessions(logger: ContextualLogger, orphaned: list[str]) -> None:
    """Log sessions carrying our prefix that no record owns."""
    if orphaned:
        logger.warning(
            f"Orphaned sessions detected - count: {len(orphaned)}", sessions=orphaned
        )
    else:
        logger.debug("No orphaned sessions found")


def log_keys_sent(logger: ContextualLogger, session_name: str, command: str) -> None:
    """Log a command typed into a session."""
    logger.debug(f"Keys sent - {session_name}", session_name=session_name, command=command)
