"""Logging helpers for batch orchestration and teardown."""

from typing import Any

from ..utils.logging import ContextualLogger
from .models import CleanupReport, OrchestrationResult


def log_batch_start(
    logger: ContextualLogger, batch_id: str, task_count: int, source: Any = None
) -> None:
    """Log the start of a batch orchestration."""
    logger.info(
        "Starting session orchestration",
        batch_id=batch_id,
        task_count=task_count,
        source=str(source) if source else None,
    )


def log_batch_summary(logger: ContextualLogger, result: OrchestrationResult) -> None:
    """Log the outcome of a batch orchestration."""
    summary = result.summary
    message = (
        f"Session orchestration completed - {result.batch_id} "
        f"(total: {summary.total}, success: {summary.success}, "
        f"failed: {summary.failed}, skipped: {summary.skipped})"
    )
    if summary.failed:
        logger.warning(message, batch_id=result.batch_id, errors=summary.errors)
    else:
        logger.info(message, batch_id=result.batch_id)


def log_cleanup_report(logger: ContextualLogger, report: CleanupReport) -> None:
    """Log the outcome of a batch cleanup."""
    if report.errors:
        logger.warning(
            f"Cleanup finished with errors - {report.batch_id}",
            batch_id=report.batch_id,
            stopped_sessions=report.stopped_sessions,
            workspace_removed=report.workspace_removed,
            errors=report.errors,
        )
    else:
        logger.info(
            f"Cleanup completed - {report.batch_id}",
            batch_id=report.batch_id,
            stopped_sessions=report.stopped_sessions,
            workspace_removed=report.workspace_removed,
        )


def log_step_failure(
    logger: ContextualLogger, operation: str, step: str, target: str, error: BaseException
) -> None:
    """Log one failed step of a multi-step operation that keeps going."""
    logger.error(
        f"{operation} step failed - {step} ({target})",
        exception=error,
        operation=operation,
        step=step,
        target=target,
    )
