"""Batch orchestration: one workspace per batch, one tmux session per task."""

import asyncio
import shlex
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from ..tmux.service import MultiplexerService
from ..utils.logging import LogContext, SessionError, ValidationError
from .context import RuntimeContext
from .git_operations import WorkspaceManager
from .logging_utils import (
    log_batch_start,
    log_batch_summary,
    log_cleanup_report,
    log_step_failure,
)
from .models import (
    ActiveSession,
    CleanupReport,
    OrchestrationResult,
    OrchestrationSummary,
    ParseMetadata,
    Session,
    SessionState,
    Task,
    WorkspaceInfo,
)
from .naming import sanitize_batch_id

FALLBACK_BATCH_FORMAT = "session-%Y%m%dT%H%M"


class SessionOrchestrator:
    """Creates and tears down the sessions of a batch."""

    def __init__(
        self,
        context: RuntimeContext,
        workspaces: WorkspaceManager,
        multiplexer: MultiplexerService,
    ):
        self.context = context
        self.workspaces = workspaces
        self.multiplexer = multiplexer
        self.codec = context.session_codec
        self.logger = context.get_logger(__name__, LogContext.SESSION)

    def resolve_batch_id(
        self, batch_id: str | None = None, metadata: ParseMetadata | None = None
    ) -> str:
        """Pick the batch id: explicit, then the document's session name, then a timestamp.

        Raises:
            ValidationError: If an explicit id sanitizes to nothing
        """
        if batch_id:
            return sanitize_batch_id(batch_id)
        if metadata is not None and metadata.session_name:
            try:
                return sanitize_batch_id(metadata.session_name)
            except ValidationError:
                self.logger.warning(
                    "Unusable session name in task document, using timestamp",
                    session_name=metadata.session_name,
                )
        return sanitize_batch_id(datetime.now(timezone.utc).strftime(FALLBACK_BATCH_FORMAT))

    async def orchestrate(
        self,
        tasks: list[Task],
        metadata: ParseMetadata | None = None,
        batch_id: str | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> OrchestrationResult:
        """Create the batch workspace and one session per executable task.

        Session creation is sequential. A failing task is recorded as a
        failed session and never stops the tasks after it. When
        ``should_stop`` returns True, no further steps are started and the
        partial result is returned; a step already running always finishes.

        Raises:
            ResourceError: If the batch workspace cannot be created
        """
        batch_id = self.resolve_batch_id(batch_id, metadata)
        log_batch_start(
            self.logger, batch_id, len(tasks), metadata.file_path if metadata else None
        )

        workspace = await self.workspaces.create(batch_id)
        result = OrchestrationResult(
            batch_id=batch_id,
            workspace=workspace,
            summary=OrchestrationSummary(total=len(tasks)),
        )
        used_ids: set[str] = set()

        for task in tasks:
            if should_stop is not None and should_stop():
                self.logger.warning(
                    "Stop requested, no further sessions will be created",
                    batch_id=batch_id,
                    created=len(result.sessions),
                )
                break
            session = await self._orchestrate_task(task, batch_id, workspace, used_ids)
            result.sessions.append(session)

            if session.status == SessionState.STOPPED:
                result.summary.skipped += 1
            elif session.status == SessionState.FAILED:
                result.summary.failed += 1
                result.summary.errors.append(f'Task "{task.name}": {session.error}')
            else:
                result.summary.success += 1

        log_batch_summary(self.logger, result)
        return result

    async def _orchestrate_task(
        self,
        task: Task,
        batch_id: str,
        workspace: WorkspaceInfo,
        used_ids: set[str],
    ) -> Session:
        now = datetime.now(timezone.utc)
        session = Session(
            id=f"{batch_id}{self.codec.separator}{task.session_name}",
            multiplexer_name="",
            task=task,
            workspace_path=workspace.path,
            status=SessionState.FAILED,
            created_at=now,
            last_activity=now,
        )

        if not task.is_executable:
            session.status = SessionState.STOPPED
            self.logger.debug(
                "Skipping non-executable task", task_id=task.id, status=task.status.value
            )
            return session

        try:
            session.id = self.codec.session_id(batch_id, task.session_name)
            if session.id in used_ids:
                raise SessionError(
                    f"Duplicate session id {session.id} in batch {batch_id}",
                    {"session_id": session.id, "task_id": task.id},
                )
            used_ids.add(session.id)

            name = self.codec.encode(batch_id, task.session_name)
            await self.multiplexer.new_session(
                name,
                workspace.path,
                environment={"TASKMUX_SESSION_ID": session.id},
            )
            session.multiplexer_name = name
            session.status = SessionState.CREATED
        except Exception as e:
            session.error = str(e)
            self.logger.error(
                "Failed to create task session",
                exception=e,
                task_id=task.id,
                session_id=session.id,
            )
            return session

        await self._setup_session_environment(session, workspace)
        self.logger.debug(
            "Task session created", task_id=task.id, session_name=session.multiplexer_name
        )
        return session

    async def _setup_session_environment(
        self, session: Session, workspace: WorkspaceInfo
    ) -> None:
        """Print a banner into the session and drop a ready marker. Best effort."""
        task = session.task
        lines = [
            f"Session: {session.id}",
            f"Workspace: {workspace.path}",
            f"Branch: {workspace.branch_name}",
            f"Task: {task.name}",
            f"Priority: {task.priority.value}",
        ]
        if task.description != task.name:
            lines.append(f"Description: {task.description}")
        if task.context.technical_details:
            lines.append(f"Technical: {task.context.technical_details}")
        if task.context.dependencies:
            lines.append(f"Dependencies: {', '.join(task.context.dependencies)}")
        if task.context.acceptance_criteria:
            lines.append("Acceptance Criteria:")
            lines.extend(f"  - {item}" for item in task.context.acceptance_criteria)
        lines.extend(
            [
                "",
                "Session commands:",
                f"  attach: taskmux attach {session.id}",
                f"  stop:   taskmux stop {session.id}",
                "  list:   taskmux list",
            ]
        )

        try:
            await self.multiplexer.send_keys(session.multiplexer_name, "clear")
            for line in lines:
                await self.multiplexer.send_keys(
                    session.multiplexer_name, f"echo {shlex.quote(line)}"
                )
            await asyncio.to_thread(self._write_marker, workspace.path, task.session_name)
        except Exception as e:
            self.logger.warning(
                "Session environment setup failed",
                session_id=session.id,
                error=str(e),
            )

    def _write_marker(self, workspace_path: Path, task_session_name: str) -> None:
        marker = workspace_path / self.context.config.state_dir / (
            f"session-ready-{task_session_name}"
        )
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()

    async def list_active(self) -> list[ActiveSession]:
        """Live sessions carrying our prefix, decoded back into batch and task."""
        names = await self.multiplexer.list_session_names(
            f"{self.codec.prefix}{self.codec.separator}"
        )
        active = []
        for name in names:
            decoded = self.codec.decode(name)
            if decoded is None:
                continue
            batch_id, task_session_name = decoded
            active.append(
                ActiveSession(
                    id=self.codec.session_id(batch_id, task_session_name),
                    multiplexer_name=name,
                    batch_id=batch_id,
                    task_session_name=task_session_name,
                )
            )
        return active

    async def stop(self, session_id: str) -> bool:
        """Kill one session. A session that is already gone counts as stopped.

        Returns:
            True if a live session was killed
        """
        name = self.codec.encode_id(session_id)
        killed = await self.multiplexer.kill_session(name)
        self.logger.info("Session stopped", session_id=session_id, killed=killed)
        return killed

    async def stop_all(self, batch_id: str) -> list[str]:
        """Kill every session of a batch. Returns the collected errors."""
        _, errors = await self._stop_batch_sessions(batch_id)
        return errors

    async def _stop_batch_sessions(self, batch_id: str) -> tuple[list[str], list[str]]:
        related = [a for a in await self.list_active() if a.batch_id == batch_id]
        results = await asyncio.gather(
            *(self.multiplexer.kill_session(a.multiplexer_name) for a in related),
            return_exceptions=True,
        )

        stopped: list[str] = []
        errors: list[str] = []
        for active, outcome in zip(related, results):
            if isinstance(outcome, BaseException):
                log_step_failure(self.logger, "stop_all", "kill", active.id, outcome)
                errors.append(f"Failed to stop session {active.id}: {outcome}")
            else:
                stopped.append(active.id)

        self.logger.info(
            "Batch sessions stopped", batch_id=batch_id, stopped_sessions=len(stopped)
        )
        return stopped, errors

    async def cleanup(self, batch_id: str) -> CleanupReport:
        """Stop every session of a batch, then remove its workspace.

        Both steps always run; errors are collected in the report.
        """
        report = CleanupReport(batch_id=batch_id)

        try:
            stopped, errors = await self._stop_batch_sessions(batch_id)
            report.stopped_sessions.extend(stopped)
            report.errors.extend(errors)
        except Exception as e:
            log_step_failure(self.logger, "cleanup", "stop_all", batch_id, e)
            report.errors.append(f"Failed to stop sessions of {batch_id}: {e}")

        try:
            report.workspace_removed = await self.workspaces.remove(batch_id)
        except Exception as e:
            log_step_failure(self.logger, "cleanup", "remove_workspace", batch_id, e)
            report.errors.append(f"Failed to remove workspace {batch_id}: {e}")

        log_cleanup_report(self.logger, report)
        return report
