"""Top-level session lifecycle: create, attach, stop, delete and list.

The controller composes the registry, workspace manager, multiplexer
service and orchestrator. Multi-step teardown collects every step's error
instead of stopping at the first one, and a batch interrupted by SIGINT or
SIGTERM is cleaned up before the interruption is reported.
"""

import asyncio
import shlex
import signal
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from ..integrations.tools import SubprocessToolClient, ToolClient
from ..storage.models import (
    AgentRecord,
    AgentStatus,
    RecordStatus,
    SessionRecord,
    TaskReference,
)
from ..storage.registry import SessionRegistry
from ..tmux.logging_utils import log_orphaned_sessions
from ..tmux.service import MultiplexerService
from ..utils.logging import (
    LogContext,
    OrchestrationInterrupted,
    SessionError,
    ToolError,
    ValidationError,
)
from .context import RuntimeContext
from .git_operations import WorkspaceManager
from .launcher import AgentLauncher
from .logging_utils import log_step_failure
from .models import (
    CleanupReport,
    LaunchStatus,
    OrchestrationResult,
    ParseMetadata,
    SessionState,
    Task,
)
from .naming import branch_name_for, is_ticket_id, sanitize_batch_id
from .orchestrator import SessionOrchestrator
from .task_parser import TaskSpecParser

T = TypeVar("T")

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)
AGENT_CAPABILITIES = ["code-generation", "file-modification", "testing"]
DEFAULT_STARTER_TASKS = (
    "Analyze requirements",
    "Implement solution",
    "Write tests",
    "Review and refine",
)


@dataclass
class CreateOptions:
    """Options for creating a single session."""

    tasks: list[str] = field(default_factory=list)
    branch: str | None = None
    enable_multiplexer: bool = True
    enrich: bool = True


@dataclass
class DeleteReport:
    """What a delete did and what went wrong along the way."""

    id: str
    found: bool = True
    steps: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class SessionView:
    """One row of the merged registry/multiplexer listing."""

    id: str
    kind: str
    status: str
    branch: str | None = None
    workspace_path: str | None = None
    multiplexer_name: str | None = None
    active: bool = False
    parent: str | None = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleController:
    """Create, attach, stop and delete sessions and batches."""

    def __init__(
        self,
        context: RuntimeContext,
        registry: SessionRegistry | None = None,
        workspaces: WorkspaceManager | None = None,
        multiplexer: MultiplexerService | None = None,
        parser: TaskSpecParser | None = None,
        orchestrator: SessionOrchestrator | None = None,
        launcher: AgentLauncher | None = None,
        tool_client: ToolClient | None = None,
    ):
        self.context = context
        self.config = context.config
        self.codec = context.session_codec
        self.logger = context.get_logger(__name__, LogContext.LIFECYCLE)

        self.registry = registry or SessionRegistry(context)
        self.workspaces = workspaces or WorkspaceManager(context)
        self.multiplexer = multiplexer or MultiplexerService(context)
        self.parser = parser or TaskSpecParser(context)
        self.orchestrator = orchestrator or SessionOrchestrator(
            context, self.workspaces, self.multiplexer
        )
        self.launcher = launcher or AgentLauncher(context, self.multiplexer)
        self.tool_client = tool_client or SubprocessToolClient(context)

        self._guarded_task: asyncio.Future | None = None
        self._received_signal: int | None = None

    async def create(
        self, session_id: str, options: CreateOptions | None = None
    ) -> SessionRecord:
        """Create a workspace, registry record and optional tmux session.

        If a later step fails, the earlier ones are undone before the error
        propagates.

        Raises:
            ValidationError: If the id is invalid or already registered
            ResourceError: If the workspace cannot be created
        """
        options = options or CreateOptions()
        session_id = sanitize_batch_id(session_id)

        if await self.registry.get(session_id) is not None:
            raise ValidationError(
                f"Session {session_id} already exists", {"session_id": session_id}
            )

        self.logger.info("Creating session", session_id=session_id)
        branch = options.branch or branch_name_for(session_id, self.config.branch_prefix)
        workspace = await self.workspaces.create(session_id, branch)

        registered = False
        try:
            record = SessionRecord(
                id=session_id,
                branch=workspace.branch_name,
                worktree_path=str(workspace.path),
                status=RecordStatus.ACTIVE,
                agents=[self._agent_placeholder(session_id)],
                tasks=[
                    TaskReference(id=f"task-{index}", title=title)
                    for index, title in enumerate(options.tasks, start=1)
                ],
                metadata={"kind": "session"},
            )
            if options.enrich and is_ticket_id(session_id):
                await self._enrich(record)

            await self.registry.save(record)
            registered = True

            await asyncio.to_thread(self._write_session_files, record)

            if options.enable_multiplexer:
                name = self.codec.encode(session_id)
                await self.multiplexer.new_session(
                    name, workspace.path, environment={"TASKMUX_SESSION_ID": session_id}
                )
        except Exception as e:
            self.logger.error(
                "Failed to create session, rolling back", exception=e, session_id=session_id
            )
            await self._rollback_create(session_id, registered)
            raise

        self.logger.info("Session created", session_id=session_id, branch=record.branch)
        return record

    async def _rollback_create(self, session_id: str, registered: bool) -> None:
        if registered:
            try:
                await self.registry.remove(session_id)
            except Exception as e:
                log_step_failure(self.logger, "rollback", "remove_record", session_id, e)
        try:
            await self.workspaces.remove(session_id)
        except Exception as e:
            log_step_failure(self.logger, "rollback", "remove_workspace", session_id, e)

    def _agent_placeholder(self, session_id: str) -> AgentRecord:
        command = shlex.split(self.config.agent_command) or ["agent"]
        return AgentRecord(
            id=f"agent_{session_id}",
            name=Path(command[0]).name,
            status=AgentStatus.STARTING,
            capabilities=list(AGENT_CAPABILITIES),
        )

    async def _enrich(self, record: SessionRecord) -> None:
        """Attach issue details for ticket-like ids. Failures are ignored."""
        server = self.config.issue_tool_server
        if not server:
            return
        try:
            result = await self.tool_client.call(
                server, self.config.issue_tool_name, {"issueKey": record.id}
            )
        except ToolError as e:
            self.logger.warning(
                "Failed to enrich session with issue details",
                session_id=record.id,
                error=str(e),
            )
            return
        record.metadata["issue"] = result.data
        self.logger.info("Session enriched with issue details", session_id=record.id)

    def _write_session_files(self, record: SessionRecord) -> None:
        state_dir = Path(record.worktree_path) / self.config.state_dir
        state_dir.mkdir(parents=True, exist_ok=True)
        (state_dir / "session.json").write_text(
            record.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        (state_dir / "tasks.md").write_text(render_starter_tasks(record), encoding="utf-8")

    async def create_batch(
        self,
        task_doc_path: str | Path,
        batch_id: str | None = None,
        launch: bool | None = None,
    ) -> OrchestrationResult:
        """Parse a task document and orchestrate one session per task.

        Orchestration and registration of the batch run under the interrupt
        guard; agents are launched only for a registered batch.

        Raises:
            ValidationError: If the document is missing or the batch exists
            OrchestrationInterrupted: If SIGINT/SIGTERM arrived; the batch was cleaned up
        """
        tasks, metadata = await asyncio.to_thread(self.parser.parse, task_doc_path)
        batch_id = self.orchestrator.resolve_batch_id(batch_id, metadata)

        if await self.registry.get(batch_id) is not None:
            raise ValidationError(
                f"Batch {batch_id} already exists", {"batch_id": batch_id}
            )

        result, record = await self.run_guarded(
            batch_id, self._orchestrate_and_register(tasks, metadata, batch_id)
        )

        should_launch = self.config.launch_agents if launch is None else launch
        if should_launch:
            result.launch_results = await self.launcher.launch_all(result.sessions)
            launched = {
                r.session_id
                for r in result.launch_results
                if r.status == LaunchStatus.SUCCESS
            }
            if launched:
                record.agents = [
                    AgentRecord(
                        id=f"agent_{session_id}",
                        name=self._agent_placeholder(session_id).name,
                        status=AgentStatus.RUNNING,
                        tmux_pane=self.codec.encode_id(session_id),
                        capabilities=list(AGENT_CAPABILITIES),
                    )
                    for session_id in sorted(launched)
                ]
                await self.registry.save(record)

        return result

    async def _orchestrate_and_register(
        self, tasks: list[Task], metadata: ParseMetadata | None, batch_id: str
    ) -> tuple[OrchestrationResult, SessionRecord | None]:
        result = await self.orchestrator.orchestrate(
            tasks, metadata, batch_id, should_stop=self.interrupt_requested
        )
        if self.interrupt_requested():
            return result, None

        record = build_batch_record(result, metadata)
        try:
            await self.registry.save(record)
        except Exception as e:
            self.logger.error(
                "Failed to register batch, cleaning up", exception=e, batch_id=batch_id
            )
            await self.orchestrator.cleanup(batch_id)
            raise
        return result, record

    async def run_guarded(self, batch_id: str, operation: Awaitable[T]) -> T:
        """Await ``operation`` with SIGINT/SIGTERM turned into a batch cleanup.

        The first signal only sets a flag that ``interrupt_requested``
        reports, so a git or tmux call running in a worker thread finishes
        before anything is torn down. A second signal cancels the operation.
        Either way the batch is cleaned up once the operation has ended and
        ``OrchestrationInterrupted`` is raised.
        """
        loop = asyncio.get_running_loop()
        self._received_signal = None
        self._guarded_task = asyncio.ensure_future(operation)

        installed = []
        for signum in INTERRUPT_SIGNALS:
            try:
                loop.add_signal_handler(signum, self._interrupt, signum)
                installed.append(signum)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                self.logger.debug("Signal handler not installed", signal=signum, error=str(e))

        try:
            try:
                outcome = await self._guarded_task
            except asyncio.CancelledError:
                if self._received_signal is None:
                    raise

            signum = self._received_signal
            if signum is None:
                return outcome

            self.logger.warning(
                "Orchestration interrupted, cleaning up", batch_id=batch_id, signal=signum
            )
            report = await self._cleanup_interrupted(batch_id)
            raise OrchestrationInterrupted(signum, batch_id, report.errors)
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)
            self._guarded_task = None

    def interrupt_requested(self) -> bool:
        return self._received_signal is not None

    def _interrupt(self, signum: int) -> None:
        if self._received_signal is None:
            self._received_signal = signum
            self.logger.warning(
                "Interrupt received, stopping after the current step", signal=signum
            )
            return
        if self._guarded_task is not None and not self._guarded_task.done():
            self.logger.warning("Second interrupt received, cancelling", signal=signum)
            self._guarded_task.cancel()

    async def _cleanup_interrupted(self, batch_id: str) -> CleanupReport:
        report = await self.orchestrator.cleanup(batch_id)
        try:
            await self.registry.remove(batch_id)
        except Exception as e:
            log_step_failure(self.logger, "interrupt", "remove_record", batch_id, e)
            report.errors.append(f"Failed to remove record {batch_id}: {e}")
        return report

    async def _owning_record(self, session_id: str) -> tuple[SessionRecord | None, bool]:
        """Record owning ``session_id`` and whether the id is a live task session."""
        record = await self.registry.get(session_id)
        if record is not None:
            return record, False

        parsed = self.codec.parse_session_id(session_id)
        if parsed is None or parsed[1] is None:
            return None, False

        active = await self.multiplexer.has_session(self.codec.encode_id(session_id))
        batch = await self.registry.get(parsed[0])
        if batch is not None and (active or session_id in batch.task_sessions):
            return batch, active
        return None, active

    async def attach(self, session_id: str) -> SessionRecord:
        """Mark the owning record active and return it.

        The record is only updated once a live tmux session is confirmed.

        Raises:
            ValidationError: If the id is neither registered nor a task session of a registered batch
            SessionError: If no live session belongs to the id
        """
        record, _ = await self._owning_record(session_id)
        if record is None:
            raise ValidationError(
                f"Session {session_id} not found", {"session_id": session_id}
            )
        await self.multiplexer_name(session_id)

        record.last_active = utc_now()
        record.status = RecordStatus.ACTIVE
        await self.registry.save(record)
        self.logger.info("Session attached", session_id=session_id, record_id=record.id)
        return record

    async def multiplexer_name(self, session_id: str) -> str:
        """Live tmux session to attach to for ``session_id``.

        Raises:
            SessionError: If no live session belongs to the id
        """
        candidates = [self.codec.encode_id(session_id)]
        record = await self.registry.get(session_id)
        if record is not None:
            candidates += [self.codec.encode_id(t) for t in record.task_sessions]

        for name in candidates:
            if await self.multiplexer.has_session(name):
                return name
        raise SessionError(
            f"No live tmux session for {session_id}", {"session_id": session_id}
        )

    async def stop(self, session_id: str) -> None:
        """Kill the sessions, then mark the record stopped. Gone sessions are fine.

        A record is left unchanged when a kill fails.

        Raises:
            ValidationError: If the id is neither registered nor active
            SessionError: If tmux failed to kill a live session
        """
        record = await self.registry.get(session_id)
        if record is not None:
            errors = await self.orchestrator.stop_all(session_id)
            if errors:
                raise SessionError(
                    f"Failed to stop {session_id}: {'; '.join(errors)}",
                    {"session_id": session_id, "errors": errors},
                )
            record.status = RecordStatus.STOPPED
            record.last_active = utc_now()
            await self.registry.save(record)
            self.logger.info("Session stopped", session_id=session_id)
            return

        owner, active = await self._owning_record(session_id)
        if not active and owner is None:
            raise ValidationError(
                f"Session {session_id} not found", {"session_id": session_id}
            )
        await self.orchestrator.stop(session_id)
        self.logger.info("Task session stopped", session_id=session_id)

    async def delete(
        self,
        session_id: str,
        keep_workspace: bool = False,
        keep_session: bool = False,
    ) -> DeleteReport:
        """Stop, remove the workspace and unregister. Every step is attempted.

        An unknown id gives ``found=False``; it is not an error.
        """
        report = DeleteReport(id=session_id)
        record = await self.registry.get(session_id)

        if record is None:
            return await self._delete_task_session(session_id, keep_session, report)

        if not keep_session:
            try:
                errors = await self.orchestrator.stop_all(session_id)
            except Exception as e:
                log_step_failure(self.logger, "delete", "stop", session_id, e)
                report.errors.append(f"stop: {e}")
            else:
                report.errors.extend(f"stop: {error}" for error in errors)
                if not errors:
                    report.steps.append("stop")

        if not keep_workspace:
            try:
                await self.workspaces.remove(session_id)
                report.steps.append("remove_workspace")
            except Exception as e:
                log_step_failure(self.logger, "delete", "remove_workspace", session_id, e)
                report.errors.append(f"remove_workspace: {e}")

        try:
            await self.registry.remove(session_id)
            report.steps.append("remove_record")
        except Exception as e:
            log_step_failure(self.logger, "delete", "remove_record", session_id, e)
            report.errors.append(f"remove_record: {e}")

        if report.errors:
            self.logger.warning(
                "Session deleted with errors", session_id=session_id, errors=report.errors
            )
        else:
            self.logger.info("Session deleted", session_id=session_id, steps=report.steps)
        return report

    async def _delete_task_session(
        self, session_id: str, keep_session: bool, report: DeleteReport
    ) -> DeleteReport:
        owner, active = await self._owning_record(session_id)
        if owner is None and not active:
            report.found = False
            self.logger.debug("Nothing to delete", session_id=session_id)
            return report

        if not keep_session:
            try:
                await self.orchestrator.stop(session_id)
                report.steps.append("stop")
            except Exception as e:
                log_step_failure(self.logger, "delete", "stop", session_id, e)
                report.errors.append(f"stop: {e}")

        if owner is not None and session_id in owner.task_sessions:
            try:
                owner.metadata["taskSessions"] = [
                    t for t in owner.task_sessions if t != session_id
                ]
                await self.registry.save(owner)
                report.steps.append("update_batch_record")
            except Exception as e:
                log_step_failure(self.logger, "delete", "update_batch_record", session_id, e)
                report.errors.append(f"update_batch_record: {e}")
        return report

    async def delete_all(self, force: bool = False) -> list[DeleteReport]:
        """Delete every registered id; with ``force`` also kill orphan sessions."""
        records = await self.registry.get_all()
        reports = [await self.delete(record.id) for record in records]

        if force:
            record_ids = {record.id for record in records}
            for active in await self.orchestrator.list_active():
                if active.batch_id in record_ids:
                    continue
                report = DeleteReport(id=active.id)
                try:
                    await self.multiplexer.kill_session(active.multiplexer_name)
                    report.steps.append("stop")
                except Exception as e:
                    log_step_failure(self.logger, "delete_all", "stop", active.id, e)
                    report.errors.append(f"stop: {e}")
                reports.append(report)

        self.logger.info(
            "Deleted all sessions",
            count=len(reports),
            failed=sum(1 for r in reports if not r.ok),
        )
        return reports

    async def list(self) -> list[SessionView]:
        """Registry records merged with live tmux sessions."""
        records = await self.registry.get_all()
        active = {a.id: a for a in await self.orchestrator.list_active()}
        record_ids = {record.id for record in records}

        views: list[SessionView] = []
        shown: set[str] = set()

        for record in records:
            live = active.get(record.id)
            views.append(
                SessionView(
                    id=record.id,
                    kind="batch" if record.is_batch else "session",
                    status=record.status.value,
                    branch=record.branch,
                    workspace_path=record.worktree_path,
                    multiplexer_name=live.multiplexer_name if live else None,
                    active=live is not None,
                )
            )
            shown.add(record.id)

            task_ids = list(record.task_sessions)
            task_ids += sorted(
                a.id
                for a in active.values()
                if a.batch_id == record.id
                and a.task_session_name is not None
                and a.id not in task_ids
            )
            for task_id in task_ids:
                live_task = active.get(task_id)
                views.append(
                    SessionView(
                        id=task_id,
                        kind="task",
                        status="running" if live_task else "stopped",
                        branch=record.branch,
                        workspace_path=record.worktree_path,
                        multiplexer_name=live_task.multiplexer_name if live_task else None,
                        active=live_task is not None,
                        parent=record.id,
                    )
                )
                shown.add(task_id)

        for active_session in active.values():
            if active_session.id in shown or active_session.batch_id in record_ids:
                continue
            views.append(
                SessionView(
                    id=active_session.id,
                    kind="orphan",
                    status="running",
                    multiplexer_name=active_session.multiplexer_name,
                    active=True,
                )
            )
        log_orphaned_sessions(self.logger, [v.id for v in views if v.kind == "orphan"])
        return views


def build_batch_record(
    result: OrchestrationResult, metadata: ParseMetadata | None
) -> SessionRecord:
    """Registry record for a finished batch orchestration."""
    summary = result.summary
    created = [
        s.id
        for s in result.sessions
        if s.status in (SessionState.CREATED, SessionState.RUNNING)
    ]
    status = (
        RecordStatus.FAILED if summary.failed and not summary.success else RecordStatus.ACTIVE
    )
    return SessionRecord(
        id=result.batch_id,
        branch=result.workspace.branch_name,
        worktree_path=str(result.workspace.path),
        status=status,
        tasks=[
            TaskReference(
                id=s.task.id,
                title=s.task.name,
                description=s.task.description,
                status=s.task.status.value,
                priority=s.task.priority.value,
                session_name=s.task.session_name,
                dependencies=list(s.task.context.dependencies),
                estimated_time=s.task.metadata.estimated_time,
            )
            for s in result.sessions
        ],
        metadata={
            "kind": "batch",
            "taskSessions": created,
            "sourceDocument": str(metadata.file_path) if metadata else None,
            "summary": {
                "total": summary.total,
                "success": summary.success,
                "failed": summary.failed,
                "skipped": summary.skipped,
                "errors": list(summary.errors),
            },
        },
    )


def render_starter_tasks(record: SessionRecord) -> str:
    """Starter task document written into a new session's workspace."""
    lines = [f"# {record.id}", ""]

    issue = record.metadata.get("issue")
    if isinstance(issue, dict):
        title = issue.get("title") or issue.get("summary")
        if title:
            lines += [f"## {title}", ""]
        for label in ("priority", "status"):
            if issue.get(label):
                lines.append(f"**{label.capitalize()}:** {issue[label]}")
        if issue.get("description"):
            lines += ["", "### Description", str(issue["description"])]
        lines.append("")

    lines.append("## Tasks")
    titles = [task.title for task in record.tasks] or list(DEFAULT_STARTER_TASKS)
    lines += [f"- [ ] {title}" for title in titles]
    return "\n".join(lines) + "\n"
