"""Starts the coding agent inside freshly created task sessions."""

import asyncio
import shlex
import shutil
from pathlib import Path

from ..tmux.service import MultiplexerService
from ..utils.logging import AgentLaunchError, LogContext
from .context import RuntimeContext
from .models import LaunchResult, LaunchStatus, Session, SessionState, Task


GUIDELINES = (
    "Follow existing code patterns and conventions",
    "Write clean, well-documented code",
    "Include appropriate tests",
    "Update documentation as needed",
)


def build_context_prompt(task: Task) -> str:
    """Markdown briefing handed to the agent for one task."""
    lines = [
        "# Development Session Context",
        "",
        f"## Current Task: {task.name}",
        f"**Priority**: {task.priority.value.upper()}",
        f"**Section**: {task.section or '-'}",
        f"**Status**: {task.status.value}",
        "",
    ]

    if task.description and task.description != task.name:
        lines += ["## Description", task.description, ""]
    if task.context.technical_details:
        lines += ["## Technical Details", task.context.technical_details, ""]
    if task.context.dependencies:
        lines += ["## Dependencies", *(f"- {d}" for d in task.context.dependencies), ""]
    if task.context.acceptance_criteria:
        lines += [
            "## Acceptance Criteria",
            *(f"- {c}" for c in task.context.acceptance_criteria),
            "",
        ]
    if task.context.notes:
        lines += ["## Additional Notes", *(f"- {n}" for n in task.context.notes), ""]
    if task.metadata.estimated_time:
        lines += [f"## Estimated Time: {task.metadata.estimated_time}", ""]
    if task.metadata.tags:
        lines += [f"## Tags: {' '.join('#' + t for t in task.metadata.tags)}", ""]

    lines += ["## Development Guidelines", *(f"- {g}" for g in GUIDELINES), ""]
    lines += [
        "You are working in an isolated git worktree; "
        "changes stay on this batch's branch until merged.",
    ]
    return "\n".join(lines)


class AgentLauncher:
    """Launches the configured agent command once per created session."""

    def __init__(self, context: RuntimeContext, multiplexer: MultiplexerService):
        self.context = context
        self.multiplexer = multiplexer
        self.config = context.config
        self.logger = context.get_logger(__name__, LogContext.LAUNCHER)

    def agent_available(self) -> bool:
        parts = shlex.split(self.config.agent_command)
        return bool(parts) and shutil.which(parts[0]) is not None

    async def launch_all(self, sessions: list[Session]) -> list[LaunchResult]:
        """Launch the agent in every usable session, one at a time."""
        self.logger.info("Launching agent in sessions", session_count=len(sessions))

        if not self.agent_available():
            self.logger.warning(
                "Agent command not found, skipping launch",
                agent_command=self.config.agent_command,
            )
            return [
                LaunchResult(
                    session_id=s.id,
                    status=LaunchStatus.SKIPPED,
                    error=f"{self.config.agent_command} not found on PATH",
                )
                for s in sessions
            ]

        results = []
        for session in sessions:
            if session.status not in (SessionState.CREATED, SessionState.RUNNING):
                results.append(
                    LaunchResult(
                        session_id=session.id,
                        status=LaunchStatus.SKIPPED,
                        error=f"Session is {session.status.value}",
                    )
                )
                continue

            try:
                results.append(await self.launch(session))
            except Exception as e:
                self.logger.error(
                    "Failed to launch agent in session", exception=e, session_id=session.id
                )
                results.append(
                    LaunchResult(
                        session_id=session.id, status=LaunchStatus.FAILED, error=str(e)
                    )
                )

        self.logger.info(
            "Agent launch completed",
            total=len(results),
            successful=sum(1 for r in results if r.status == LaunchStatus.SUCCESS),
            failed=sum(1 for r in results if r.status == LaunchStatus.FAILED),
            skipped=sum(1 for r in results if r.status == LaunchStatus.SKIPPED),
        )
        return results

    async def launch(self, session: Session) -> LaunchResult:
        """Write the context file, then start the agent in the session.

        Raises:
            AgentLaunchError: If the context file cannot be written
            SessionError: If typing into the session fails
        """
        context_file = await asyncio.to_thread(self._write_context_file, session)
        await asyncio.sleep(self.config.agent_launch_delay)

        environment = {
            "TASKMUX_SESSION_ID": session.id,
            "TASKMUX_TASK_NAME": session.task.name,
            "TASKMUX_TASK_PRIORITY": session.task.priority.value,
            "TASKMUX_WORKSPACE_PATH": str(session.workspace_path),
        }
        for key, value in environment.items():
            await self.multiplexer.send_keys(
                session.multiplexer_name, f"export {key}={shlex.quote(value)}"
            )
        await self.multiplexer.send_keys(
            session.multiplexer_name, self.build_command(context_file)
        )
        session.status = SessionState.RUNNING

        self.logger.info(
            "Agent launched", session_id=session.id, context_file=str(context_file)
        )
        return LaunchResult(
            session_id=session.id, status=LaunchStatus.SUCCESS, context_file=context_file
        )

    def build_command(self, context_file: Path) -> str:
        parts = [self.config.agent_command]
        if self.config.agent_model:
            parts.append(f"--model {shlex.quote(self.config.agent_model)}")
        parts.append(f'"$(cat {shlex.quote(str(context_file))})"')
        return " ".join(parts)

    def _write_context_file(self, session: Session) -> Path:
        context_dir = session.workspace_path / self.config.state_dir
        context_file = context_dir / f"context-{session.task.session_name}.md"
        try:
            context_dir.mkdir(parents=True, exist_ok=True)
            context_file.write_text(build_context_prompt(session.task), encoding="utf-8")
        except OSError as e:
            raise AgentLaunchError(
                f"Failed to create context file {context_file}: {e}",
                {"session_id": session.id, "context_file": str(context_file)},
            ) from e
        return context_file
