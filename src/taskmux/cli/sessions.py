"""CLI commands for batches and single sessions."""

import asyncio
import os
import subprocess
from pathlib import Path

import click

from ..core.lifecycle import CreateOptions, DeleteReport, LifecycleController
from ..core.models import LaunchStatus, OrchestrationResult
from ..storage.models import SessionRecord
from .utils import (
    build_context,
    error_handler,
    format_output,
    output_table,
    success_message,
    warning_message,
)


def get_controller(ctx: click.Context) -> LifecycleController:
    return LifecycleController(build_context(ctx))


@click.command()
@click.argument("task_doc", required=False, type=click.Path(path_type=Path))
@click.option("--batch-id", help="Batch id (defaults to the document's session name)")
@click.option(
    "--launch/--no-launch",
    default=None,
    help="Launch the coding agent in each session (defaults to config)",
)
@click.pass_context
@error_handler
def run(
    ctx: click.Context,
    task_doc: Path | None,
    batch_id: str | None,
    launch: bool | None,
) -> None:
    """Create one tmux session per executable task in TASK_DOC.

    TASK_DOC defaults to the configured task file.
    """
    runtime = build_context(ctx)
    path = task_doc or runtime.project_path / runtime.config.task_file
    controller = get_controller(ctx)

    result = asyncio.run(controller.create_batch(path, batch_id=batch_id, launch=launch))

    def human_output(result: OrchestrationResult) -> None:
        summary = result.summary
        success_message(f"Batch {result.batch_id} on branch {result.workspace.branch_name}")
        click.echo(f"Workspace: {result.workspace.path}")
        click.echo(
            f"Tasks: {summary.total} total, {summary.success} created, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        for session in result.sessions:
            line = f"  {session.id:<40} {session.status.value}"
            if session.error:
                line += f"  ({session.error})"
            click.echo(line)
        for launch_result in result.launch_results:
            if launch_result.status == LaunchStatus.FAILED:
                warning_message(
                    f"Agent launch failed for {launch_result.session_id}: "
                    f"{launch_result.error}"
                )
        if summary.failed:
            warning_message(f"{summary.failed} task session(s) failed")

    format_output(ctx, result, human_output)


@click.command()
@click.argument("session_id")
@click.option("--branch", "-b", help="Branch to use (defaults to <prefix>/<id>)")
@click.option("--task", "-t", "tasks", multiple=True, help="Starter task (repeatable)")
@click.option("--no-tmux", is_flag=True, help="Do not create a tmux session")
@click.option("--no-enrich", is_flag=True, help="Skip issue lookup for ticket ids")
@click.pass_context
@error_handler
def start(
    ctx: click.Context,
    session_id: str,
    branch: str | None,
    tasks: tuple[str, ...],
    no_tmux: bool,
    no_enrich: bool,
) -> None:
    """Create a single session with its own worktree."""
    controller = get_controller(ctx)
    options = CreateOptions(
        tasks=list(tasks),
        branch=branch,
        enable_multiplexer=not no_tmux,
        enrich=not no_enrich,
    )
    record = asyncio.run(controller.create(session_id, options))

    def human_output(record: SessionRecord) -> None:
        success_message(f"Session {record.id} created")
        click.echo(f"Branch: {record.branch}")
        click.echo(f"Workspace: {record.worktree_path}")
        if not no_tmux:
            click.echo(f"Attach with: taskmux attach {record.id}")

    format_output(ctx, record, human_output)


@click.command()
@click.argument("session_id")
@click.pass_context
@error_handler
def attach(ctx: click.Context, session_id: str) -> None:
    """Attach to a session's tmux session."""
    controller = get_controller(ctx)

    async def _attach() -> str:
        await controller.attach(session_id)
        return await controller.multiplexer_name(session_id)

    name = asyncio.run(_attach())

    if ctx.find_root().obj.get("json"):
        format_output(ctx, {"id": session_id, "multiplexerName": name}, lambda _: None)
        return

    if os.environ.get("TMUX"):
        click.echo("Already inside tmux. Switch with:")
        click.echo(f"  tmux switch-client -t {name}")
        return

    completed = subprocess.run(["tmux", "attach-session", "-t", name], check=False)
    if completed.returncode != 0:
        ctx.exit(completed.returncode)


@click.command()
@click.argument("session_id")
@click.pass_context
@error_handler
def stop(ctx: click.Context, session_id: str) -> None:
    """Stop a session's tmux sessions and mark it stopped."""
    controller = get_controller(ctx)
    asyncio.run(controller.stop(session_id))
    format_output(
        ctx,
        {"id": session_id, "stopped": True},
        lambda _: success_message(f"Session {session_id} stopped"),
    )


@click.command()
@click.argument("session_id")
@click.option("--keep-workspace", is_flag=True, help="Keep the git worktree")
@click.option("--keep-session", is_flag=True, help="Keep the tmux session running")
@click.pass_context
@error_handler
def delete(
    ctx: click.Context, session_id: str, keep_workspace: bool, keep_session: bool
) -> None:
    """Stop a session, remove its worktree and unregister it."""
    controller = get_controller(ctx)
    report = asyncio.run(
        controller.delete(
            session_id, keep_workspace=keep_workspace, keep_session=keep_session
        )
    )

    format_output(ctx, report, _print_delete_report)
    if not report.found or not report.ok:
        ctx.exit(1)


def _print_delete_report(report: DeleteReport) -> None:
    if not report.found:
        click.echo(f"Session {report.id} not found", err=True)
        return
    if report.ok:
        success_message(f"Session {report.id} deleted")
        return
    warning_message(f"Session {report.id} deleted with errors:")
    for error in report.errors:
        click.echo(f"  - {error}", err=True)


@click.command(name="list")
@click.pass_context
@error_handler
def list_sessions(ctx: click.Context) -> None:
    """List registered sessions and live tmux sessions."""
    controller = get_controller(ctx)
    views = asyncio.run(controller.list())

    def human_output(views: list) -> None:
        if not views:
            click.echo("No sessions found")
            return
        rows = [
            [
                view.id,
                view.kind,
                view.status,
                "yes" if view.active else "no",
                view.branch or "",
                view.multiplexer_name or "",
            ]
            for view in views
        ]
        output_table(["ID", "Kind", "Status", "Live", "Branch", "Tmux"], rows)

    format_output(ctx, views, human_output)


@click.command(name="delete-all")
@click.option("--force", is_flag=True, help="Also kill tmux sessions with no record")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@error_handler
def delete_all(ctx: click.Context, force: bool, yes: bool) -> None:
    """Delete every registered session and batch."""
    if not yes:
        click.confirm("Delete all sessions, worktrees and records?", abort=True)

    controller = get_controller(ctx)
    reports = asyncio.run(controller.delete_all(force=force))

    def human_output(reports: list[DeleteReport]) -> None:
        if not reports:
            click.echo("Nothing to delete")
            return
        for report in reports:
            _print_delete_report(report)

    format_output(ctx, reports, human_output)
    if any(not report.ok for report in reports):
        ctx.exit(1)
