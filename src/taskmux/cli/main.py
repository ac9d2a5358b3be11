"""Main CLI entry point for taskmux."""

import click

from .. import __version__
from .sessions import attach, delete, delete_all, list_sessions, run, start, stop


@click.group()
@click.version_option(version=__version__, prog_name="taskmux")
@click.option("--config", "-c", help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option("--log-level", help="Override log_level setting")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    verbose: bool,
    json: bool,
    log_level: str | None,
) -> None:
    """taskmux - one tmux session per task, one git worktree per batch.

    Write tasks as a markdown checklist, then:

    - run: create a session for every open task in a document
    - start: create a single session for a ticket or feature
    - attach / stop / delete: manage one session
    - list / delete-all: manage everything
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = json

    overrides = {"log_level": log_level}
    ctx.obj["cli_overrides"] = {k: v for k, v in overrides.items() if v is not None}


main.add_command(run)
main.add_command(start)
main.add_command(attach)
main.add_command(stop)
main.add_command(delete)
main.add_command(list_sessions)
main.add_command(delete_all)


if __name__ == "__main__":
    main()
