"""
Pytest configuration and shared fixtures for taskmux tests.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from git import Repo

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from taskmux.config import TaskmuxConfig
from taskmux.core.context import RuntimeContext
from taskmux.core.models import (
    Session,
    SessionState,
    Task,
    TaskContext,
    TaskMetadata,
    TaskPriority,
    TaskStatus,
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the user's config, logs and tmux server."""
    for var in [
        "TASKMUX_SESSION_PREFIX",
        "TASKMUX_LOG_LEVEL",
        "TASKMUX_LAUNCH_AGENTS",
        "TASKMUX_AGENT_COMMAND",
        "TMUX",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("TASKMUX_LOG_FILE", "")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def config() -> TaskmuxConfig:
    """Configuration without a log file or launch delay."""
    return TaskmuxConfig(log_file=None, agent_launch_delay=0)


@pytest.fixture
def project_path(tmp_path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def context(config, project_path) -> RuntimeContext:
    return RuntimeContext(config, project_path)


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """Create a temporary git repository with an initial commit."""
    repo_path = tmp_path / "repo"
    repo_path.mkdir()

    repo = Repo.init(repo_path)
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")

    readme = repo_path / "README.md"
    readme.write_text("# Test Repository\n")
    repo.index.add([str(readme)])
    repo.index.commit("Initial commit")
    return repo_path


@pytest.fixture
def repo_context(config, git_repo) -> RuntimeContext:
    return RuntimeContext(config, git_repo)


def build_task(
    name: str = "Fix bug",
    session_name: str | None = None,
    status: TaskStatus = TaskStatus.TODO,
    line_number: int = 1,
) -> Task:
    """Task with sensible defaults for tests."""
    session_name = session_name or name.lower().replace(" ", "-")
    return Task(
        id=f"{session_name}-{line_number}",
        name=name,
        description=f"Work on: {name}",
        session_name=session_name,
        section="Todo",
        priority=TaskPriority.MEDIUM,
        status=status,
        context=TaskContext(full_description=f"Task: {name}"),
        metadata=TaskMetadata(line_number=line_number),
    )


def build_session(
    task: Task,
    batch_id: str = "proj1",
    status: SessionState = SessionState.CREATED,
    workspace_path: Path = Path("/tmp/ws"),
) -> Session:
    now = datetime.now(timezone.utc)
    return Session(
        id=f"{batch_id}_{task.session_name}",
        multiplexer_name=f"taskmux_{batch_id}_{task.session_name}",
        task=task,
        workspace_path=workspace_path,
        status=status,
        created_at=now,
        last_activity=now,
    )


@pytest.fixture
def make_task():
    return build_task


@pytest.fixture
def make_session():
    return build_session
