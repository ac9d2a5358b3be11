"""Unit tests for the taskmux command line."""

import json
import signal
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

from taskmux.cli.main import main
from taskmux.core.lifecycle import DeleteReport, SessionView
from taskmux.core.models import (
    OrchestrationResult,
    OrchestrationSummary,
    WorkspaceInfo,
)
from taskmux.storage import SessionRecord
from taskmux.utils.logging import (
    OrchestrationInterrupted,
    ResourceError,
    ValidationError,
)


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("taskmux.cli.utils.setup_logging"):
        yield


@pytest.fixture
def controller():
    with patch("taskmux.cli.sessions.LifecycleController") as controller_class:
        instance = Mock()
        controller_class.return_value = instance
        yield instance


def make_result() -> OrchestrationResult:
    return OrchestrationResult(
        batch_id="proj1",
        workspace=WorkspaceInfo(
            id="proj1",
            branch_name="feature/proj1",
            path=Path("/tmp/ws/proj1"),
            base_path=Path("/tmp/ws"),
        ),
        summary=OrchestrationSummary(total=3, success=2, failed=1, errors=["boom"]),
    )


class TestCli:
    """Test suite for taskmux commands."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_help(self):
        result = self.runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ["run", "start", "attach", "stop", "delete", "list", "delete-all"]:
            assert command in result.output

    def test_version(self):
        result = self.runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_run_reports_summary(self, controller, tmp_path):
        controller.create_batch = AsyncMock(return_value=make_result())
        doc = tmp_path / "tasks.md"

        result = self.runner.invoke(main, ["run", str(doc), "--batch-id", "proj1"])

        assert result.exit_code == 0
        assert "Batch proj1" in result.output
        assert "3 total, 2 created, 1 failed" in result.output
        controller.create_batch.assert_awaited_once_with(doc, batch_id="proj1", launch=None)

    def test_run_defaults_to_configured_task_file(self, controller):
        controller.create_batch = AsyncMock(return_value=make_result())

        result = self.runner.invoke(main, ["run", "--no-launch"])

        assert result.exit_code == 0
        path = controller.create_batch.await_args.args[0]
        assert path == Path.cwd().resolve() / ".taskmux" / "tasks.md"
        assert controller.create_batch.await_args.kwargs["launch"] is False

    def test_run_json_output(self, controller):
        controller.create_batch = AsyncMock(return_value=make_result())

        result = self.runner.invoke(main, ["--json", "run", "doc.md"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["batch_id"] == "proj1"
        assert data["summary"]["failed"] == 1

    def test_validation_error_exits_1(self, controller):
        controller.create_batch = AsyncMock(
            side_effect=ValidationError("Task document not found: doc.md")
        )

        result = self.runner.invoke(main, ["run", "doc.md"])

        assert result.exit_code == 1
        assert "Error: Task document not found: doc.md" in result.output

    def test_taskmux_error_exits_1(self, controller):
        controller.create = AsyncMock(side_effect=ResourceError("Not a git repository"))

        result = self.runner.invoke(main, ["start", "PROJ-1"])

        assert result.exit_code == 1
        assert "Error: Not a git repository" in result.output

    def test_interrupt_exit_code(self, controller):
        controller.create_batch = AsyncMock(
            side_effect=OrchestrationInterrupted(signal.SIGTERM, "proj1", ["leftover"])
        )

        result = self.runner.invoke(main, ["run", "doc.md"])

        assert result.exit_code == 128 + signal.SIGTERM
        assert "Interrupted" in result.output
        assert "leftover" in result.output

    def test_unexpected_error_exits_1(self, controller):
        controller.list = AsyncMock(side_effect=RuntimeError("kaboom"))

        result = self.runner.invoke(main, ["list"])

        assert result.exit_code == 1
        assert "Unexpected internal error" in result.output

    def test_invalid_config_file(self, controller, tmp_path):
        result = self.runner.invoke(
            main, ["--config", str(tmp_path / "missing.yaml"), "list"]
        )

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_start_passes_options(self, controller):
        controller.create = AsyncMock(
            return_value=SessionRecord(
                id="PROJ-1", branch="feature/PROJ-1", worktree_path="/tmp/ws/PROJ-1"
            )
        )

        result = self.runner.invoke(
            main,
            ["start", "PROJ-1", "--task", "Write tests", "--task", "Ship", "--no-tmux"],
        )

        assert result.exit_code == 0
        assert "Session PROJ-1 created" in result.output
        session_id, options = controller.create.await_args.args
        assert session_id == "PROJ-1"
        assert options.tasks == ["Write tests", "Ship"]
        assert options.enable_multiplexer is False
        assert options.enrich is True

    def test_attach_inside_tmux_prints_hint(self, controller, monkeypatch):
        monkeypatch.setenv("TMUX", "/tmp/tmux-0/default,1,0")
        controller.attach = AsyncMock()
        controller.multiplexer_name = AsyncMock(return_value="taskmux_PROJ-1")

        result = self.runner.invoke(main, ["attach", "PROJ-1"])

        assert result.exit_code == 0
        assert "tmux switch-client -t taskmux_PROJ-1" in result.output

    def test_attach_runs_tmux(self, controller):
        controller.attach = AsyncMock()
        controller.multiplexer_name = AsyncMock(return_value="taskmux_PROJ-1")

        with patch("taskmux.cli.sessions.subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0)
            result = self.runner.invoke(main, ["attach", "PROJ-1"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with(
            ["tmux", "attach-session", "-t", "taskmux_PROJ-1"], check=False
        )

    def test_stop(self, controller):
        controller.stop = AsyncMock()

        result = self.runner.invoke(main, ["stop", "PROJ-1"])

        assert result.exit_code == 0
        assert "Session PROJ-1 stopped" in result.output

    def test_delete_unknown_exits_1(self, controller):
        controller.delete = AsyncMock(return_value=DeleteReport(id="ghost", found=False))

        result = self.runner.invoke(main, ["delete", "ghost"])

        assert result.exit_code == 1
        assert "Session ghost not found" in result.output

    def test_delete_with_errors_exits_1(self, controller):
        controller.delete = AsyncMock(
            return_value=DeleteReport(
                id="PROJ-1", steps=["remove_record"], errors=["remove_workspace: locked"]
            )
        )

        result = self.runner.invoke(main, ["delete", "PROJ-1", "--keep-session"])

        assert result.exit_code == 1
        assert "remove_workspace: locked" in result.output
        controller.delete.assert_awaited_once_with(
            "PROJ-1", keep_workspace=False, keep_session=True
        )

    def test_list_table(self, controller):
        controller.list = AsyncMock(
            return_value=[
                SessionView(id="proj1", kind="batch", status="active", branch="feature/proj1"),
                SessionView(
                    id="proj1_a",
                    kind="task",
                    status="running",
                    multiplexer_name="taskmux_proj1_a",
                    active=True,
                    parent="proj1",
                ),
            ]
        )

        result = self.runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "ID" in result.output
        assert "taskmux_proj1_a" in result.output

    def test_list_json(self, controller):
        controller.list = AsyncMock(
            return_value=[SessionView(id="proj1", kind="batch", status="active")]
        )

        result = self.runner.invoke(main, ["--json", "list"])

        assert result.exit_code == 0
        assert json.loads(result.output)[0]["kind"] == "batch"

    def test_delete_all_requires_confirmation(self, controller):
        controller.delete_all = AsyncMock(return_value=[])

        result = self.runner.invoke(main, ["delete-all"], input="n\n")

        assert result.exit_code == 1
        controller.delete_all.assert_not_called()

    def test_delete_all_force(self, controller):
        controller.delete_all = AsyncMock(return_value=[DeleteReport(id="stray")])

        result = self.runner.invoke(main, ["delete-all", "--force", "--yes"])

        assert result.exit_code == 0
        controller.delete_all.assert_awaited_once_with(force=True)
