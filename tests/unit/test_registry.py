"""Unit tests for the JSON session registry."""

import json
from unittest.mock import patch

import pytest

from taskmux.storage import (
    AgentRecord,
    RecordStatus,
    SessionRecord,
    SessionRegistry,
    TaskReference,
)
from taskmux.utils.logging import RegistryError


def make_record(session_id: str = "PROJ-1", **kwargs) -> SessionRecord:
    return SessionRecord(
        id=session_id,
        branch=f"feature/{session_id}",
        worktree_path=f"/tmp/{session_id}",
        **kwargs,
    )


class TestSessionRegistry:
    """Test cases for SessionRegistry."""

    @pytest.fixture
    def registry(self, context):
        return SessionRegistry(context)

    @pytest.mark.asyncio
    async def test_empty_when_file_missing(self, registry):
        assert await registry.get_all() == []
        assert await registry.get("anything") is None

    @pytest.mark.asyncio
    async def test_save_and_reload(self, registry, context):
        record = make_record(
            agents=[AgentRecord(id="agent_PROJ-1", name="claude")],
            tasks=[TaskReference(id="task-1", title="Write tests")],
            metadata={"kind": "session"},
        )
        await registry.save(record)

        reloaded = await SessionRegistry(context).get("PROJ-1")

        assert reloaded is not None
        assert reloaded.branch == "feature/PROJ-1"
        assert reloaded.agents[0].name == "claude"
        assert reloaded.tasks[0].title == "Write tests"
        assert reloaded.status == RecordStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_file_uses_camel_case_keys(self, registry):
        await registry.save(make_record())

        data = json.loads(registry.path.read_text())

        assert "lastUpdated" in data
        session = data["sessions"][0]
        assert session["worktreePath"] == "/tmp/PROJ-1"
        assert "createdAt" in session
        assert "lastActive" in session

    @pytest.mark.asyncio
    async def test_save_replaces_existing(self, registry):
        await registry.save(make_record())
        await registry.save(make_record(status=RecordStatus.STOPPED))

        records = await registry.get_all()

        assert len(records) == 1
        assert records[0].status == RecordStatus.STOPPED

    @pytest.mark.asyncio
    async def test_remove(self, registry):
        await registry.save(make_record("a"))
        await registry.save(make_record("b"))

        assert await registry.remove("a") is True
        assert await registry.remove("a") is False
        assert [r.id for r in await registry.get_all()] == ["b"]

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, registry):
        await registry.save(make_record())

        leftovers = [p.name for p in registry.path.parent.iterdir()]

        assert leftovers == ["sessions.json"]

    @pytest.mark.asyncio
    async def test_reads_existing_camel_case_document(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text(
            json.dumps(
                {
                    "sessions": [
                        {
                            "id": "legacy",
                            "branch": "feature/legacy",
                            "worktreePath": "/tmp/legacy",
                            "status": "paused",
                            "createdAt": "2024-01-01T00:00:00Z",
                            "lastActive": "2024-01-01T00:00:00Z",
                            "agents": [],
                            "tasks": [],
                            "metadata": {"kind": "batch", "taskSessions": ["legacy_a"]},
                            "unknownField": True,
                        }
                    ],
                    "lastUpdated": "2024-01-01T00:00:00Z",
                }
            )
        )

        record = await registry.get("legacy")

        assert record.status == RecordStatus.PAUSED
        assert record.is_batch
        assert record.task_sessions == ["legacy_a"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_registry_error(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text("{not json")

        with pytest.raises(RegistryError, match="Failed to read"):
            await registry.get_all()

    @pytest.mark.asyncio
    async def test_malformed_document_raises_registry_error(self, registry):
        registry.path.parent.mkdir(parents=True)
        registry.path.write_text(json.dumps({"sessions": [{"id": "missing-fields"}]}))

        with pytest.raises(RegistryError, match="Malformed"):
            await registry.get_all()

    @pytest.mark.asyncio
    async def test_write_failure_raises_registry_error(self, registry):
        with patch(
            "taskmux.storage.registry.os.replace", side_effect=OSError("disk full")
        ):
            with pytest.raises(RegistryError, match="disk full"):
                await registry.save(make_record())

        assert not registry.path.exists()
        assert list(registry.path.parent.iterdir()) == []
