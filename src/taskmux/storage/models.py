"""Persisted session records.

Records are stored with camelCase keys so existing ``sessions.json`` files
stay readable; attribute access in Python uses snake_case.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecordStatus(str, Enum):
    """Status of a registered session."""

    ACTIVE = "active"
    STOPPED = "stopped"
    FAILED = "failed"
    PAUSED = "paused"


class AgentStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    STARTING = "starting"


class RecordModel(BaseModel):
    """Base for every persisted model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
        extra="ignore",
    )


class AgentRecord(RecordModel):
    """An agent process attached to a session."""

    id: str
    name: str
    type: str = "claude"
    status: AgentStatus = AgentStatus.STOPPED
    pid: int | None = None
    tmux_pane: str | None = None
    last_activity: datetime = Field(default_factory=utc_now)
    capabilities: list[str] = Field(default_factory=list)


class TaskReference(RecordModel):
    """A task tracked by a session."""

    id: str
    title: str
    description: str = ""
    status: str = "todo"
    priority: str = "medium"
    session_name: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    estimated_time: str | None = None


class SessionRecord(RecordModel):
    """One registered session (a plain session or a whole batch)."""

    id: str
    branch: str
    worktree_path: str
    status: RecordStatus = RecordStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    last_active: datetime = Field(default_factory=utc_now)
    agents: list[AgentRecord] = Field(default_factory=list)
    tasks: list[TaskReference] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_batch(self) -> bool:
        return self.metadata.get("kind") == "batch"

    @property
    def task_sessions(self) -> list[str]:
        """Task session ids owned by a batch record."""
        return list(self.metadata.get("taskSessions", []))


class RegistryDocument(RecordModel):
    """Top-level shape of ``sessions.json``."""

    sessions: list[SessionRecord] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utc_now)
