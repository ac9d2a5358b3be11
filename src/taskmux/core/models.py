"""Data types shared by the parser, workspace manager and orchestrator."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class TaskPriority(Enum):
    """Priority inferred from the task text."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(Enum):
    """Status of a parsed task."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


EXECUTABLE_STATUSES = frozenset({TaskStatus.TODO, TaskStatus.IN_PROGRESS})


class SessionState(Enum):
    """Status of a multiplexer session created for a task."""

    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskContext:
    """Free-form details collected from the labeled fields of a task block."""

    full_description: str = ""
    technical_details: str | None = None
    dependencies: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskMetadata:
    """Where a task came from in the document."""

    line_number: int
    raw_text: str = ""
    estimated_time: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Task:
    """A normalized task record. Immutable once parsed."""

    id: str
    name: str
    description: str
    session_name: str
    section: str
    priority: TaskPriority
    status: TaskStatus
    context: TaskContext
    metadata: TaskMetadata

    @property
    def is_executable(self) -> bool:
        return self.status in EXECUTABLE_STATUSES


@dataclass
class ParseMetadata:
    """Document-level information gathered while parsing."""

    file_path: Path
    last_modified: datetime
    total_tasks: int = 0
    executable_tasks: int = 0
    sections: list[str] = field(default_factory=list)
    session_name: str | None = None
    project_context: str | None = None


@dataclass
class WorkspaceInfo:
    """An isolated worktree bound to a batch branch."""

    id: str
    branch_name: str
    path: Path
    base_path: Path


@dataclass
class Session:
    """One multiplexer session created for one task of a batch."""

    id: str
    multiplexer_name: str
    task: Task
    workspace_path: Path
    status: SessionState
    created_at: datetime
    last_activity: datetime
    error: str | None = None


@dataclass
class OrchestrationSummary:
    """Counters for one orchestration run."""

    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class LaunchStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class LaunchResult:
    """Outcome of launching the agent in one session."""

    session_id: str
    status: LaunchStatus
    context_file: Path | None = None
    error: str | None = None


@dataclass
class OrchestrationResult:
    """Outcome of orchestrating one batch."""

    batch_id: str
    workspace: WorkspaceInfo
    sessions: list[Session] = field(default_factory=list)
    summary: OrchestrationSummary = field(default_factory=OrchestrationSummary)
    launch_results: list[LaunchResult] = field(default_factory=list)


@dataclass(frozen=True)
class ActiveSession:
    """A live multiplexer session decoded back into its batch and task parts."""

    id: str
    multiplexer_name: str
    batch_id: str
    task_session_name: str | None = None


@dataclass
class CleanupReport:
    """Aggregated outcome of tearing down a batch."""

    batch_id: str
    stopped_sessions: list[str] = field(default_factory=list)
    workspace_removed: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
