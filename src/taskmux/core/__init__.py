"""Core orchestration functionality."""

from .context import RuntimeContext
from .models import (
    OrchestrationResult,
    Session,
    SessionState,
    Task,
    TaskPriority,
    TaskStatus,
    WorkspaceInfo,
)
from .naming import SessionNameCodec, slugify
from .task_parser import TaskSpecParser

__all__ = [
    "OrchestrationResult",
    "RuntimeContext",
    "Session",
    "SessionNameCodec",
    "SessionState",
    "Task",
    "TaskPriority",
    "TaskSpecParser",
    "TaskStatus",
    "WorkspaceInfo",
    "slugify",
]
