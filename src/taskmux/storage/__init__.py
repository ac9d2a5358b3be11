"""Persistent session state."""

from .models import (
    AgentRecord,
    AgentStatus,
    RecordStatus,
    RegistryDocument,
    SessionRecord,
    TaskReference,
)
from .registry import SessionRegistry

__all__ = [
    "AgentRecord",
    "AgentStatus",
    "RecordStatus",
    "RegistryDocument",
    "SessionRecord",
    "SessionRegistry",
    "TaskReference",
]
