"""Explicit runtime context threaded through every component."""

from functools import cached_property
from pathlib import Path

from ..config import TaskmuxConfig
from ..utils.logging import ContextualLogger, LogContext, get_logger
from .naming import SessionNameCodec

REGISTRY_FILENAME = "sessions.json"


class RuntimeContext:
    """Loaded configuration plus the project it applies to.

    Created once per process by the command layer and handed to each
    component constructor instead of module-level singletons.
    """

    def __init__(self, config: TaskmuxConfig, project_path: str | Path | None = None):
        self.config = config
        self.project_path = Path(project_path or Path.cwd()).expanduser().resolve()

    @property
    def state_dir(self) -> Path:
        return self.project_path / self.config.state_dir

    @property
    def registry_path(self) -> Path:
        return self.state_dir / REGISTRY_FILENAME

    @property
    def worktree_root(self) -> Path:
        return self.project_path / self.config.worktrees_dir

    @property
    def log_file(self) -> Path | None:
        if not self.config.log_file:
            return None
        return Path(self.config.log_file).expanduser()

    @cached_property
    def session_codec(self) -> SessionNameCodec:
        return SessionNameCodec(self.config.session_prefix)

    def get_logger(self, name: str, context: LogContext) -> ContextualLogger:
        """Logger for one component."""
        return get_logger(name, context)
