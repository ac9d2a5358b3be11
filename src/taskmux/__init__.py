"""taskmux: task-driven tmux sessions over per-batch git worktrees."""

import os

# GitPython refuses to import without a git binary; report that later as a
# ResourceError instead.
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")

__version__ = "0.1.0"

from .core.context import RuntimeContext  # noqa: E402
from .core.lifecycle import LifecycleController  # noqa: E402

__all__ = ["LifecycleController", "RuntimeContext", "__version__"]
