"""Git operations for per-batch worktree management."""

import asyncio
import shutil
from pathlib import Path

from git import Repo
from git.exc import (
    GitCommandError,
    GitCommandNotFound,
    InvalidGitRepositoryError,
    NoSuchPathError,
)

from ..utils.logging import LogContext, ResourceError
from .context import RuntimeContext
from .models import WorkspaceInfo
from .naming import branch_name_for, sanitize_batch_id

GITIGNORE_HEADER = "# taskmux git worktrees"


class WorkspaceManager:
    """Creates and removes one git worktree per batch using GitPython.

    Worktrees live under ``<project>/<worktrees_dir>/<id>``. Operations on
    different ids touch disjoint paths and may run concurrently; callers must
    not run two operations on the same id at once.
    """

    def __init__(self, context: RuntimeContext):
        """Initialize the WorkspaceManager.

        Args:
            context: Runtime context naming the project and worktree root
        """
        self.context = context
        self.repo_path = context.project_path
        self.root = context.worktree_root
        self.branch_prefix = context.config.branch_prefix
        self.logger = context.get_logger(__name__, LogContext.WORKSPACE)
        self._repo: Repo | None = None

    @property
    def repo(self) -> Repo:
        """Get the Git repository object."""
        if self._repo is None:
            try:
                self._repo = Repo(self.repo_path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise ResourceError(
                    f"Not a git repository: {self.repo_path}",
                    {"path": str(self.repo_path)},
                ) from e
        return self._repo

    def path_for(self, workspace_id: str) -> Path:
        return self.root / sanitize_batch_id(workspace_id)

    async def create(self, workspace_id: str, branch: str | None = None) -> WorkspaceInfo:
        """Create the worktree for ``workspace_id``.

        Args:
            workspace_id: Batch or session id owning the workspace
            branch: Branch to use; derived from the id when omitted

        Returns:
            WorkspaceInfo for the new worktree

        Raises:
            ResourceError: If the path exists already or git fails
        """
        return await asyncio.to_thread(self._create, workspace_id, branch)

    async def remove(self, workspace_id: str) -> bool:
        """Remove the worktree for ``workspace_id``.

        Returns:
            True if a worktree was removed, False if there was nothing to remove

        Raises:
            ResourceError: If both git removal and manual deletion fail
        """
        return await asyncio.to_thread(self._remove, workspace_id)

    async def get(self, workspace_id: str) -> WorkspaceInfo | None:
        path = self.path_for(workspace_id).resolve()
        for info in await self.list():
            if info.path == path:
                return info
        return None

    async def exists(self, workspace_id: str) -> bool:
        return self.path_for(workspace_id).exists()

    async def prune(self) -> None:
        """Drop git metadata for worktrees whose directories are gone."""
        await asyncio.to_thread(self._prune)

    def _create(self, workspace_id: str, branch: str | None) -> WorkspaceInfo:
        path = self.path_for(workspace_id)
        branch_name = branch or branch_name_for(workspace_id, self.branch_prefix)

        if path.exists():
            raise ResourceError(
                f"Workspace path {path} already exists",
                {"id": workspace_id, "path": str(path)},
            )

        self._ensure_root()
        self.logger.info(
            f"Creating worktree at {path} with branch {branch_name}",
            workspace_id=workspace_id,
        )

        try:
            if self._branch_exists(branch_name):
                # Resume on the existing branch
                self.repo.git.worktree("add", str(path), branch_name)
            else:
                self.repo.git.worktree("add", "-b", branch_name, str(path))
        except (GitCommandError, GitCommandNotFound) as e:
            self.logger.error(
                "Failed to create worktree",
                exception=e,
                workspace_id=workspace_id,
                path=str(path),
            )
            raise ResourceError(
                f"Failed to create worktree for {workspace_id}: {e}",
                {"id": workspace_id, "path": str(path), "branch": branch_name},
            ) from e

        info = WorkspaceInfo(
            id=path.name,
            branch_name=branch_name,
            path=path.resolve(),
            base_path=self.repo_path,
        )
        self.logger.info("Worktree created", workspace_id=info.id, path=str(info.path))
        return info

    def _branch_exists(self, branch_name: str) -> bool:
        try:
            self.repo.git.show_ref("--verify", "--quiet", f"refs/heads/{branch_name}")
            return True
        except GitCommandError:
            return False

    def _remove(self, workspace_id: str) -> bool:
        path = self.path_for(workspace_id)
        if not path.exists():
            self.logger.debug("Worktree already absent", workspace_id=workspace_id)
            return False

        self.logger.info(f"Removing worktree at {path}", workspace_id=workspace_id)
        try:
            self.repo.git.worktree("remove", "--force", str(path))
        except (GitCommandError, GitCommandNotFound, ResourceError) as git_error:
            self.logger.warning(
                "Git worktree removal failed, deleting directory manually",
                workspace_id=workspace_id,
                error=str(git_error),
            )
            try:
                shutil.rmtree(path)
            except OSError as manual_error:
                self.logger.error(
                    "Manual worktree cleanup failed",
                    exception=manual_error,
                    workspace_id=workspace_id,
                )
                raise ResourceError(
                    f"Failed to remove worktree {path}: {git_error}; "
                    f"manual cleanup failed: {manual_error}",
                    {"id": workspace_id, "path": str(path)},
                ) from manual_error
            self._prune_quietly()

        if path.exists():
            # git succeeded but left files behind (untracked build output etc.)
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise ResourceError(
                    f"Worktree directory {path} still present after removal: {e}",
                    {"id": workspace_id, "path": str(path)},
                ) from e

        self.logger.info("Worktree removed", workspace_id=workspace_id)
        return True

    def _list(self) -> list[WorkspaceInfo]:
        try:
            output = self.repo.git.worktree("list", "--porcelain")
        except (GitCommandError, GitCommandNotFound) as e:
            self.logger.error("Failed to list worktrees", exception=e)
            raise ResourceError(f"Failed to list worktrees: {e}") from e

        root = self.root.resolve()
        workspaces = []
        for entry in parse_worktree_porcelain(output):
            path = Path(entry["path"]).resolve()
            if path.parent != root:
                continue
            branch = entry.get("branch", "")
            workspaces.append(
                WorkspaceInfo(
                    id=path.name,
                    branch_name=branch.removeprefix("refs/heads/"),
                    path=path,
                    base_path=self.repo_path,
                )
            )

        self.logger.debug(f"Found {len(workspaces)} managed worktrees")
        return workspaces

    def _prune(self) -> None:
        try:
            self.repo.git.worktree("prune")
        except (GitCommandError, GitCommandNotFound) as e:
            raise ResourceError(f"Failed to prune worktrees: {e}") from e

    def _prune_quietly(self) -> None:
        try:
            self._prune()
        except ResourceError as e:
            self.logger.warning("Worktree prune failed", error=str(e))

    def _ensure_root(self) -> None:
        """Create the worktree root and keep it out of version control."""
        self.root.mkdir(parents=True, exist_ok=True)

        gitignore = self.repo_path / ".gitignore"
        entry = f"{self.root.name}/"
        try:
            content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
            if self.root.name in content.splitlines() or entry in content.splitlines():
                return
            if content and not content.endswith("\n"):
                content += "\n"
            blank = "\n" if content else ""
            gitignore.write_text(
                f"{content}{blank}{GITIGNORE_HEADER}\n{entry}\n", encoding="utf-8"
            )
            self.logger.info(f"Added {entry} to .gitignore")
        except OSError as e:
            self.logger.warning("Failed to update .gitignore", error=str(e))

    # Keep last: this name shadows the builtin ``list`` in the class body.
    async def list(self) -> list[WorkspaceInfo]:
        """Worktrees under the managed root."""
        return await asyncio.to_thread(self._list)


def parse_worktree_porcelain(output: str) -> list[dict[str, str]]:
    """Parse ``git worktree list --porcelain`` into one dict per worktree."""
    worktrees = []
    current: dict[str, str] = {}

    for line in output.split("\n"):
        if not line.strip():
            if current:
                worktrees.append(current)
                current = {}
            continue

        if line.startswith("worktree "):
            current["path"] = line[len("worktree ") :]
        elif line.startswith("HEAD "):
            current["commit"] = line[len("HEAD ") :]
        elif line.startswith("branch "):
            current["branch"] = line[len("branch ") :]
        elif line.startswith("detached"):
            current["status"] = "detached"
        elif line.startswith("bare"):
            current["status"] = "bare"

    if current:
        worktrees.append(current)
    return worktrees
