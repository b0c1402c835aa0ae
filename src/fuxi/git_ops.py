"""Git operations for the iteration loop, using GitPython.

Repository discovery failures raise :class:`GitOpsError`; they are fatal for
a run. Commit and push report their outcome as result objects so the loop
can carry on when they fail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .config import WorktreeConfig
from .errors import GitOpsError

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "fuxi"
DEFAULT_REMOTE = "origin"


@dataclass
class CommitResult:
    """Result of a git commit operation."""

    success: bool
    commit_hash: Optional[str]
    message: str
    error: Optional[str] = None


@dataclass
class PushResult:
    """Result of a git push operation."""

    success: bool
    branch: str
    remote: str = DEFAULT_REMOTE
    error: Optional[str] = None


def generate_branch_name(prefix: str = DEFAULT_BRANCH_PREFIX) -> str:
    """Generate a branch name like 'fuxi/20240101-1430'."""
    timestamp = datetime.now().strftime("%Y%m%d-%H%M")
    return f"{prefix}/{timestamp}"


def default_worktree_path(repo_root: Path, branch_name: str) -> Path:
    """Sibling directory of the repository named after the branch."""
    safe_branch = branch_name.replace("/", "-")
    return repo_root.parent / f"{repo_root.name}-{safe_branch}"


class GitOps:
    """Source-control operations against a local checkout."""

    def _open(self, path: Path) -> git.Repo:
        try:
            return git.Repo(path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise GitOpsError(f"Not a git repository: {path}") from exc

    def repo_root(self, cwd: Path) -> Path:
        """Top-level directory of the repository containing ``cwd``.

        Raises:
            GitOpsError: If ``cwd`` is not inside a git repository.
        """
        repo = self._open(cwd)
        if repo.working_tree_dir is None:
            raise GitOpsError(f"Repository has no working tree: {cwd}")
        return Path(repo.working_tree_dir)

    def current_branch(self, work_dir: Path) -> Optional[str]:
        """Name of the checked-out branch, or None on a detached HEAD."""
        repo = self._open(work_dir)
        try:
            return repo.active_branch.name
        except TypeError:
            logger.debug(f"Detached HEAD in {work_dir}")
            return None

    def list_worktrees(self, repo_root: Path) -> list[Path]:
        """Paths of all worktrees attached to the repository."""
        repo = self._open(repo_root)
        output = repo.git.worktree("list", "--porcelain")
        return [
            Path(line[len("worktree "):]).resolve()
            for line in output.splitlines()
            if line.startswith("worktree ")
        ]

    def ensure_worktree(self, config: WorktreeConfig, repo_root: Path) -> Path:
        """Create or reuse the worktree described by ``config``.

        An existing worktree at the target path is reused. Otherwise the
        branch is checked out there, created from ``config.base_branch``
        when it does not exist yet.

        Returns:
            Path of the worktree.

        Raises:
            GitOpsError: If the worktree cannot be created.
        """
        repo = self._open(repo_root)
        branch = config.branch_name or generate_branch_name()
        path = Path(config.worktree_path) if config.worktree_path else default_worktree_path(repo_root, branch)

        if path.resolve() in self.list_worktrees(repo_root):
            logger.info(f"Reusing worktree: {path}")
            return path

        if path.exists() and any(path.iterdir()):
            raise GitOpsError(f"Worktree path exists and is not a worktree: {path}")

        branch_exists = any(head.name == branch for head in repo.heads)
        try:
            if branch_exists:
                repo.git.worktree("add", str(path), branch)
            else:
                repo.git.worktree("add", "-b", branch, str(path), config.base_branch)
        except GitCommandError as exc:
            raise GitOpsError(f"Failed to create worktree {path} for {branch}: {exc}") from exc

        logger.info(f"Created worktree {path} on branch {branch}")
        return path

    def commit_all(self, message: str, work_dir: Path) -> CommitResult:
        """Stage every change in ``work_dir`` and commit it."""
        try:
            repo = self._open(work_dir)
            repo.git.add(all=True)

            if not repo.is_dirty(untracked_files=True):
                logger.info("No changes to commit")
                return CommitResult(success=True, commit_hash=None, message="No changes to commit")

            commit = repo.index.commit(message)
            commit_hash = commit.hexsha[:8]
            logger.info(f"Committed: {commit_hash} - {message[:50]}")
            return CommitResult(success=True, commit_hash=commit_hash, message=message)

        except (GitCommandError, GitOpsError) as exc:
            logger.debug(f"Commit failed: {exc}")
            return CommitResult(success=False, commit_hash=None, message=message, error=str(exc))

    def push_branch(self, branch: str, work_dir: Path, remote: str = DEFAULT_REMOTE) -> PushResult:
        """Push ``branch`` to ``remote`` and set its upstream."""
        try:
            repo = self._open(work_dir)
            repo.git.push("-u", remote, branch)
            logger.info(f"Pushed {branch} to {remote}")
            return PushResult(success=True, branch=branch, remote=remote)
        except (GitCommandError, GitOpsError) as exc:
            logger.debug(f"Push failed: {exc}")
            return PushResult(success=False, branch=branch, remote=remote, error=str(exc))
