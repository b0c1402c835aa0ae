"""Shared test fixtures for fuxi tests."""

from __future__ import annotations

from pathlib import Path

import git
import pytest

from fuxi.config import LoopConfig, WorkflowFiles


@pytest.fixture
def git_repo(tmp_path: Path) -> git.Repo:
    """Create a temporary git repository with one commit on main."""
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()
    repo = git.Repo.init(repo_dir)

    # Configure git user for commits
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    (repo_dir / "README.md").write_text("# Sample project\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")
    repo.git.branch("-M", "main")

    return repo


@pytest.fixture
def repo_path(git_repo: git.Repo) -> Path:
    """Working tree path of the temporary repository."""
    return Path(git_repo.working_tree_dir)


@pytest.fixture
def workflow_files(tmp_path: Path) -> WorkflowFiles:
    """Workflow files under a scratch memory directory."""
    return WorkflowFiles.under(tmp_path / "workspace")


@pytest.fixture
def loop_config(tmp_path: Path, workflow_files: WorkflowFiles) -> LoopConfig:
    """A minimal loop configuration with every side effect disabled."""
    return LoopConfig(
        task="Add a greeting module",
        workflow_files=workflow_files,
        cwd=tmp_path,
        iterations=2,
        stop_signal="<<DONE>>",
    )
