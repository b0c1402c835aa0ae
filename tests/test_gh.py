"""Tests for the GitHub CLI wrapper."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from fuxi.config import PrConfig
from fuxi.errors import GhError
from fuxi.gh import GhClient, PrInfo, WorkflowRun
from fuxi.utils import CommandResult

PR_URL = "https://github.com/acme/app/pull/7"


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr="", exit_code=0)


class TestCreatePr:
    """Tests for GhClient.create_pr."""

    def test_arguments(self, tmp_path: Path) -> None:
        """Test title, body file, draft and reviewers are passed to gh."""
        body = tmp_path / "pr-body.md"
        config = PrConfig(enable=True, title="Add login", body_path=body, draft=True, reviewers=("alice", "bob"))
        view = json.dumps({"url": PR_URL, "number": 7, "state": "OPEN", "title": "Add login"})

        with patch("fuxi.gh.run_command", side_effect=[_ok(PR_URL + "\n"), _ok(view)]) as mock_run:
            info = GhClient().create_pr("feat/login", config, tmp_path)

        assert info == PrInfo(url=PR_URL, number=7, state="OPEN", title="Add login")
        create_args = mock_run.call_args_list[0].args[0]
        assert create_args == [
            "gh",
            "pr",
            "create",
            "--head",
            "feat/login",
            "--title",
            "Add login",
            "--body-file",
            str(body),
            "--draft",
            "--reviewer",
            "alice",
            "--reviewer",
            "bob",
        ]

    def test_defaults_title_to_branch(self, tmp_path: Path) -> None:
        """Test the branch is the title and the body is empty when unset."""
        with patch("fuxi.gh.run_command", side_effect=[_ok(PR_URL), CommandResult("", "no pr", 1)]) as mock_run:
            info = GhClient().create_pr("feat/login", PrConfig(enable=True), tmp_path)

        assert info == PrInfo(url=PR_URL)
        create_args = mock_run.call_args_list[0].args[0]
        assert create_args[5:] == ["--title", "feat/login", "--body", ""]

    def test_no_url_printed(self, tmp_path: Path) -> None:
        """Test None is returned when gh prints no URL."""
        with patch("fuxi.gh.run_command", return_value=_ok("nothing to do")):
            assert GhClient().create_pr("feat/x", PrConfig(enable=True), tmp_path) is None

    def test_failure_raises(self, tmp_path: Path) -> None:
        """Test a failing gh raises GhError."""
        with patch("fuxi.gh.run_command", return_value=CommandResult("", "already exists", 1)):
            with pytest.raises(GhError, match="already exists"):
                GhClient().create_pr("feat/x", PrConfig(enable=True), tmp_path)

    def test_missing_executable(self, tmp_path: Path) -> None:
        """Test a missing gh raises GhError."""
        with patch("fuxi.gh.run_command", side_effect=FileNotFoundError("gh")):
            with pytest.raises(GhError, match="not found"):
                GhClient().create_pr("feat/x", PrConfig(enable=True), tmp_path)


class TestViewPr:
    """Tests for GhClient.view_pr."""

    def test_found(self, tmp_path: Path) -> None:
        """Test the PR fields are parsed."""
        data = json.dumps({"url": PR_URL, "number": 7, "state": "OPEN", "title": "t"})
        with patch("fuxi.gh.run_command", return_value=_ok(data)) as mock_run:
            info = GhClient().view_pr("feat/x", tmp_path)

        assert info is not None
        assert info.number == 7
        assert mock_run.call_args.args[0][:4] == ["gh", "pr", "view", "feat/x"]

    def test_not_found(self, tmp_path: Path) -> None:
        """Test a missing PR yields None."""
        with patch("fuxi.gh.run_command", return_value=CommandResult("", "no pull requests found", 1)):
            assert GhClient().view_pr("feat/x", tmp_path) is None

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Test unparsable output raises GhError."""
        with patch("fuxi.gh.run_command", return_value=_ok("<html>")):
            with pytest.raises(GhError):
                GhClient().view_pr("feat/x", tmp_path)


class TestListFailedRuns:
    """Tests for GhClient.list_failed_runs."""

    def test_filters_failures(self, tmp_path: Path) -> None:
        """Test only failed conclusions are returned."""
        runs = [
            {"name": "CI", "status": "completed", "conclusion": "failure", "url": "u1", "headBranch": "feat/x"},
            {"name": "Lint", "status": "completed", "conclusion": "success", "url": "u2", "headBranch": "feat/x"},
            {"name": "E2E", "status": "in_progress", "conclusion": None, "url": "u3", "headBranch": "feat/x"},
            {"name": "Deploy", "status": "completed", "conclusion": "timed_out", "url": "u4", "headBranch": "feat/x"},
        ]
        with patch("fuxi.gh.run_command", return_value=_ok(json.dumps(runs))) as mock_run:
            failed = GhClient().list_failed_runs("feat/x", tmp_path)

        assert failed == [
            WorkflowRun(name="CI", status="completed", conclusion="failure", url="u1"),
            WorkflowRun(name="Deploy", status="completed", conclusion="timed_out", url="u4"),
        ]
        args = mock_run.call_args.args[0]
        assert args[:5] == ["gh", "run", "list", "--branch", "feat/x"]

    def test_empty_output(self, tmp_path: Path) -> None:
        """Test empty output yields no runs."""
        with patch("fuxi.gh.run_command", return_value=_ok("")):
            assert GhClient().list_failed_runs("feat/x", tmp_path) == []

    def test_failure_raises(self, tmp_path: Path) -> None:
        """Test a failing gh raises GhError."""
        with patch("fuxi.gh.run_command", return_value=CommandResult("", "not logged in", 4)):
            with pytest.raises(GhError, match="not logged in"):
                GhClient().list_failed_runs("feat/x", tmp_path)


def test_is_available() -> None:
    """Test availability follows PATH lookup."""
    with patch("fuxi.gh.shutil.which", return_value=None):
        assert GhClient().is_available() is False
    with patch("fuxi.gh.shutil.which", return_value="/usr/bin/gh"):
        assert GhClient().is_available() is True
