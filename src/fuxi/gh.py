"""GitHub CLI (``gh``) wrapper for pull requests and workflow runs."""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .config import PrConfig
from .errors import GhError
from .utils import CommandResult, run_command

logger = logging.getLogger(__name__)

PR_FIELDS = "url,number,state,title"
RUN_FIELDS = "name,status,conclusion,url,headBranch"
GH_TIMEOUT = 120  # seconds


@dataclass
class PrInfo:
    """A pull request as reported by ``gh``."""

    url: str
    number: Optional[int] = None
    state: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PrInfo:
        return cls(
            url=str(data.get("url", "")),
            number=data.get("number"),
            state=data.get("state"),
            title=data.get("title"),
        )


@dataclass
class WorkflowRun:
    """A GitHub Actions run."""

    name: str
    status: str
    conclusion: Optional[str]
    url: str


class GhClient:
    """Runs ``gh`` commands inside a working directory."""

    def __init__(self, executable: str = "gh"):
        self.executable = executable

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def _run(self, args: list[str], work_dir: Path) -> CommandResult:
        try:
            return run_command([self.executable, *args], cwd=work_dir, timeout=GH_TIMEOUT)
        except FileNotFoundError as exc:
            raise GhError("GitHub CLI (gh) not found in PATH") from exc

    def _parse_json(self, result: CommandResult) -> Any:
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as exc:
            raise GhError(f"Unable to parse gh output: {exc}") from exc

    def create_pr(self, branch: str, config: PrConfig, work_dir: Path) -> Optional[PrInfo]:
        """Open a pull request for ``branch``.

        Returns:
            The created PR, or None if gh printed no PR URL.

        Raises:
            GhError: If gh fails.
        """
        args = ["pr", "create", "--head", branch, "--title", config.title or branch]
        if config.body_path is not None:
            args.extend(["--body-file", str(config.body_path)])
        else:
            args.extend(["--body", ""])
        if config.draft:
            args.append("--draft")
        for reviewer in config.reviewers:
            args.extend(["--reviewer", reviewer])

        logger.info(f"Creating pull request for {branch}")
        result = self._run(args, work_dir)
        if not result.success:
            raise GhError(f"gh pr create failed: {result.stderr.strip() or result.stdout.strip()}")

        url = next(
            (line.strip() for line in result.stdout.splitlines() if line.strip().startswith("http")),
            None,
        )
        if url is None:
            return None
        return self.view_pr(branch, work_dir) or PrInfo(url=url)

    def view_pr(self, branch: str, work_dir: Path) -> Optional[PrInfo]:
        """Look up the open PR for ``branch``; None if there is none."""
        result = self._run(["pr", "view", branch, "--json", PR_FIELDS], work_dir)
        if not result.success:
            logger.debug(f"No pull request for {branch}: {result.stderr.strip()}")
            return None
        data = self._parse_json(result)
        if not isinstance(data, dict) or not data.get("url"):
            return None
        return PrInfo.from_dict(data)

    def list_failed_runs(self, branch: str, work_dir: Path, limit: int = 20) -> list[WorkflowRun]:
        """Recent workflow runs on ``branch`` whose conclusion is a failure.

        Raises:
            GhError: If gh fails.
        """
        result = self._run(
            ["run", "list", "--branch", branch, "--limit", str(limit), "--json", RUN_FIELDS],
            work_dir,
        )
        if not result.success:
            raise GhError(f"gh run list failed: {result.stderr.strip() or result.stdout.strip()}")

        runs = self._parse_json(result) or []
        return [
            WorkflowRun(
                name=str(run.get("name", "")),
                status=str(run.get("status", "")),
                conclusion=run.get("conclusion"),
                url=str(run.get("url", "")),
            )
            for run in runs
            if isinstance(run, dict) and run.get("conclusion") in ("failure", "timed_out", "startup_failure")
        ]
