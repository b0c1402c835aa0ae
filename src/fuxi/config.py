"""Configuration management for fuxi."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .env import EnvSnapshot

DEFAULT_AI_COMMAND = "claude"
DEFAULT_AI_ARGS = ("--print", "--dangerously-skip-permissions")
DEFAULT_STOP_SIGNAL = "[[FUXI_DONE]]"
DEFAULT_ITERATIONS = 3
DEFAULT_BASE_BRANCH = "main"

DEFAULT_WORKFLOW_DOC = "memory/workflow.md"
DEFAULT_PLAN_FILE = "memory/plan.md"
DEFAULT_NOTES_FILE = "memory/notes.md"

SETTINGS_FILENAME = "fuxi.yaml"
GLOBAL_CONFIG_FILENAME = "config.toml"


@dataclass(frozen=True)
class AiCliConfig:
    """How to invoke the AI command-line tool."""

    command: str = DEFAULT_AI_COMMAND
    args: tuple[str, ...] = DEFAULT_AI_ARGS
    prompt_arg: Optional[str] = None  # None: prompt goes to stdin
    env: Mapping[str, str] = field(default_factory=dict)
    log_file: Optional[Path] = None


@dataclass(frozen=True)
class WorktreeConfig:
    """Worktree and branch settings."""

    use_worktree: bool = False
    branch_name: Optional[str] = None
    worktree_path: Optional[Path] = None
    base_branch: str = DEFAULT_BASE_BRANCH


@dataclass(frozen=True)
class TestConfig:
    """Commands run after each iteration when tests are enabled."""

    __test__ = False  # not a pytest class

    unit_command: Optional[str] = None
    e2e_command: Optional[str] = None


@dataclass(frozen=True)
class PrConfig:
    """Pull request settings."""

    enable: bool = False
    title: Optional[str] = None
    body_path: Optional[Path] = None
    draft: bool = False
    reviewers: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowFiles:
    """The three files that carry state between iterations."""

    workflow_doc: Path
    plan_file: Path
    notes_file: Path

    @classmethod
    def under(
        cls,
        root: Path,
        workflow_doc: str = DEFAULT_WORKFLOW_DOC,
        plan_file: str = DEFAULT_PLAN_FILE,
        notes_file: str = DEFAULT_NOTES_FILE,
    ) -> WorkflowFiles:
        """Resolve workflow file paths relative to ``root``."""
        return cls(
            workflow_doc=resolve_path(root, workflow_doc),
            plan_file=resolve_path(root, plan_file),
            notes_file=resolve_path(root, notes_file),
        )


@dataclass(frozen=True)
class LoopConfig:
    """Immutable configuration for one run of the iteration loop."""

    task: str
    workflow_files: WorkflowFiles
    cwd: Path
    iterations: int = DEFAULT_ITERATIONS
    stop_signal: str = DEFAULT_STOP_SIGNAL
    ai: AiCliConfig = field(default_factory=AiCliConfig)
    git: WorktreeConfig = field(default_factory=WorktreeConfig)
    tests: TestConfig = field(default_factory=TestConfig)
    pr: PrConfig = field(default_factory=PrConfig)
    verbose: bool = False
    run_tests: bool = False
    run_e2e: bool = False
    run_quality: bool = False
    auto_commit: bool = False
    auto_push: bool = False


@dataclass
class ProjectSettings:
    """Settings read from ``fuxi.yaml`` in the working directory.

    Every field is optional; CLI options take precedence over these values,
    and these values take precedence over the built-in defaults.
    """

    iterations: Optional[int] = None
    stop_signal: Optional[str] = None
    ai_command: Optional[str] = None
    ai_args: Optional[list[str]] = None
    ai_prompt_arg: Optional[str] = None
    ai_env: dict[str, str] = field(default_factory=dict)
    ai_log_file: Optional[str] = None
    workflow_doc: Optional[str] = None
    plan_file: Optional[str] = None
    notes_file: Optional[str] = None
    unit_command: Optional[str] = None
    e2e_command: Optional[str] = None
    use_worktree: Optional[bool] = None
    branch_name: Optional[str] = None
    worktree_path: Optional[str] = None
    base_branch: Optional[str] = None
    pr_enable: Optional[bool] = None
    pr_title: Optional[str] = None
    pr_draft: Optional[bool] = None
    pr_reviewers: list[str] = field(default_factory=list)
    pr_body_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> ProjectSettings:
        """Create ProjectSettings from a parsed YAML mapping."""
        ai = _section(data, "ai")
        workflow = _section(data, "workflow")
        tests = _section(data, "tests")
        git = _section(data, "git")
        pr = _section(data, "pr")

        iterations = data.get("iterations")
        args = ai.get("args")
        return cls(
            iterations=int(iterations) if iterations is not None else None,
            stop_signal=data.get("stop_signal"),
            ai_command=ai.get("command"),
            ai_args=[str(arg) for arg in args] if args is not None else None,
            ai_prompt_arg=ai.get("prompt_arg"),
            ai_env={str(k): str(v) for k, v in (ai.get("env") or {}).items()},
            ai_log_file=ai.get("log_file"),
            workflow_doc=workflow.get("doc"),
            plan_file=workflow.get("plan"),
            notes_file=workflow.get("notes"),
            unit_command=tests.get("unit"),
            e2e_command=tests.get("e2e"),
            use_worktree=git.get("use_worktree"),
            branch_name=git.get("branch"),
            worktree_path=git.get("worktree_path"),
            base_branch=git.get("base_branch"),
            pr_enable=pr.get("enable"),
            pr_title=pr.get("title"),
            pr_draft=pr.get("draft"),
            pr_reviewers=[str(r) for r in pr.get("reviewers") or []],
            pr_body_path=pr.get("body_path"),
        )

    @classmethod
    def load_from_file(cls, directory: Path) -> ProjectSettings:
        """Load settings from ``fuxi.yaml`` in ``directory``, or defaults."""
        settings_path = directory / SETTINGS_FILENAME
        if settings_path.exists():
            with open(settings_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls.from_dict(data)
        return cls()


def _section(data: dict, key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def resolve_path(root: Path, value: str | Path) -> Path:
    """Resolve ``value`` against ``root`` unless it is already absolute."""
    path = Path(value).expanduser()
    return path if path.is_absolute() else (root / path)


def fuxi_home(snapshot: EnvSnapshot) -> Path:
    """Directory holding the global config (``FUXI_HOME`` or ``~/.fuxi``)."""
    home = snapshot.get("FUXI_HOME")
    if home:
        return Path(home).expanduser()
    user_home = snapshot.get("HOME")
    base = Path(user_home) if user_home else Path.home()
    return base / ".fuxi"


def global_config_path(snapshot: EnvSnapshot) -> Path:
    """Path to the global alias/shortcut configuration file."""
    return fuxi_home(snapshot) / GLOBAL_CONFIG_FILENAME
