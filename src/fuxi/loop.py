"""The iteration loop.

Each round rebuilds the prompt from the task, workflow guide, plan and notes,
hands it to the AI CLI, and appends the exchange to the notes file, which the
next round reads back. After the last round the loop optionally commits,
pushes and opens a pull request.

Failures of the agent or of repository discovery abort the run. Tests,
quality checks, commit, push and pull request steps are best effort: each
produces a :class:`StepResult`, failures are logged as warnings, and the run
continues with the next step.
"""

from __future__ import annotations

import dataclasses
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from jinja2 import Template
from rich.markup import escape

from .ai import AgentRunner, IterationRecord, build_prompt, format_iteration_record
from .config import LoopConfig, WorkflowFiles
from .errors import CommandError, FuxiError
from .gh import GhClient
from .git_ops import GitOps
from .plan import get_last_pending_plan_item, summarize_plan
from .quality import detect_quality_commands
from .utils import append_section, ensure_file, iso_now, read_file_safe, run_command, write_text

logger = logging.getLogger(__name__)

COMMIT_MESSAGE = "chore: fuxi automated iteration commit"

WORKFLOW_DOC_HEADER = "# AI Workflow Baseline\n"
PLAN_HEADER = "# Plan\n"
NOTES_HEADER = "# Persistent Memory\n"

PR_BODY_TEMPLATE = """# Change Summary

{{ plan }}

# Key Outputs

{{ notes }}
"""

# Errors a best-effort step may raise without aborting the run.
RECOVERABLE_ERRORS = (FuxiError, OSError, subprocess.SubprocessError)


@dataclass
class StepResult:
    """Outcome of one best-effort side effect."""

    name: str
    success: bool
    value: Any = None
    error: Optional[str] = None


@dataclass
class LoopResult:
    """Summary of a loop run."""

    iterations_completed: int = 0
    stop_signal_seen: bool = False
    work_dir: Optional[Path] = None
    branch_name: Optional[str] = None
    pr_url: Optional[str] = None
    steps: list[StepResult] = field(default_factory=list)

    @property
    def failed_steps(self) -> list[StepResult]:
        return [step for step in self.steps if not step.success]


def stop_signal_found(output: str, stop_signal: str) -> bool:
    """Case-sensitive substring check; an empty signal never matches."""
    return bool(stop_signal) and stop_signal in output


def ensure_workflow_files(files: WorkflowFiles) -> None:
    """Create missing workflow files with a placeholder header."""
    ensure_file(files.workflow_doc, WORKFLOW_DOC_HEADER)
    ensure_file(files.plan_file, PLAN_HEADER)
    ensure_file(files.notes_file, NOTES_HEADER)


def render_pr_body(plan: str, notes: str) -> str:
    return Template(PR_BODY_TEMPLATE).render(plan=plan.strip(), notes=notes.strip())


def default_pr_title(task: str) -> str:
    first_line = task.strip().splitlines()[0] if task.strip() else "automated iteration"
    return f"fuxi: {first_line[:72]}"


def run_shell(command: str, cwd: Path) -> None:
    """Run ``command`` through a login shell.

    Raises:
        CommandError: If the command exits non-zero.
    """
    result = run_command(["bash", "-lc", command], cwd=cwd)
    if not result.success:
        raise CommandError(command, result.exit_code, result.stderr or result.stdout)


def _success(message: str) -> None:
    logger.info(f"[green]✓[/green] {escape(message)}", extra={"markup": True})


class LoopEngine:
    """Runs the iteration loop for one :class:`LoopConfig`."""

    def __init__(
        self,
        config: LoopConfig,
        agent: Optional[AgentRunner] = None,
        repo: Optional[GitOps] = None,
        host: Optional[GhClient] = None,
    ):
        """Initialize the engine.

        Args:
            config: Run configuration.
            agent: AI CLI runner. Defaults to :class:`AgentRunner`.
            repo: Git operations. Defaults to :class:`GitOps`.
            host: Pull request host. Defaults to :class:`GhClient`.
        """
        self.config = config
        self.agent = agent or AgentRunner()
        self.repo = repo or GitOps()
        self.host = host or GhClient()

    def _attempt(self, name: str, action: Callable[[], Any]) -> StepResult:
        try:
            value = action()
        except RECOVERABLE_ERRORS as exc:
            logger.warning(f"{name} failed: {exc}")
            return StepResult(name=name, success=False, error=str(exc))
        return StepResult(name=name, success=True, value=value)

    def run(self) -> LoopResult:
        """Run every iteration, then the commit/push/PR steps.

        Raises:
            GitOpsError: If the repository cannot be determined.
            AgentError: If the AI CLI fails.
        """
        config = self.config
        files = config.workflow_files
        result = LoopResult()

        ensure_workflow_files(files)
        repo_root = self.repo.repo_root(config.cwd)
        work_dir = self.repo.ensure_worktree(config.git, repo_root) if config.git.use_worktree else repo_root
        result.work_dir = work_dir
        logger.info(f"Working directory: {work_dir}")

        self._report_plan(read_file_safe(files.plan_file))

        branch = config.git.branch_name or self.repo.current_branch(work_dir)
        result.branch_name = branch
        if branch:
            logger.info(f"Branch: {branch}")

        for iteration in range(1, config.iterations + 1):
            workflow_guide = read_file_safe(files.workflow_doc)
            plan = read_file_safe(files.plan_file)
            notes = read_file_safe(files.notes_file)

            prompt = build_prompt(
                task=config.task,
                workflow_guide=workflow_guide,
                plan=plan,
                notes=notes,
                iteration=iteration,
                stop_signal=config.stop_signal,
            )
            logger.info(f"Iteration {iteration}/{config.iterations}: prompt built, invoking agent")
            ai_output = self.agent.invoke(prompt, config.ai, work_dir)

            record = IterationRecord(
                iteration=iteration,
                prompt=prompt,
                ai_output=ai_output,
                timestamp=iso_now(),
            )
            append_section(files.notes_file, format_iteration_record(record))
            result.iterations_completed = iteration
            _success(f"Iteration {iteration} output written to {files.notes_file}")

            hit_stop = stop_signal_found(ai_output, config.stop_signal)
            result.steps.extend(self._run_checks(work_dir))

            if hit_stop:
                result.stop_signal_seen = True
                logger.info(f"Stop signal {config.stop_signal} found, ending the loop early")
                break

        if config.auto_commit:
            result.steps.append(self._commit(work_dir))

        if config.auto_push and branch:
            result.steps.append(self._push(branch, work_dir))

        if config.pr.enable and branch:
            result.pr_url = self._open_pull_request(branch, work_dir, result)
        elif branch:
            lookup = self._attempt("pull request lookup", lambda: self.host.view_pr(branch, work_dir))
            result.steps.append(lookup)
            if lookup.value is not None:
                result.pr_url = lookup.value.url
                logger.info(f"Existing pull request: {lookup.value.url}")

        _success("fuxi iteration run finished")
        return result

    def _report_plan(self, plan: str) -> None:
        if not plan.strip():
            logger.warning("Plan file is empty; the agent should draft a plan in the first iteration")
            return
        summary = summarize_plan(plan)
        last_pending = get_last_pending_plan_item(plan)
        if last_pending is None:
            logger.info(f"Plan has no pending items ({summary.completed}/{summary.total} done)")
        else:
            logger.info(f"Plan has {summary.pending} pending item(s); last pending: {last_pending.text}")

    def _run_checks(self, work_dir: Path) -> list[StepResult]:
        config = self.config
        commands: list[tuple[str, str]] = []
        if config.run_tests and config.tests.unit_command:
            commands.append(("unit tests", config.tests.unit_command))
        if config.run_e2e and config.tests.e2e_command:
            commands.append(("e2e tests", config.tests.e2e_command))
        if config.run_quality:
            commands.extend((f"quality check {q.name}", q.command) for q in detect_quality_commands(work_dir))

        steps = []
        for name, command in commands:
            logger.info(f"Running {name}: {command}")
            step = self._attempt(name, lambda command=command: run_shell(command, work_dir))
            if step.success:
                _success(f"{name} passed")
            steps.append(step)
        return steps

    def _commit(self, work_dir: Path) -> StepResult:
        commit = self.repo.commit_all(COMMIT_MESSAGE, work_dir)
        if not commit.success:
            logger.warning(f"Commit failed: {commit.error}")
        return StepResult(name="commit", success=commit.success, value=commit, error=commit.error)

    def _push(self, branch: str, work_dir: Path) -> StepResult:
        push = self.repo.push_branch(branch, work_dir)
        if not push.success:
            logger.warning(f"Push of {branch} failed: {push.error}")
        return StepResult(name="push", success=push.success, value=push, error=push.error)

    def _open_pull_request(self, branch: str, work_dir: Path, result: LoopResult) -> Optional[str]:
        config = self.config
        body_path = config.pr.body_path or (work_dir / "memory" / "pr-body.md")
        notes = read_file_safe(config.workflow_files.notes_file)
        plan = read_file_safe(config.workflow_files.plan_file)

        body_step = self._attempt("write pull request body", lambda: write_text(body_path, render_pr_body(plan, notes)))
        result.steps.append(body_step)
        if not body_step.success:
            return None

        pr_config = dataclasses.replace(
            config.pr,
            body_path=body_path,
            title=config.pr.title or default_pr_title(config.task),
        )
        create = self._attempt("create pull request", lambda: self.host.create_pr(branch, pr_config, work_dir))
        result.steps.append(create)
        if create.value is None:
            return None

        pr_url = create.value.url
        _success(f"Pull request created: {pr_url}")

        runs = self._attempt("list failed runs", lambda: self.host.list_failed_runs(branch, work_dir))
        result.steps.append(runs)
        for run in runs.value or []:
            logger.warning(f"Actions run failed: {run.name} ({run.status}/{run.conclusion or 'unknown'}) {run.url}")
        return pr_url


def run_loop(
    config: LoopConfig,
    *,
    agent: Optional[AgentRunner] = None,
    repo: Optional[GitOps] = None,
    host: Optional[GhClient] = None,
) -> LoopResult:
    """Run the iteration loop for ``config``."""
    return LoopEngine(config, agent=agent, repo=repo, host=host).run()
