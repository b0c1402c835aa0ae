"""CLI entrypoint for fuxi.

``fuxi run`` drives the iteration loop. Named aliases from the global config
(``~/.fuxi/config.toml``) expand before dispatch, so with::

    [alias]
    daily = "--task \\"triage open issues\\" --run-tests"

``fuxi daily --run-e2e`` is the same as
``fuxi run --task "triage open issues" --run-tests --run-e2e``.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .ai import AgentRunner, MockAgentRunner, suggest_branch_name
from .config import (
    DEFAULT_AI_ARGS,
    DEFAULT_AI_COMMAND,
    DEFAULT_BASE_BRANCH,
    DEFAULT_ITERATIONS,
    DEFAULT_NOTES_FILE,
    DEFAULT_PLAN_FILE,
    DEFAULT_STOP_SIGNAL,
    DEFAULT_WORKFLOW_DOC,
    AiCliConfig,
    LoopConfig,
    PrConfig,
    ProjectSettings,
    TestConfig,
    WorkflowFiles,
    WorktreeConfig,
    global_config_path,
    resolve_path,
)
from .env import EnvSnapshot, parse_env_pairs, snapshot_env
from .errors import FuxiError
from .git_ops import generate_branch_name
from .global_config import (
    apply_alias_argv,
    load_global_config_text,
    parse_alias_entries,
    save_global_config_text,
    split_command_args,
    update_alias_content,
)
from .log_tailer import DEFAULT_POLL_INTERVAL, tail_log_file
from .loop import LoopResult, run_loop
from .plan import parse_plan_items, summarize_plan
from .utils import read_file_safe

app = typer.Typer(
    name="fuxi",
    help="Drive an AI coding agent through repeated, checkpointed iterations.",
    add_completion=False,
)

console = Console()

ROOT_OPTIONS = {"--help", "--version", "-v"}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fuxi version {__version__}")
        raise typer.Exit()


def _env(ctx: typer.Context) -> EnvSnapshot:
    if isinstance(ctx.obj, dict) and "env" in ctx.obj:
        return ctx.obj["env"]
    load_dotenv()
    return snapshot_env()


def expand_aliases(args: list[str], snapshot: EnvSnapshot) -> list[str]:
    """Expand a leading alias and route bare options to ``run``.

    Args:
        args: Command-line arguments without the program name.
        snapshot: Environment used to locate the global config.
    """
    text = load_global_config_text(global_config_path(snapshot))
    entries = parse_alias_entries(text)
    expanded = apply_alias_argv([sys.executable, "fuxi", *args], entries)[2:]
    if expanded and expanded[0].startswith("-") and expanded[0] not in ROOT_OPTIONS:
        expanded.insert(0, "run")
    return expanded


@app.callback()
def main_callback(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Drive an AI coding agent through repeated, checkpointed iterations."""
    pass


def _pick(cli_value, settings_value, default):
    if cli_value is not None:
        return cli_value
    if settings_value is not None:
        return settings_value
    return default


def build_loop_config(
    *,
    task: str,
    cwd: Path,
    settings: ProjectSettings,
    snapshot: EnvSnapshot,
    iterations: Optional[int] = None,
    stop_signal: Optional[str] = None,
    ai_command: Optional[str] = None,
    ai_args: Optional[str] = None,
    ai_prompt_arg: Optional[str] = None,
    ai_env: Optional[list[str]] = None,
    agent_log: Optional[Path] = None,
    workflow_doc: Optional[str] = None,
    plan_file: Optional[str] = None,
    notes_file: Optional[str] = None,
    unit_cmd: Optional[str] = None,
    e2e_cmd: Optional[str] = None,
    worktree: Optional[bool] = None,
    branch: Optional[str] = None,
    worktree_path: Optional[Path] = None,
    base_branch: Optional[str] = None,
    pr: Optional[bool] = None,
    pr_title: Optional[str] = None,
    pr_draft: Optional[bool] = None,
    pr_reviewers: Optional[list[str]] = None,
    run_tests: bool = False,
    run_e2e: bool = False,
    run_quality: bool = False,
    auto_commit: bool = False,
    auto_push: bool = False,
    verbose: bool = False,
) -> LoopConfig:
    """Combine CLI options, ``fuxi.yaml`` settings and defaults.

    Raises:
        EnvFormatError: If an ``--ai-env`` pair is malformed.
    """
    env_overrides = dict(settings.ai_env)
    env_overrides.update(parse_env_pairs(ai_env or []))

    args = split_command_args(ai_args) if ai_args is not None else settings.ai_args
    log_file = agent_log if agent_log is not None else settings.ai_log_file

    ai = AiCliConfig(
        command=_pick(ai_command, settings.ai_command, snapshot.get("FUXI_AI_COMMAND") or DEFAULT_AI_COMMAND),
        args=tuple(args) if args is not None else DEFAULT_AI_ARGS,
        prompt_arg=_pick(ai_prompt_arg, settings.ai_prompt_arg, None),
        env=env_overrides,
        log_file=resolve_path(cwd, log_file) if log_file else None,
    )

    files = WorkflowFiles.under(
        cwd,
        workflow_doc=_pick(workflow_doc, settings.workflow_doc, DEFAULT_WORKFLOW_DOC),
        plan_file=_pick(plan_file, settings.plan_file, DEFAULT_PLAN_FILE),
        notes_file=_pick(notes_file, settings.notes_file, DEFAULT_NOTES_FILE),
    )

    wt_path = _pick(worktree_path, settings.worktree_path, None)
    git_config = WorktreeConfig(
        use_worktree=_pick(worktree, settings.use_worktree, False),
        branch_name=_pick(branch, settings.branch_name, None),
        worktree_path=resolve_path(cwd, wt_path) if wt_path else None,
        base_branch=_pick(base_branch, settings.base_branch, DEFAULT_BASE_BRANCH),
    )

    body_path = settings.pr_body_path
    pr_config = PrConfig(
        enable=_pick(pr, settings.pr_enable, False),
        title=_pick(pr_title, settings.pr_title, None),
        body_path=resolve_path(cwd, body_path) if body_path else None,
        draft=_pick(pr_draft, settings.pr_draft, False),
        reviewers=tuple(pr_reviewers or settings.pr_reviewers),
    )

    return LoopConfig(
        task=task,
        workflow_files=files,
        cwd=cwd,
        iterations=_pick(iterations, settings.iterations, DEFAULT_ITERATIONS),
        stop_signal=_pick(stop_signal, settings.stop_signal, snapshot.get("FUXI_STOP_SIGNAL") or DEFAULT_STOP_SIGNAL),
        ai=ai,
        git=git_config,
        tests=TestConfig(
            unit_command=_pick(unit_cmd, settings.unit_command, None),
            e2e_command=_pick(e2e_cmd, settings.e2e_command, None),
        ),
        pr=pr_config,
        verbose=verbose,
        run_tests=run_tests,
        run_e2e=run_e2e,
        run_quality=run_quality,
        auto_commit=auto_commit,
        auto_push=auto_push,
    )


@app.command()
def run(
    ctx: typer.Context,
    task: str = typer.Option(..., "--task", "-t", help="Task description handed to the agent."),
    iterations: Optional[int] = typer.Option(
        None, "--iterations", "-n", min=0, help=f"Number of iterations (default: {DEFAULT_ITERATIONS})."
    ),
    stop_signal: Optional[str] = typer.Option(
        None, "--stop-signal", help="Text in agent output that ends the loop early."
    ),
    ai_command: Optional[str] = typer.Option(None, "--ai-command", help="AI CLI executable (default: claude)."),
    ai_args: Optional[str] = typer.Option(
        None, "--ai-args", help='Arguments for the AI CLI as one string, e.g. "--model opus".'
    ),
    ai_prompt_arg: Optional[str] = typer.Option(
        None, "--ai-prompt-arg", help="Flag that precedes the prompt; without it the prompt goes to stdin."
    ),
    ai_env: Optional[List[str]] = typer.Option(
        None, "--ai-env", help="KEY=VALUE environment override for the AI CLI (repeatable)."
    ),
    agent_log: Optional[Path] = typer.Option(
        None, "--agent-log", help="Log file the agent writes to; followed while it runs."
    ),
    workflow_doc: Optional[str] = typer.Option(None, "--workflow-doc", help="Workflow guide file."),
    plan_file: Optional[str] = typer.Option(None, "--plan-file", help="Plan checklist file."),
    notes_file: Optional[str] = typer.Option(None, "--notes-file", help="Persistent notes file."),
    unit_cmd: Optional[str] = typer.Option(None, "--unit-cmd", help="Unit test command."),
    e2e_cmd: Optional[str] = typer.Option(None, "--e2e-cmd", help="End-to-end test command."),
    run_tests: bool = typer.Option(False, "--run-tests", help="Run unit tests after each iteration."),
    run_e2e: bool = typer.Option(False, "--run-e2e", help="Run e2e tests after each iteration."),
    run_quality: bool = typer.Option(
        False, "--run-quality", help="Run detected lint/typecheck/format checks after each iteration."
    ),
    worktree: Optional[bool] = typer.Option(
        None, "--worktree/--no-worktree", help="Work in a dedicated git worktree."
    ),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch to work on."),
    worktree_path: Optional[Path] = typer.Option(None, "--worktree-path", help="Where to create the worktree."),
    base_branch: Optional[str] = typer.Option(None, "--base-branch", help="Base for a new worktree branch."),
    auto_commit: bool = typer.Option(False, "--auto-commit", help="Commit all changes after the loop."),
    auto_push: bool = typer.Option(False, "--auto-push", help="Push the branch after the loop."),
    pr: Optional[bool] = typer.Option(None, "--pr/--no-pr", help="Open a pull request after the loop."),
    pr_title: Optional[str] = typer.Option(None, "--pr-title", help="Pull request title."),
    pr_draft: Optional[bool] = typer.Option(None, "--pr-draft/--no-pr-draft", help="Open the PR as a draft."),
    pr_reviewer: Optional[List[str]] = typer.Option(None, "--pr-reviewer", help="PR reviewer (repeatable)."),
    cwd: Optional[Path] = typer.Option(None, "--cwd", help="Directory inside the target repository."),
    mock: bool = typer.Option(False, "--mock", "-m", help="Do not call the AI CLI; use canned output."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose output."),
) -> None:
    """Run the iteration loop against the current repository.

    Examples:
        fuxi run --task "add pagination to the API" -n 5 --run-tests

        fuxi run --task "fix flaky tests" --worktree --auto-commit --auto-push --pr
    """
    setup_logging(verbose)
    snapshot = _env(ctx)

    work_root = (cwd or Path.cwd()).resolve()
    if not work_root.exists():
        console.print(f"[red]Error:[/red] Directory does not exist: {work_root}")
        raise typer.Exit(1)

    try:
        settings = ProjectSettings.load_from_file(work_root)
        config = build_loop_config(
            task=task,
            cwd=work_root,
            settings=settings,
            snapshot=snapshot,
            iterations=iterations,
            stop_signal=stop_signal,
            ai_command=ai_command,
            ai_args=ai_args,
            ai_prompt_arg=ai_prompt_arg,
            ai_env=ai_env,
            agent_log=agent_log,
            workflow_doc=workflow_doc,
            plan_file=plan_file,
            notes_file=notes_file,
            unit_cmd=unit_cmd,
            e2e_cmd=e2e_cmd,
            worktree=worktree,
            branch=branch,
            worktree_path=worktree_path,
            base_branch=base_branch,
            pr=pr,
            pr_title=pr_title,
            pr_draft=pr_draft,
            pr_reviewers=pr_reviewer,
            run_tests=run_tests,
            run_e2e=run_e2e,
            run_quality=run_quality,
            auto_commit=auto_commit,
            auto_push=auto_push,
            verbose=verbose,
        )

        agent = MockAgentRunner(env_snapshot=snapshot) if mock else AgentRunner(env_snapshot=snapshot)

        if config.git.use_worktree and not config.git.branch_name:
            suggested = None if mock else suggest_branch_name(config.task, config.ai, work_root, agent)
            chosen = suggested or generate_branch_name()
            config = _with_branch(config, chosen)

        _display_config(config, mock)
        result = run_loop(config, agent=agent)
    except FuxiError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    _display_results(result)


def _with_branch(config: LoopConfig, branch_name: str) -> LoopConfig:
    return replace(config, git=replace(config.git, branch_name=branch_name))


def _display_config(config: LoopConfig, mock: bool) -> None:
    console.print("\n[bold]Starting fuxi loop[/bold]")
    console.print(f"[dim]Task:[/dim] {escape(config.task)}")
    console.print(f"[dim]Repository:[/dim] {config.cwd}")
    console.print(f"[dim]Iterations:[/dim] {config.iterations}")
    console.print(f"[dim]Stop signal:[/dim] {escape(config.stop_signal)}")
    console.print(f"[dim]AI command:[/dim] {'mock' if mock else config.ai.command}")
    console.print(f"[dim]Plan:[/dim] {config.workflow_files.plan_file}")
    console.print(f"[dim]Notes:[/dim] {config.workflow_files.notes_file}")
    if config.git.use_worktree:
        console.print(f"[dim]Worktree branch:[/dim] {config.git.branch_name}")
    console.print()


def _display_results(result: LoopResult) -> None:
    table = Table(title="Loop Summary")
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    table.add_row("Iterations", str(result.iterations_completed))
    table.add_row("Stop signal seen", "yes" if result.stop_signal_seen else "no")
    table.add_row("Working directory", str(result.work_dir or ""))
    table.add_row("Branch", result.branch_name or "-")
    table.add_row("Pull request", result.pr_url or "-")
    for step in result.steps:
        status = "[green]ok[/green]" if step.success else f"[yellow]failed[/yellow] {step.error or ''}"
        table.add_row(step.name, status)
    console.print(table)


@app.command()
def alias(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Alias name."),
    command: str = typer.Option(..., "--command", "-c", help="Arguments the alias expands to."),
) -> None:
    """Create or update an alias in the global config."""
    snapshot = _env(ctx)
    path = global_config_path(snapshot)
    if not name.strip() or any(ch.isspace() for ch in name) or "=" in name:
        console.print(f"[red]Error:[/red] Invalid alias name: {name!r}")
        raise typer.Exit(1)

    content = update_alias_content(load_global_config_text(path), name, command)
    save_global_config_text(path, content)
    console.print(f"[green]Saved alias[/green] {escape(name)} -> {escape(command)}", highlight=False)
    console.print(f"[dim]{path}[/dim]")


@app.command("aliases")
def list_aliases(ctx: typer.Context) -> None:
    """List aliases and the shortcut from the global config."""
    path = global_config_path(_env(ctx))
    entries = parse_alias_entries(load_global_config_text(path))
    if not entries:
        console.print(f"[yellow]No aliases configured in {path}[/yellow]")
        return

    table = Table(title="Aliases")
    table.add_column("Name", style="cyan")
    table.add_column("Command")
    table.add_column("Source", style="dim")
    for entry in entries:
        table.add_row(escape(entry.name), escape(entry.command), entry.source)
    console.print(table)


@app.command("plan")
def show_plan(
    plan_file: Optional[Path] = typer.Option(None, "--plan-file", help="Plan checklist file."),
    show_all: bool = typer.Option(False, "--all", "-a", help="Include completed items."),
    cwd: Optional[Path] = typer.Option(None, "--cwd", help="Project directory."),
) -> None:
    """Show the plan checklist and what is still pending."""
    work_root = (cwd or Path.cwd()).resolve()
    settings = ProjectSettings.load_from_file(work_root)
    path = resolve_path(work_root, plan_file or settings.plan_file or DEFAULT_PLAN_FILE)
    text = read_file_safe(path)
    if not text.strip():
        console.print(f"[yellow]Plan is empty or missing: {path}[/yellow]")
        return

    summary = summarize_plan(text)
    table = Table(title=f"Plan ({summary.completed}/{summary.total} done)")
    table.add_column("Line", justify="right", style="dim")
    table.add_column("Status")
    table.add_column("Item")
    for item in parse_plan_items(text):
        if item.completed and not show_all:
            continue
        status = "[green]done[/green]" if item.completed else "[yellow]pending[/yellow]"
        table.add_row(str(item.index + 1), status, escape(item.text))
    console.print(table)


@app.command()
def tail(
    file: Path = typer.Argument(..., help="File to follow."),
    from_end: bool = typer.Option(False, "--from-end", help="Skip existing content."),
    interval: float = typer.Option(DEFAULT_POLL_INTERVAL, "--interval", help="Poll interval in seconds."),
) -> None:
    """Follow a log file until interrupted."""
    tailer = tail_log_file(
        file,
        lambda line: console.print(line, markup=False, highlight=False),
        start_from_end=from_end,
        poll_interval=interval,
        on_error=lambda message: console.print(f"[yellow]{escape(message)}[/yellow]"),
    )
    try:
        while not tailer.stopped:
            time.sleep(interval)
    except KeyboardInterrupt:
        pass
    finally:
        tailer.stop()


def main(argv: Optional[list[str]] = None) -> None:
    """Console-script entry point: expand aliases, then dispatch."""
    load_dotenv()
    snapshot = snapshot_env()
    args = list(sys.argv[1:] if argv is None else argv)
    app(args=expand_aliases(args, snapshot), prog_name="fuxi", obj={"env": snapshot})


if __name__ == "__main__":
    main()
