"""AI command-line tool integration.

Builds the per-iteration prompt, runs the configured AI CLI with it, and
formats the record appended to the notes file afterwards.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from jinja2 import Template

from .config import AiCliConfig
from .env import EnvSnapshot, build_ai_env, snapshot_env
from .errors import AgentError
from .log_tailer import tail_log_file
from .utils import run_command

logger = logging.getLogger(__name__)


PROMPT_TEMPLATE = """# Background Task
{{ task }}

# Workflow Guide
{{ workflow_guide }}

# Current Plan
{{ plan }}

# Persistent Notes
{{ notes }}

# Iteration {{ iteration }}
This is iteration {{ iteration }} of an ongoing loop. Read the plan and notes above,
pick the next unfinished plan item, implement it, and run the relevant checks.
Update the plan file as you go: mark finished items with [x] and add newly
discovered work as unchecked items.
{%- if stop_signal %}
When every plan item is finished and verified, print {{ stop_signal }} on its own line.
{%- endif %}
"""

RECORD_TEMPLATE = """## Iteration {{ record.iteration }} | {{ record.timestamp }}

### Prompt

{{ record.prompt }}

### AI Output

{{ record.ai_output }}
"""

BRANCH_PROMPT_TEMPLATE = """Suggest a git branch name for the following task.

Task: {{ task }}

Use the form <type>/<short-slug> where type is one of: {{ types }}.
Respond with JSON only, for example {"branch": "feat/add-login-page"}.
"""

BRANCH_TYPES = ("feat", "fix", "chore", "docs", "refactor", "test", "perf", "ci", "build", "style")
BRANCH_TYPE_ALIASES = {
    "feature": "feat",
    "features": "feat",
    "bugfix": "fix",
    "hotfix": "fix",
    "bug": "fix",
    "doc": "docs",
    "tests": "test",
    "refactoring": "refactor",
}
MIN_BRANCH_SLUG_LENGTH = 3

_BRANCH_IN_TEXT = re.compile(r"([A-Za-z]+)/([A-Za-z0-9][A-Za-z0-9._\-]*[A-Za-z0-9])")
_JSON_OBJECT = re.compile(r"\{.*?\}", re.DOTALL)


@dataclass(frozen=True)
class IterationRecord:
    """One loop iteration as persisted to the notes file."""

    iteration: int
    prompt: str
    ai_output: str
    timestamp: str


def build_prompt(
    task: str,
    workflow_guide: str,
    plan: str,
    notes: str,
    iteration: int,
    stop_signal: Optional[str] = None,
) -> str:
    """Render the prompt for one iteration."""
    return Template(PROMPT_TEMPLATE).render(
        task=task.strip(),
        workflow_guide=workflow_guide.strip(),
        plan=plan.strip(),
        notes=notes.strip(),
        iteration=iteration,
        stop_signal=stop_signal,
    )


def format_iteration_record(record: IterationRecord) -> str:
    """Render an iteration record as a markdown section for the notes file."""
    return Template(RECORD_TEMPLATE).render(record=record).rstrip() + "\n"


def _normalize_slug(slug: str) -> str:
    slug = slug.strip().lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9.\-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-.")


def _normalize_branch(candidate: str) -> Optional[str]:
    if "/" not in candidate:
        return None
    branch_type, _, slug = candidate.strip().partition("/")
    branch_type = branch_type.strip().lower()
    branch_type = BRANCH_TYPE_ALIASES.get(branch_type, branch_type)
    if branch_type not in BRANCH_TYPES:
        return None
    slug = _normalize_slug(slug)
    if len(slug) < MIN_BRANCH_SLUG_LENGTH:
        return None
    return f"{branch_type}/{slug}"


def parse_branch_name(output: str) -> Optional[str]:
    """Extract a conventional ``type/slug`` branch name from AI output.

    Accepts a JSON object with a ``branch`` key or free text containing
    ``type/slug``. Returns None if nothing valid is found.
    """
    for match in _JSON_OBJECT.finditer(output):
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and isinstance(data.get("branch"), str):
            return _normalize_branch(data["branch"])

    for match in _BRANCH_IN_TEXT.finditer(output):
        branch = _normalize_branch(f"{match.group(1)}/{match.group(2)}")
        if branch:
            return branch
    return None


class AgentRunner:
    """Runs the AI command-line tool for a prompt."""

    def __init__(self, env_snapshot: Optional[EnvSnapshot] = None):
        """Initialize the runner.

        Args:
            env_snapshot: Base environment for the child process. Captured
                from the current process when omitted.
        """
        self.env_snapshot = env_snapshot if env_snapshot is not None else snapshot_env()

    def build_argv(self, prompt: str, ai_config: AiCliConfig) -> list[str]:
        argv = [ai_config.command, *ai_config.args]
        if ai_config.prompt_arg:
            argv.extend([ai_config.prompt_arg, prompt])
        return argv

    def invoke(self, prompt: str, ai_config: AiCliConfig, work_dir: Path) -> str:
        """Send ``prompt`` to the AI CLI and return its output.

        Raises:
            AgentError: If the command is missing or exits non-zero.
        """
        argv = self.build_argv(prompt, ai_config)
        stdin_text = None if ai_config.prompt_arg else prompt
        env = build_ai_env(self.env_snapshot, ai_config.env)

        tailer = None
        if ai_config.log_file is not None:
            tailer = tail_log_file(
                ai_config.log_file,
                lambda line: logger.debug(f"[agent] {line}"),
                start_from_end=True,
                on_error=lambda message: logger.debug(f"Agent log unreadable: {message}"),
            )

        logger.info(f"Invoking {ai_config.command}...")
        logger.debug(f"Prompt: {prompt[:200]}...")
        try:
            result = run_command(argv, cwd=work_dir, env=env, input_text=stdin_text)
        except FileNotFoundError as exc:
            raise AgentError(f"AI command not found in PATH: {ai_config.command}") from exc
        finally:
            if tailer is not None:
                tailer.stop()

        if not result.success:
            message = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
            raise AgentError(f"{ai_config.command} failed: {message}")

        return result.stdout if result.stdout.strip() else result.stderr


class MockAgentRunner(AgentRunner):
    """Agent runner that never spawns a process, for dry runs and tests."""

    def __init__(self, responses: Optional[list[str]] = None, *args, **kwargs):
        """Initialize the mock runner.

        Args:
            responses: Outputs returned in order; the last one repeats.
        """
        super().__init__(*args, **kwargs)
        self.responses = responses or ["Mock iteration completed."]
        self.prompts: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    def invoke(self, prompt: str, ai_config: AiCliConfig, work_dir: Path) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.responses)) - 1
        return self.responses[index]


def suggest_branch_name(
    task: str,
    ai_config: AiCliConfig,
    work_dir: Path,
    runner: AgentRunner,
) -> Optional[str]:
    """Ask the AI CLI for a branch name for ``task``.

    Returns None if the agent fails or its answer is unusable.
    """
    prompt = Template(BRANCH_PROMPT_TEMPLATE).render(task=task.strip(), types=", ".join(BRANCH_TYPES))
    try:
        output = runner.invoke(prompt, ai_config, work_dir)
    except AgentError as exc:
        logger.warning(f"Could not get a branch name from the agent: {exc}")
        return None
    branch = parse_branch_name(output)
    if branch is None:
        logger.warning("Agent did not suggest a usable branch name")
    return branch
