"""Detection of code-quality commands available in a project."""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

YARN_SCRIPTS = ("lint", "lint:ci", "lint:check", "typecheck", "format:check", "format:ci")


@dataclass(frozen=True)
class QualityCommand:
    """A named quality-check command."""

    name: str
    command: str


def _has_script(scripts: dict, name: str) -> bool:
    value = scripts.get(name)
    return isinstance(value, str) and bool(value.strip())


def _package_scripts(work_dir: Path) -> dict:
    package_path = work_dir / "package.json"
    if not package_path.exists():
        return {}
    try:
        data = json.loads(package_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning(f"Could not read {package_path}: {exc}")
        return {}
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


def _pyproject_tools(work_dir: Path) -> dict:
    pyproject_path = work_dir / "pyproject.toml"
    if not pyproject_path.exists():
        return {}
    try:
        data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        logger.warning(f"Could not read {pyproject_path}: {exc}")
        return {}
    tools = data.get("tool")
    return tools if isinstance(tools, dict) else {}


def detect_quality_commands(work_dir: Path) -> list[QualityCommand]:
    """List quality checks declared by ``package.json`` or ``pyproject.toml``."""
    commands: list[QualityCommand] = []
    seen: set[str] = set()

    def append(name: str, command: str) -> None:
        if name in seen:
            return
        commands.append(QualityCommand(name=name, command=command))
        seen.add(name)

    scripts = _package_scripts(work_dir)
    for name in YARN_SCRIPTS:
        if _has_script(scripts, name):
            append(name, f"yarn {name}")
    if (
        _has_script(scripts, "format")
        and not _has_script(scripts, "format:check")
        and not _has_script(scripts, "format:ci")
    ):
        append("format", "yarn format")

    tools = _pyproject_tools(work_dir)
    if "ruff" in tools:
        append("ruff", "ruff check .")
    if "mypy" in tools:
        append("mypy", "mypy .")

    return commands
