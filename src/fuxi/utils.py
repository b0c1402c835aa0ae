"""File and process helpers shared across fuxi."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of running an external command."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr output."""
        return f"{self.stdout}\n{self.stderr}".strip()


def iso_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def ensure_file(path: Path, default_content: str) -> bool:
    """Create ``path`` with ``default_content`` unless it already exists.

    Returns:
        True if the file was created.
    """
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_content, encoding="utf-8")
    logger.debug(f"Created {path}")
    return True


def read_file_safe(path: Path) -> str:
    """Read a text file, returning '' if it does not exist."""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def append_section(path: Path, section: str) -> None:
    """Append ``section`` to ``path`` separated from prior content by a blank line."""
    existing = read_file_safe(path)
    if not existing:
        separator = ""
    elif existing.endswith("\n\n"):
        separator = ""
    elif existing.endswith("\n"):
        separator = "\n"
    else:
        separator = "\n\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(separator + section.rstrip("\n") + "\n")


def run_command(
    args: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """Run a command and capture its output.

    Raises:
        FileNotFoundError: If the executable does not exist.
        subprocess.TimeoutExpired: If ``timeout`` elapses.
    """
    logger.debug(f"Running: {' '.join(args)}")
    result = subprocess.run(
        list(args),
        cwd=cwd,
        env=dict(env) if env is not None else None,
        input=input_text,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
    )
    return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)
