"""Exception types raised by fuxi."""

from __future__ import annotations


class FuxiError(Exception):
    """Base class for all fuxi errors."""

    pass


class EnvFormatError(FuxiError):
    """Raised when an environment override is not a valid KEY=VALUE pair."""

    pass


class AgentError(FuxiError):
    """Raised when the AI command-line tool cannot be run or fails."""

    pass


class GitOpsError(FuxiError):
    """Raised for source-control operations that cannot complete."""

    pass


class GhError(FuxiError):
    """Raised when the GitHub CLI fails or returns unusable output."""

    pass


class CommandError(FuxiError):
    """Raised when a shell command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        message = output.strip() or f"Command exited with code {exit_code}"
        super().__init__(f"{command}: {message}")
