"""Environment handling for the AI command-line tool.

The process environment is captured once at startup as an immutable
snapshot. Everything downstream receives that snapshot explicitly instead of
reading ``os.environ`` again.
"""

from __future__ import annotations

import os
import re
from types import MappingProxyType
from typing import Mapping, Optional

from .errors import EnvFormatError

EnvSnapshot = Mapping[str, str]

ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_env_key(key: str) -> bool:
    """Return True if ``key`` is a legal environment variable name."""
    return bool(ENV_KEY_PATTERN.match(key))


def parse_env_pairs(pairs: list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a mapping.

    The first ``=`` separates key from value, so values may contain ``=``
    themselves.

    Args:
        pairs: Strings of the form ``KEY=VALUE``.

    Returns:
        Mapping with one entry per pair.

    Raises:
        EnvFormatError: If a pair has no ``=``, an empty key, or an
            invalid variable name.
    """
    env: dict[str, str] = {}
    for pair in pairs:
        index = pair.find("=")
        if index <= 0:
            raise EnvFormatError(f"Invalid AI environment variable: {pair!r}, expected KEY=VALUE")
        key = pair[:index].strip()
        if not is_valid_env_key(key):
            raise EnvFormatError(f"Invalid AI environment variable name: {key!r}")
        env[key] = pair[index + 1:]
    return env


def merge_env(*sources: Mapping[str, str]) -> dict[str, str]:
    """Merge mappings left to right; later sources win."""
    merged: dict[str, str] = {}
    for source in sources:
        merged.update(source)
    return merged


def snapshot_env(base: Optional[Mapping[str, str]] = None) -> EnvSnapshot:
    """Capture a read-only copy of the process environment."""
    source = os.environ if base is None else base
    return MappingProxyType({k: v for k, v in source.items() if isinstance(v, str)})


def build_ai_env(
    snapshot: EnvSnapshot,
    overrides: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build the environment handed to the AI command-line tool."""
    return merge_env(snapshot, overrides or {})
