"""Global alias and shortcut configuration.

The global config file uses a small line-oriented format::

    # comment
    [alias]
    daily = "--task \\"write docs\\" --run-tests"   # trailing comment

    [shortcut]
    name = "quick"
    command = "--run-e2e"

Values are double-quoted strings where ``\\"`` and ``\\\\`` are escapes.
Unknown sections and keys are ignored so newer files stay readable by older
versions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

logger = logging.getLogger(__name__)

AliasSource = Literal["alias", "shortcut"]

ALIAS_SECTION = "alias"
SHORTCUT_SECTION = "shortcut"

_SECTION_PATTERN = re.compile(r"^\[([^\]]+)\]$")
_LINE_SPLIT = re.compile(r"\r?\n")


@dataclass(frozen=True)
class ShortcutConfig:
    """The single legacy shortcut entry."""

    name: str
    command: str


@dataclass(frozen=True)
class GlobalConfig:
    """Parsed global configuration. ``shortcut`` is None when not configured."""

    shortcut: Optional[ShortcutConfig] = None


@dataclass(frozen=True)
class AliasEntry:
    """A named command-line expansion."""

    name: str
    command: str
    source: AliasSource


def _strip_comment(text: str) -> str:
    index = text.find("#")
    return text if index < 0 else text[:index]


def _read_quoted(text: str) -> Optional[tuple[str, str]]:
    """Read a double-quoted string at the start of ``text``.

    Returns the unescaped value and the remainder after the closing quote,
    or None if the string is not terminated.
    """
    chars: list[str] = []
    i = 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt in ('"', "\\"):
                chars.append(nxt)
            else:
                chars.append(ch + nxt)
            i += 2
            continue
        if ch == '"':
            return "".join(chars), text[i + 1:]
        chars.append(ch)
        i += 1
    return None


def _parse_assignment(line: str) -> Optional[tuple[str, str]]:
    """Parse ``key = value`` into a (key, value) pair, or None."""
    if "=" not in line:
        return None
    key, _, rest = line.partition("=")
    key = key.strip()
    if not key or key.startswith("#"):
        return None
    rest = rest.strip()
    if rest.startswith('"'):
        quoted = _read_quoted(rest)
        if quoted is None:
            return None
        value, remainder = quoted
        remainder = remainder.strip()
        if remainder and not remainder.startswith("#"):
            return None
        return key, value
    return key, _strip_comment(rest).strip()


def _parse_section(line: str) -> Optional[str]:
    match = _SECTION_PATTERN.match(_strip_comment(line).strip())
    return match.group(1).strip() if match else None


def _iter_assignments(text: str):
    """Yield (section, key, value) for every assignment in ``text``."""
    section: Optional[str] = None
    for line in _LINE_SPLIT.split(text):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        header = _parse_section(stripped)
        if header is not None:
            section = header
            continue
        assignment = _parse_assignment(stripped)
        if assignment is None:
            logger.debug(f"Ignoring unrecognized config line: {stripped}")
            continue
        yield section, assignment[0], assignment[1]


def parse_global_config(text: str) -> GlobalConfig:
    """Parse the ``[shortcut]`` section.

    The shortcut is returned only when both ``name`` and ``command`` are
    present; a partial definition counts as no shortcut.
    """
    fields: dict[str, str] = {}
    for section, key, value in _iter_assignments(text):
        if section == SHORTCUT_SECTION and key in ("name", "command"):
            fields[key] = value
    name = fields.get("name")
    command = fields.get("command")
    if name and command is not None:
        return GlobalConfig(shortcut=ShortcutConfig(name=name, command=command))
    return GlobalConfig()


def parse_alias_entries(text: str) -> list[AliasEntry]:
    """Collect ``[alias]`` entries in order, then the shortcut if complete."""
    aliases: dict[str, str] = {}
    for section, key, value in _iter_assignments(text):
        if section == ALIAS_SECTION:
            aliases[key] = value

    entries = [AliasEntry(name=name, command=command, source="alias") for name, command in aliases.items()]
    shortcut = parse_global_config(text).shortcut
    if shortcut is not None:
        entries.append(AliasEntry(name=shortcut.name, command=shortcut.command, source="shortcut"))
    return entries


def split_command_args(command: str) -> list[str]:
    """Split a command string on whitespace, honoring double quotes.

    Quotes group words into one token and are removed. Inside quotes a
    backslash escapes the next character.
    """
    args: list[str] = []
    current: list[str] = []
    in_quotes = False
    has_token = False
    i = 0
    while i < len(command):
        ch = command[i]
        if in_quotes:
            if ch == "\\" and i + 1 < len(command):
                current.append(command[i + 1])
                i += 2
                continue
            if ch == '"':
                in_quotes = False
            else:
                current.append(ch)
        elif ch == '"':
            in_quotes = True
            has_token = True
        elif ch.isspace():
            if has_token:
                args.append("".join(current))
                current = []
                has_token = False
        else:
            current.append(ch)
            has_token = True
        i += 1
    if has_token:
        args.append("".join(current))
    return args


def _quote_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def join_command_args(args: list[str]) -> str:
    """Join tokens so that :func:`split_command_args` reproduces them."""
    parts = []
    for arg in args:
        if not arg or '"' in arg or any(ch.isspace() for ch in arg):
            parts.append(_quote_value(arg))
        else:
            parts.append(arg)
    return " ".join(parts)


def _expand_argv(argv: list[str], command: str) -> list[str]:
    return [*argv[:2], *split_command_args(command), *argv[3:]]


def apply_shortcut_argv(argv: list[str], config: GlobalConfig) -> list[str]:
    """Expand the configured shortcut in ``argv``.

    ``argv[0]`` and ``argv[1]`` are the interpreter and script and are kept
    as-is; ``argv[2]`` is the candidate shortcut name.
    """
    shortcut = config.shortcut
    if shortcut is None or len(argv) < 3 or argv[2] != shortcut.name:
        return list(argv)
    return _expand_argv(argv, shortcut.command)


def apply_alias_argv(argv: list[str], entries: list[AliasEntry]) -> list[str]:
    """Expand the first alias or shortcut whose name matches ``argv[2]``."""
    if len(argv) < 3:
        return list(argv)
    for entry in entries:
        if entry.name == argv[2]:
            return _expand_argv(argv, entry.command)
    return list(argv)


def update_alias_content(existing: str, name: str, command: str) -> str:
    """Return config text with ``name`` bound to ``command`` under ``[alias]``.

    An existing key is replaced in place; a new key goes at the end of the
    ``[alias]`` section. Without an ``[alias]`` section one is prepended.
    All other lines are kept verbatim, and CRLF files keep CRLF endings.
    """
    entry_line = f"{name} = {_quote_value(command)}"
    newline = "\r\n" if "\r\n" in existing else "\n"
    lines = _LINE_SPLIT.split(existing) if existing else []

    header_index = next(
        (i for i, line in enumerate(lines) if _parse_section(line) == ALIAS_SECTION),
        None,
    )

    if header_index is None:
        if any(line.strip() for line in lines):
            lines = ["[alias]", entry_line, "", *lines]
        else:
            lines = ["[alias]", entry_line]
    else:
        end = len(lines)
        for i in range(header_index + 1, len(lines)):
            if _parse_section(lines[i]) is not None:
                end = i
                break

        replaced = False
        last_content = header_index
        for i in range(header_index + 1, end):
            stripped = lines[i].strip()
            if not stripped:
                continue
            last_content = i
            if stripped.startswith("#"):
                continue
            assignment = _parse_assignment(stripped)
            if assignment is not None and assignment[0] == name:
                lines[i] = entry_line
                replaced = True

        if not replaced:
            lines.insert(last_content + 1, entry_line)

    return newline.join(lines).rstrip("\r\n") + newline


def load_global_config_text(path: Path) -> str:
    """Read the global config file, returning '' if it does not exist."""
    try:
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return ""


def save_global_config_text(path: Path, text: str) -> None:
    """Write the global config file, creating its directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="")
