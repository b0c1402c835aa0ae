"""Checklist parsing for the plan document."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

DONE_GLYPH = "✅"

ITEM_PATTERN = re.compile(r"^(\s*)([-*+]|\d+\.)\s+(.*)$")
CHECKED_BOX_PATTERN = re.compile(r"\[[xX]\]")
ANY_BOX_PATTERN = re.compile(r"\[[xX ]\]\s*")
_LINE_SPLIT = re.compile(r"\r?\n")


@dataclass(frozen=True)
class PlanItem:
    """One checklist entry from the plan."""

    index: int  # zero-based line number in the plan text
    raw: str
    text: str
    completed: bool


@dataclass(frozen=True)
class PlanSummary:
    """Counts of plan items by state."""

    total: int
    completed: int
    pending: int


def is_completed(content: str) -> bool:
    """Return True if the item content carries a done marker."""
    return DONE_GLYPH in content or bool(CHECKED_BOX_PATTERN.search(content))


def normalize_text(content: str) -> str:
    """Strip checkbox markers and the done glyph from item content."""
    text = ANY_BOX_PATTERN.sub("", content)
    return text.replace(DONE_GLYPH, "").strip()


def parse_plan_items(plan: str) -> list[PlanItem]:
    """Parse list items from the plan text.

    Bulleted (``-``, ``*``, ``+``) and numbered (``1.``) lines become items;
    headings, prose and blank lines are skipped. Items whose text is empty
    once markers are removed are dropped.
    """
    items: list[PlanItem] = []
    for index, line in enumerate(_LINE_SPLIT.split(plan)):
        match = ITEM_PATTERN.match(line)
        if not match:
            continue
        content = match.group(3)
        text = normalize_text(content)
        if not text:
            continue
        items.append(PlanItem(index=index, raw=line, text=text, completed=is_completed(content)))
    return items


def get_pending_plan_items(plan: str) -> list[PlanItem]:
    """Items not yet completed, in document order."""
    return [item for item in parse_plan_items(plan) if not item.completed]


def get_last_pending_plan_item(plan: str) -> Optional[PlanItem]:
    """The last pending item, or None when nothing is pending."""
    pending = get_pending_plan_items(plan)
    return pending[-1] if pending else None


def summarize_plan(plan: str) -> PlanSummary:
    items = parse_plan_items(plan)
    completed = sum(1 for item in items if item.completed)
    return PlanSummary(total=len(items), completed=completed, pending=len(items) - completed)
