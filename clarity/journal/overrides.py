"""
User overrides on extracted actions.

Overrides live in a separate map keyed by date ({"removed": [...], "added": [...]})
and are applied when listing a day's actions. The extracted list is never edited.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from clarity.journal.models import Action, coerce_items


class ActionStatus(str, Enum):
    CONFIRMED = "confirmed"
    REMOVED = "removed"
    MANUAL = "manual"


class DayOverride(BaseModel):
    removed: list[str] = Field(default_factory=list)
    added: list[Action] = Field(default_factory=list)


class ResolvedAction(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    action: Action
    status: ActionStatus


OverrideMap = dict[str, DayOverride]


def load_overrides(raw: Any) -> OverrideMap:
    """Parse a stored override map, skipping malformed days."""
    if not isinstance(raw, Mapping):
        return {}
    result: OverrideMap = {}
    for date, value in raw.items():
        if not isinstance(value, Mapping):
            continue
        removed = [str(r).lower() for r in value.get("removed") or [] if r]
        result[str(date)] = DayOverride(
            removed=removed, added=coerce_items(value.get("added"), Action, "override")
        )
    return result


def dump_overrides(overrides: OverrideMap) -> dict[str, Any]:
    return {date: day.model_dump() for date, day in overrides.items()}


def apply_overrides(actions: list[Action], override: DayOverride | None) -> list[ResolvedAction]:
    """
    Resolve the visible action list for one day.

    Extracted actions keep their order and are marked removed when toggled off;
    manual additions follow, skipping names already present.

    Side Effects:
        None (pure function)
    """
    override = override or DayOverride()
    removed = set(override.removed)
    seen: set[str] = set()
    resolved: list[ResolvedAction] = []

    for action in actions:
        key = action.name.lower()
        status = ActionStatus.REMOVED if key in removed else ActionStatus.CONFIRMED
        resolved.append(ResolvedAction(action=action, status=status))
        seen.add(key)

    for action in override.added:
        key = action.name.lower()
        if key in seen:
            continue
        resolved.append(ResolvedAction(action=action, status=ActionStatus.MANUAL))
        seen.add(key)

    return resolved


def toggle_action(overrides: OverrideMap, date: str, name: str) -> OverrideMap:
    """Return a new map with `name` flipped between active and removed for `date`."""
    current = overrides.get(date, DayOverride())
    key = name.lower()
    if key in current.removed:
        removed = [r for r in current.removed if r != key]
    else:
        removed = [*current.removed, key]
    return {**overrides, date: DayOverride(removed=removed, added=list(current.added))}


def add_manual_action(
    overrides: OverrideMap, date: str, name: str, detail: str | None = None
) -> OverrideMap:
    """Return a new map with a manually added action for `date`. Blank names are ignored."""
    if not name or not name.strip():
        return dict(overrides)
    current = overrides.get(date, DayOverride())
    action = Action(name=name.strip(), detail=(detail or "").strip() or None, type="other")
    return {
        **overrides,
        date: DayOverride(removed=list(current.removed), added=[*current.added, action]),
    }
