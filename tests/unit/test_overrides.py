"""Unit tests for per-day action overrides."""

from __future__ import annotations

from clarity.journal.models import Action
from clarity.journal.overrides import (
    DayOverride,
    add_manual_action,
    apply_overrides,
    dump_overrides,
    load_overrides,
    toggle_action,
)

ACTIONS = [Action(name="Coffee", type="caffeine"), Action(name="Ibuprofen", type="medication")]


def test_apply_without_override_confirms_all():
    resolved = apply_overrides(ACTIONS, None)
    assert [(r.action.name, r.status) for r in resolved] == [
        ("Coffee", "confirmed"),
        ("Ibuprofen", "confirmed"),
    ]


def test_toggle_marks_removed_and_back():
    overrides = toggle_action({}, "2026-01-01", "COFFEE")
    resolved = apply_overrides(ACTIONS, overrides["2026-01-01"])
    assert resolved[0].status == "removed"

    restored = toggle_action(overrides, "2026-01-01", "coffee")
    assert restored["2026-01-01"].removed == []


def test_toggle_does_not_mutate_input():
    original = {"2026-01-01": DayOverride(removed=["coffee"])}
    toggle_action(original, "2026-01-01", "coffee")
    assert original["2026-01-01"].removed == ["coffee"]


def test_manual_additions_follow_and_skip_duplicates():
    overrides = add_manual_action({}, "2026-01-01", " Walk ", "30 min")
    overrides = add_manual_action(overrides, "2026-01-01", "coffee")
    resolved = apply_overrides(ACTIONS, overrides["2026-01-01"])

    assert [(r.action.name, r.status) for r in resolved] == [
        ("Coffee", "confirmed"),
        ("Ibuprofen", "confirmed"),
        ("Walk", "manual"),
    ]
    assert resolved[2].action.detail == "30 min"


def test_blank_manual_action_ignored():
    assert add_manual_action({}, "2026-01-01", "   ") == {}


def test_stored_map_round_trip_skips_malformed_days():
    stored = dump_overrides(add_manual_action({}, "2026-01-01", "Walk"))
    stored["2026-01-02"] = "garbage"

    loaded = load_overrides(stored)

    assert list(loaded) == ["2026-01-01"]
    assert loaded["2026-01-01"].added[0].name == "Walk"
    assert load_overrides(None) == {}
