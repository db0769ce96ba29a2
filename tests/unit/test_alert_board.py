"""Unit tests for AlertBoard generation cycles, dismissals and ordering."""

from __future__ import annotations

from datetime import date

import pytest

from clarity.analysis.alerts import AlertBoard, alert_window, notifiable, sort_alerts
from clarity.analysis.alerts import FULL
from clarity.analysis.cross_day import CrossDayAnalyzer
from clarity.errors import ModelRequestError, OperationInFlight, ParseFailure
from clarity.journal.models import Alert
from clarity.observability.telemetry import get_counter

TODAY = date(2026, 1, 14)


def _payload(*texts: str, date_: str = "2026-01-10", **kw) -> dict:
    return {"alerts": [{"text": t, "source_dates": [date_], **kw} for t in texts]}


@pytest.fixture
def board(gateway, local_store, state_table, writer):
    return AlertBoard("u1", CrossDayAnalyzer(gateway), local_store, state_table, writer)


@pytest.fixture
def entries(make_entry):
    return [
        make_entry("Old entry", "2025-12-01", id="old"),
        make_entry("Coffee late", "2026-01-10", "16:00", id="e1"),
        make_entry("Slept 5h", "2026-01-11", "07:00", id="e2"),
    ]


def test_window_is_last_fourteen_days(entries):
    assert [e.id for e in alert_window(entries, TODAY)] == ["e1", "e2"]


def test_regenerate_replaces_and_records_processed(board, transport, entries):
    transport.reply_json(_payload("Caffeine after 16:00"))

    active = board.regenerate(entries, {}, TODAY)

    assert [a.text for a in active] == ["Caffeine after 16:00"]
    assert board.state.processed_ids == {"e1", "e2"}
    assert not board.is_stale(entries, TODAY)
    assert "Old entry" not in transport.prompts[0]


def test_update_sends_only_pending_entries(board, transport, entries, make_entry):
    transport.reply_json(_payload("First")).reply_json(_payload("First", "Second"))
    board.regenerate(entries, {}, TODAY)
    newer = [*entries, make_entry("Headache after lunch", "2026-01-12", "14:00", id="e3")]

    active = board.update(newer, {}, TODAY)

    assert sorted(a.text for a in active) == ["First", "Second"]
    assert "Headache after lunch" in transport.prompts[1]
    assert "Coffee late" not in transport.prompts[1]
    assert board.state.processed_ids == {"e1", "e2", "e3"}


def test_update_without_pending_entries_is_noop(board, transport, entries):
    transport.reply_json(_payload("First"))
    board.regenerate(entries, {}, TODAY)

    board.update(entries, {}, TODAY)

    assert len(transport.calls) == 1
    assert get_counter("alerts.update_noop") == 1


def test_failed_update_does_not_advance_processed_ids(board, transport, entries, make_entry):
    transport.reply_json(_payload("First"))
    board.regenerate(entries, {}, TODAY)
    newer = [*entries, make_entry("New entry", "2026-01-12", id="e3")]
    transport.reply_text("broken output")

    with pytest.raises(ParseFailure):
        board.update(newer, {}, TODAY)

    assert board.state.processed_ids == {"e1", "e2"}
    assert [a.text for a in board.state.alerts] == ["First"]

    transport.reply_json(_payload("Second"))
    board.update(newer, {}, TODAY)
    assert "New entry" in transport.prompts[-1]
    assert "e3" in board.state.processed_ids


def test_failed_regenerate_keeps_previous_alerts(board, transport, entries):
    transport.reply_json(_payload("Keep me")).reply_status(400)
    board.regenerate(entries, {}, TODAY)

    with pytest.raises(ModelRequestError):
        board.regenerate(entries, {}, TODAY)

    assert [a.text for a in board.active()] == ["Keep me"]


def test_scan_missed_merges_by_key(board, transport, entries):
    transport.reply_json(_payload("Existing")).reply_json(_payload("existing", "Missed one"))
    board.regenerate(entries, {}, TODAY)

    active = board.scan_missed(entries, {}, TODAY)

    assert sorted(a.text for a in active) == ["Existing", "Missed one"]
    assert "- Existing" in transport.prompts[1]


def test_overlapping_cycles_rejected(board, entries):
    with board.guard.hold(FULL):
        with pytest.raises(OperationInFlight):
            board.update(entries, {}, TODAY)
        with pytest.raises(OperationInFlight):
            board.scan_missed(entries, {}, TODAY)
    assert not board.guard.is_busy()


def test_dismissal_pruned_on_regenerate_and_restored_later(board, transport, entries):
    transport.reply_json(_payload("Sleep debt", "Walks help"))
    board.regenerate(entries, {}, TODAY)
    sleep_debt = next(a for a in board.active() if a.text == "Sleep debt")

    board.dismiss(sleep_debt.key)
    assert [a.text for a in board.active()] == ["Walks help"]

    transport.reply_json(_payload("Walks help"))
    board.regenerate(entries, {}, TODAY)
    assert sleep_debt.key not in board.state.dismissed

    transport.reply_json(_payload("Sleep debt", "Walks help"))
    board.regenerate(entries, {}, TODAY)
    assert "Sleep debt" in [a.text for a in board.active()]


def test_dismissal_survives_regenerate_when_alert_remains(board, transport, entries):
    transport.reply_json(_payload("Sleep debt")).reply_json(_payload("Sleep debt"))
    board.regenerate(entries, {}, TODAY)
    board.dismiss(board.active()[0].key)

    board.regenerate(entries, {}, TODAY)

    assert board.active() == []


def test_state_is_mirrored_and_reloaded(board, transport, entries, gateway, local_store, state_table, writer):
    transport.reply_json(_payload("Mirrored"))
    board.regenerate(entries, {}, TODAY)
    [row] = state_table.select("u1")
    assert row["reminders"]["alerts"][0]["text"] == "Mirrored"

    fresh_device = AlertBoard(
        "u1", CrossDayAnalyzer(gateway), type(local_store)(), state_table, writer
    )
    assert [a.text for a in fresh_device.load()] == ["Mirrored"]
    assert fresh_device.state.processed_ids == {"e1", "e2"}


def test_load_migrates_legacy_remote_payload(board, state_table):
    state_table.upsert(
        [{"user_id": "u1", "reminders": {"suggestions": [{"text": "Legacy tip", "type": "info"}],
                                          "reminders": [{"text": "Buy milk"}]}}]
    )
    assert [(a.text, a.type) for a in board.load()] == [("Legacy tip", "pattern")]


def test_remote_outage_does_not_block(board, transport, entries, state_table):
    state_table.fail_writes = True
    transport.reply_json(_payload("Local only"))

    board.regenerate(entries, {}, TODAY)

    assert [a.text for a in board.active()] == ["Local only"]
    assert get_counter("alerts.remote_write_failed") == 1


class TestOrdering:
    def test_sort_by_severity_then_type(self):
        alerts = [
            Alert(text="a", type="positive", severity="high"),
            Alert(text="b", type="pattern", severity="low"),
            Alert(text="c", type="warning", severity="medium"),
            Alert(text="d", type="medication", severity="high"),
            Alert(text="e", type="answer", severity="high"),
        ]
        assert [a.text for a in sort_alerts(alerts)] == ["d", "e", "a", "c", "b"]

    def test_notifiable_selection(self):
        alerts = [
            Alert(text=f"w{i}", type="warning", severity="high", source_dates=["2026-01-01"])
            for i in range(5)
        ] + [Alert(text="p", type="pattern", severity="high")]
        dismissed = {alerts[0].key}
        sent = {alerts[1].key}

        selected = notifiable(alerts, dismissed, sent)

        assert [a.text for a in selected] == ["w2", "w3", "w4"]

    def test_board_mark_notified(self, board, transport, entries):
        transport.reply_json(_payload("Urgent", type="medication", severity="high"))
        board.regenerate(entries, {}, TODAY)
        keys = [a.key for a in board.notifiable()]
        assert len(keys) == 1

        board.mark_notified(keys)

        assert board.notifiable() == []


def test_pending_entries_excludes_processed(board, transport, entries, make_entry):
    transport.reply_json(_payload("First"))
    board.regenerate(entries, {}, TODAY)
    newer = [*entries, make_entry("Later", "2026-01-13", id="e4")]
    assert [e.id for e in board.pending_entries(newer, TODAY)] == ["e4"]
    assert board.is_stale(newer, TODAY)


def test_report_only_row_keeps_local_alerts(
    board, transport, entries, state_table, gateway, local_store, writer
):
    state_table.fail_writes = True
    transport.reply_json(_payload("Caffeine headaches"))
    board.regenerate(entries, {}, TODAY)
    state_table.fail_writes = False
    state_table.upsert([{"user_id": "u1", "insights": {"executive_summary": "Fine"}}])

    reopened = AlertBoard("u1", CrossDayAnalyzer(gateway), local_store, state_table, writer)

    assert [a.text for a in reopened.load()] == ["Caffeine headaches"]
    assert reopened.state.processed_ids == {"e1", "e2"}
    assert get_counter("alerts.remote_row_without_alerts") == 1


def test_remote_row_without_processed_ids_keeps_local_ones(board, transport, entries, state_table):
    transport.reply_json(_payload("Local"))
    board.regenerate(entries, {}, TODAY)
    state_table.upsert(
        [{"user_id": "u1", "reminders": {"alerts": [{"text": "Remote"}]}, "processed_ids": None}]
    )

    assert [a.text for a in board.load()] == ["Remote"]
    assert board.state.processed_ids == {"e1", "e2"}
