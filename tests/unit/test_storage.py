"""Unit tests for local snapshots, remote tables and the background writer."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest
import requests

from clarity.errors import LocalPersistenceError, RemoteStoreError
from clarity.observability.telemetry import get_counter
from clarity.storage.background import BackgroundWriter
from clarity.storage.local import MemoryKeyValueStore, SqliteKeyValueStore, scoped_key
from clarity.storage.remote import MemoryRemoteTable, SupabaseTable


def test_scoped_key():
    assert scoped_key("clarity_alerts", "u1") == "clarity_alerts:u1"
    assert scoped_key("clarity_alerts", None) == "clarity_alerts"


class TestMemoryKeyValueStore:
    def test_values_are_copies(self):
        store = MemoryKeyValueStore()
        value = {"a": [1]}
        store.set("k", value)
        value["a"].append(2)
        assert store.get("k") == {"a": [1]}

    def test_unserializable_value_raises(self):
        with pytest.raises(LocalPersistenceError):
            MemoryKeyValueStore().set("k", object())


class TestSqliteKeyValueStore:
    @pytest.fixture
    def store(self, tmp_path):
        s = SqliteKeyValueStore(tmp_path / "nested" / "clarity.db")
        yield s
        s.close()

    def test_set_get_overwrite_delete(self, store):
        assert store.get("missing", "default") == "default"
        store.set("k", {"v": 1})
        store.set("k", {"v": 2})
        assert store.get("k") == {"v": 2}
        store.delete("k")
        assert store.get("k") is None

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "clarity.db"
        first = SqliteKeyValueStore(path)
        first.set("k", [1, 2, 3])
        first.close()

        second = SqliteKeyValueStore(path)
        assert second.get("k") == [1, 2, 3]
        second.close()

    def test_corrupt_value_returns_default(self, store):
        with sqlite3.connect(store.db_path) as conn:
            conn.execute(
                "INSERT INTO kv_snapshots (key, value, updated_at) VALUES (?, ?, datetime('now'))",
                ("bad", "{not json"),
            )
        assert store.get("bad", {}) == {}
        assert get_counter("local_store.corrupt_value") == 1


class TestMemoryRemoteTable:
    def test_upsert_merges_on_conflict_columns(self):
        table = MemoryRemoteTable("day_analyses", ("user_id", "date"))
        table.upsert([{"user_id": "u1", "date": "2026-01-01", "summary": "a", "insight": "x"}])
        table.upsert([{"user_id": "u1", "date": "2026-01-01", "summary": "b"}])
        table.upsert([{"user_id": "u2", "date": "2026-01-01", "summary": "other"}])

        assert table.select("u1") == [
            {"user_id": "u1", "date": "2026-01-01", "summary": "b", "insight": "x"}
        ]

    def test_delete_is_user_scoped(self):
        table = MemoryRemoteTable("user_reminders", ("user_id",))
        table.upsert([{"user_id": "u1"}, {"user_id": "u2"}])
        table.delete("u1")
        assert table.select("u1") == []
        assert len(table.select("u2")) == 1

    def test_simulated_outage(self):
        table = MemoryRemoteTable("user_reminders", ("user_id",))
        table.fail_writes = True
        with pytest.raises(RemoteStoreError):
            table.upsert([{"user_id": "u1"}])


class TestSupabaseTable:
    def _table(self, response=None, side_effect=None):
        session = MagicMock()
        session.request.return_value = response
        session.request.side_effect = side_effect
        table = SupabaseTable(
            "day_analyses", ("user_id", "date"), "https://db.example", "key", session=session
        )
        return table, session

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            SupabaseTable("day_analyses", ("user_id",), base_url="", api_key="")

    def test_upsert_request_shape(self):
        table, session = self._table(MagicMock(status_code=201))

        table.upsert([{"user_id": "u1", "date": "2026-01-01"}])

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", "https://db.example/rest/v1/day_analyses")
        assert kwargs["params"] == {"on_conflict": "user_id,date"}
        assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates,return=minimal"
        assert kwargs["headers"]["Authorization"] == "Bearer key"

    def test_empty_upsert_sends_nothing(self):
        table, session = self._table()
        table.upsert([])
        session.request.assert_not_called()

    def test_select_filters_by_user(self):
        response = MagicMock(status_code=200)
        response.json.return_value = [{"user_id": "u1", "date": "2026-01-01"}, "junk"]
        table, session = self._table(response)

        rows = table.select("u1")

        assert rows == [{"user_id": "u1", "date": "2026-01-01"}]
        assert session.request.call_args.kwargs["params"]["user_id"] == "eq.u1"

    def test_http_error_raises(self):
        table, _ = self._table(MagicMock(status_code=500))
        with pytest.raises(RemoteStoreError):
            table.delete("u1")
        assert get_counter("remote.day_analyses.http_error") == 1

    def test_network_error_raises(self):
        table, _ = self._table(side_effect=requests.ConnectionError("down"))
        with pytest.raises(RemoteStoreError):
            table.select("u1")


class TestBackgroundWriter:
    def test_inline_success(self):
        writer = BackgroundWriter(inline=True)
        result = writer.submit("task", lambda x: x * 2, 21).result()
        assert result.ok and result.value == 42

    def test_failure_goes_to_dead_letters(self):
        writer = BackgroundWriter(inline=True)

        def fail():
            raise RemoteStoreError("offline")

        result = writer.submit("alerts:state", fail, event="alerts.remote_write_failed").result()

        assert not result.ok
        assert [d.label for d in writer.dead_letters] == ["alerts:state"]
        assert get_counter("alerts.remote_write_failed") == 1

    def test_threaded_writes_run_in_order(self):
        writer = BackgroundWriter()
        seen: list[int] = []
        for i in range(5):
            writer.submit(f"t{i}", seen.append, i)
        writer.flush(timeout=5)
        writer.shutdown()
        assert seen == [0, 1, 2, 3, 4]

    def test_dead_letters_are_bounded(self):
        writer = BackgroundWriter(inline=True, max_dead_letters=2)

        def fail():
            raise RemoteStoreError("offline")

        for i in range(4):
            writer.submit(f"t{i}", fail)
        assert [d.label for d in writer.dead_letters] == ["t2", "t3"]
