"""Unit tests for the Notion client and journal sync."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from clarity.errors import CollaboratorError
from clarity.infrastructure.pacing import IntervalScheduler
from clarity.observability.telemetry import get_counter
from clarity.sync.notion import NotionClient, NotionSync, page_title, split_rich_text


def _page(page_id: str, title: str, created: str = "2026-01-05T08:30:00.000Z") -> dict:
    return {
        "id": page_id,
        "created_time": created,
        "properties": {
            "Annotazione": {"type": "title", "title": [{"plain_text": title}]},
            "Tags": {"type": "multi_select"},
        },
    }


class FakeNotionClient:
    def __init__(self, pages=(), page_size: int = 100) -> None:
        self.pages = list(pages)
        self.page_size = page_size
        self.created: list[str] = []
        self.archived: list[str] = []
        self.fail_create_for: set[str] = set()
        self.fail_archive_for: set[str] = set()
        self.queries: list[str | None] = []

    def query(self, database_id, cursor=None):
        self.queries.append(cursor)
        start = int(cursor or 0)
        chunk = self.pages[start : start + self.page_size]
        end = start + len(chunk)
        has_more = end < len(self.pages)
        return {"results": chunk, "has_more": has_more, "next_cursor": str(end) if has_more else None}

    def create_page(self, database_id, title_property, text):
        if text in self.fail_create_for:
            raise CollaboratorError("rate limited", status_code=429)
        self.created.append(text)
        return f"page-{len(self.created)}"

    def archive_page(self, page_id):
        if page_id in self.fail_archive_for:
            raise CollaboratorError("conflict", status_code=409)
        self.archived.append(page_id)
        return page_id


@pytest.fixture
def pacer(sleeps):
    return IntervalScheduler(0.35, sleep_fn=sleeps.append, name="notion")


def _sync(client, local_store, pacer):
    return NotionSync(client, "db1", local_store, user_id="u1", pacer=pacer)


def test_split_rich_text_chunks_long_text():
    chunks = split_rich_text("x" * 4500)
    assert [len(c["text"]["content"]) for c in chunks] == [2000, 2000, 500]
    assert split_rich_text(None) == [{"text": {"content": ""}}]


def test_page_title_uses_whatever_property_is_the_title():
    assert page_title(_page("p1", "Hello")) == "Hello"
    assert page_title({"properties": {}}) == ""


class TestPull:
    def test_pull_skips_known_pages_and_duplicate_text(self, local_store, pacer, make_entry):
        client = FakeNotionClient(
            [
                _page("p1", "Already here"),
                _page("p2", "Pushed from app"),
                _page("p3", "New thought", "2026-01-06T21:15:00Z"),
                _page("p4", "  new THOUGHT "),
                _page("p5", ""),
            ]
        )
        sync = _sync(client, local_store, pacer)
        sync._save_map({"e9": "p2"})

        pulled = sync.pull_new_entries([make_entry(" already HERE")])

        assert [(p.text, p.entry_date, p.entry_time, p.notion_page_id) for p in pulled] == [
            ("New thought", "2026-01-06", "21:15", "p3")
        ]

    def test_pull_follows_cursors_with_pacing(self, local_store, pacer, sleeps):
        client = FakeNotionClient([_page(f"p{i}", f"note {i}") for i in range(5)], page_size=2)

        pulled = _sync(client, local_store, pacer).pull_new_entries([])

        assert len(pulled) == 5
        assert client.queries == [None, "2", "4"]
        assert len(sleeps) == 2

    def test_pull_failure_propagates(self, local_store, pacer):
        client = MagicMock()
        client.query.side_effect = CollaboratorError("unauthorized", status_code=401)
        with pytest.raises(CollaboratorError):
            _sync(client, local_store, pacer).pull_new_entries([])


class TestPush:
    def test_push_in_batches_saves_map_and_reports_progress(self, local_store, pacer, make_entry):
        client = FakeNotionClient()
        sync = _sync(client, local_store, pacer)
        entries = [make_entry(f"entry {i}", id=f"e{i}") for i in range(12)]
        sync._save_map({"e0": "old-page"})
        progress: list[tuple[int, int]] = []

        summary = sync.push_entries(entries, on_progress=lambda done, total: progress.append((done, total)))

        assert (summary.pushed, summary.total, summary.already_synced, summary.failed) == (11, 11, 1, 0)
        assert progress == [(10, 11), (11, 11)]
        assert len(sync.sync_map()) == 12
        assert "entry 0" not in client.created

    def test_push_failure_is_counted_and_retried_later(self, local_store, pacer, make_entry):
        client = FakeNotionClient()
        client.fail_create_for = {"flaky"}
        sync = _sync(client, local_store, pacer)
        entries = [make_entry("ok", id="a"), make_entry("flaky", id="b")]

        summary = sync.push_entries(entries)

        assert (summary.pushed, summary.failed) == (1, 1)
        assert "b" not in sync.sync_map()
        assert get_counter("notion.push_failed") == 1

        client.fail_create_for = set()
        assert sync.push_entries(entries).pushed == 1

    def test_nothing_to_push(self, local_store, pacer, make_entry):
        sync = _sync(FakeNotionClient(), local_store, pacer)
        sync._save_map({"a": "p"})
        summary = sync.push_entries([make_entry("x", id="a")])
        assert (summary.pushed, summary.total, summary.already_synced) == (0, 0, 1)


class TestAutoSync:
    def test_auto_sync_records_page(self, local_store, pacer, make_entry):
        sync = _sync(FakeNotionClient(), local_store, pacer)
        result = sync.auto_sync_entry(make_entry("hello", id="a"))
        assert result.ok and result.value == "page-1"
        assert sync.sync_map() == {"a": "page-1"}

    def test_auto_sync_already_synced(self, local_store, pacer, make_entry):
        client = FakeNotionClient()
        sync = _sync(client, local_store, pacer)
        sync._save_map({"a": "existing"})
        assert sync.auto_sync_entry(make_entry("hello", id="a")).value == "existing"
        assert client.created == []

    def test_auto_sync_never_raises(self, local_store, pacer, make_entry):
        client = FakeNotionClient()
        client.fail_create_for = {"hello"}
        result = _sync(client, local_store, pacer).auto_sync_entry(make_entry("hello", id="a"))
        assert not result.ok
        assert get_counter("notion.auto_sync_failed") == 1


class TestCleanup:
    def test_archives_newer_duplicates(self, local_store, pacer):
        client = FakeNotionClient(
            [
                _page("new", "Same text", "2026-01-07T10:00:00Z"),
                _page("old", "same TEXT", "2026-01-01T10:00:00Z"),
                _page("mid", "Same text", "2026-01-03T10:00:00Z"),
                _page("solo", "Unique", "2026-01-02T10:00:00Z"),
            ]
        )
        client.fail_archive_for = {"mid"}

        summary = _sync(client, local_store, pacer).cleanup_duplicates()

        assert (summary.total, summary.duplicates, summary.archived, summary.failed) == (4, 2, 1, 1)
        assert client.archived == ["new"]


class TestNotionClient:
    def _client(self, response=None, side_effect=None):
        session = MagicMock()
        session.request.return_value = response
        session.request.side_effect = side_effect
        return NotionClient("secret", session=session), session

    def _response(self, status: int, body: dict) -> MagicMock:
        response = MagicMock(status_code=status, ok=status < 400)
        response.json.return_value = body
        return response

    def test_requires_token(self):
        with pytest.raises(ValueError):
            NotionClient("")

    def test_database_test_detects_title_property(self):
        body = {
            "title": [{"plain_text": "Journal"}],
            "properties": {"Annotazione": {"type": "title"}, "Date": {"type": "date"}},
        }
        client, session = self._client(self._response(200, body))

        info = client.test("db1")

        assert info == {
            "ok": True,
            "title": "Journal",
            "title_property": "Annotazione",
            "properties": ["Annotazione", "Date"],
        }
        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        assert headers["Notion-Version"] == "2022-06-28"

    def test_query_passes_cursor(self):
        client, session = self._client(self._response(200, {"results": [], "has_more": False}))
        client.query("db1", cursor="abc")
        body = session.request.call_args.kwargs["json"]
        assert body["start_cursor"] == "abc"
        assert body["page_size"] == 100

    def test_error_status_carries_message(self):
        client, _ = self._client(self._response(404, {"message": "Could not find database"}))
        with pytest.raises(CollaboratorError) as excinfo:
            client.query("db1")
        assert excinfo.value.status_code == 404
        assert "Could not find database" in str(excinfo.value)

    def test_network_error_has_no_status(self):
        client, _ = self._client(side_effect=requests.ConnectionError("down"))
        with pytest.raises(CollaboratorError) as excinfo:
            client.archive_page("p1")
        assert excinfo.value.status_code is None
