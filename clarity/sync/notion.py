"""
Notes-workspace (Notion) sync.

NotionClient wraps the four REST calls the app needs. NotionSync layers the
journaling semantics on top: pull new pages as entries, push entries as pages,
best-effort auto-sync on save, and duplicate cleanup. Every sequential loop
goes through one IntervalScheduler to stay under ~3 requests per second.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import requests

from clarity.config import (
    NOTION_API_BASE,
    NOTION_DEFAULT_TITLE_PROPERTY,
    NOTION_PACING_SECONDS,
    NOTION_PAGE_SIZE,
    NOTION_PUSH_BATCH,
    NOTION_RICH_TEXT_LIMIT,
    NOTION_SYNC_MAP_KEY,
    NOTION_VERSION,
    REMOTE_TIMEOUT_SECONDS,
)
from clarity.errors import ClarityError, CollaboratorError, Result
from clarity.infrastructure.pacing import IntervalScheduler
from clarity.journal.hashing import normalize_text
from clarity.journal.models import JournalEntry
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event
from clarity.storage.local import KeyValueStore, scoped_key

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


def split_rich_text(text: str | None) -> list[dict[str, Any]]:
    """Chunk text into rich-text items of at most NOTION_RICH_TEXT_LIMIT characters."""
    text = text or ""
    if len(text) <= NOTION_RICH_TEXT_LIMIT:
        return [{"text": {"content": text}}]
    return [
        {"text": {"content": text[i : i + NOTION_RICH_TEXT_LIMIT]}}
        for i in range(0, len(text), NOTION_RICH_TEXT_LIMIT)
    ]


def page_title(page: Mapping[str, Any]) -> str:
    """Plain text of a page's title property, whatever that property is called."""
    properties = page.get("properties") or {}
    for prop in properties.values():
        if isinstance(prop, Mapping) and prop.get("type") == "title":
            return "".join(part.get("plain_text") or "" for part in prop.get("title") or [])
    return ""


def _created_at(page: Mapping[str, Any]) -> datetime:
    raw = str(page.get("created_time") or "")
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone(UTC)
    except ValueError:
        return datetime.max.replace(tzinfo=UTC)


class NotionClient:
    """Minimal REST client. Every non-success status raises CollaboratorError."""

    def __init__(
        self,
        token: str,
        session: requests.Session | None = None,
        base_url: str = NOTION_API_BASE,
        version: str = NOTION_VERSION,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
    ) -> None:
        if not token:
            raise ValueError("Notion token is required")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Notion-Version": version,
        }

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers,
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            counter("notion.unreachable")
            raise CollaboratorError(f"Notion unreachable: {type(e).__name__}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            counter("notion.http_error")
            message = data.get("message") if isinstance(data, dict) else None
            raise CollaboratorError(
                message or f"Notion API error {response.status_code}",
                status_code=response.status_code,
            )
        return data if isinstance(data, dict) else {}

    def test(self, database_id: str) -> dict[str, Any]:
        """Database title, detected title property and property names."""
        data = self._request("GET", f"/databases/{database_id}")
        properties = data.get("properties") or {}
        title_property = next(
            (name for name, prop in properties.items() if prop.get("type") == "title"), "Title"
        )
        title = data.get("title") or []
        return {
            "ok": True,
            "title": (title[0].get("plain_text") if title else None) or "Untitled",
            "title_property": title_property,
            "properties": list(properties),
        }

    def query(self, database_id: str, cursor: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "page_size": NOTION_PAGE_SIZE,
            "sorts": [{"timestamp": "created_time", "direction": "descending"}],
        }
        if cursor:
            body["start_cursor"] = cursor
        data = self._request("POST", f"/databases/{database_id}/query", body)
        return {
            "results": data.get("results") or [],
            "has_more": bool(data.get("has_more")),
            "next_cursor": data.get("next_cursor"),
        }

    def create_page(self, database_id: str, title_property: str, text: str) -> str:
        data = self._request(
            "POST",
            "/pages",
            {
                "parent": {"database_id": database_id},
                "properties": {title_property: {"title": split_rich_text(text)}},
            },
        )
        page_id = data.get("id")
        if not page_id:
            raise CollaboratorError("Notion created a page without an id")
        return page_id

    def archive_page(self, page_id: str) -> str:
        data = self._request("PATCH", f"/pages/{page_id}", {"archived": True})
        return data.get("id") or page_id


@dataclass(frozen=True)
class PulledEntry:
    text: str
    entry_date: str
    entry_time: str
    notion_page_id: str


@dataclass(frozen=True)
class PushSummary:
    pushed: int
    total: int
    already_synced: int
    failed: int = 0


@dataclass(frozen=True)
class CleanupSummary:
    total: int
    duplicates: int
    archived: int
    failed: int


class NotionSync:
    """Sync between the journal and one Notion database, for one user."""

    def __init__(
        self,
        client: NotionClient,
        database_id: str,
        local: KeyValueStore,
        user_id: str | None = None,
        title_property: str = NOTION_DEFAULT_TITLE_PROPERTY,
        pacer: IntervalScheduler | None = None,
    ) -> None:
        self.client = client
        self.database_id = database_id
        self.local = local
        self.title_property = title_property
        self.pacer = pacer or IntervalScheduler(NOTION_PACING_SECONDS, name="notion")
        self._map_key = scoped_key(NOTION_SYNC_MAP_KEY, user_id)

    # entry id -> page id
    def sync_map(self) -> dict[str, str]:
        raw = self.local.get(self._map_key, {})
        return {str(k): str(v) for k, v in raw.items()} if isinstance(raw, Mapping) else {}

    def _save_map(self, sync_map: Mapping[str, str]) -> None:
        self.local.set(self._map_key, dict(sync_map))

    def query_all(self) -> list[dict[str, Any]]:
        """Every page of the database, following cursors with pacing between calls."""
        pages: list[dict[str, Any]] = []
        cursor = None
        self.pacer.reset()
        while True:
            self.pacer.wait()
            result = self.client.query(self.database_id, cursor)
            pages.extend(result["results"])
            if not result["has_more"] or not result["next_cursor"]:
                return pages
            cursor = result["next_cursor"]

    def pull_new_entries(self, existing: Iterable[JournalEntry]) -> list[PulledEntry]:
        """
        Pages that are neither pushed from here nor already present as entry text.

        Dedup is by trimmed, lower-cased text, against existing entries and within
        the pull itself.

        Raises:
            CollaboratorError: Query failed (user-initiated, so it propagates).
        """
        synced_pages = set(self.sync_map().values())
        seen_texts = {normalize_text(e.text) for e in existing}

        pulled: list[PulledEntry] = []
        for page in self.query_all():
            if page.get("id") in synced_pages:
                continue
            text = page_title(page)
            key = normalize_text(text)
            if not key or key in seen_texts:
                continue
            seen_texts.add(key)

            created = _created_at(page)
            pulled.append(
                PulledEntry(
                    text=text,
                    entry_date=created.strftime("%Y-%m-%d"),
                    entry_time=created.strftime("%H:%M"),
                    notion_page_id=str(page["id"]),
                )
            )
        counter("notion.pulled", len(pulled))
        return pulled

    def push_entries(
        self, entries: Sequence[JournalEntry], on_progress: ProgressCallback | None = None
    ) -> PushSummary:
        """
        Create pages for entries not in the sync map, NOTION_PUSH_BATCH at a time.

        The sync map is saved after every batch. A page that fails to create is
        counted and retried on the next push.
        """
        sync_map = self.sync_map()
        to_sync = [e for e in entries if e.id not in sync_map]
        if not to_sync:
            return PushSummary(pushed=0, total=0, already_synced=len(entries))

        pushed = failed = 0
        self.pacer.reset()
        for start in range(0, len(to_sync), NOTION_PUSH_BATCH):
            for entry in to_sync[start : start + NOTION_PUSH_BATCH]:
                self.pacer.wait()
                try:
                    sync_map[entry.id] = self.client.create_page(
                        self.database_id, self.title_property, entry.text
                    )
                    pushed += 1
                except CollaboratorError as e:
                    failed += 1
                    counter("notion.push_failed")
                    logger.warning("Notion push failed for entry %s: %s", entry.id, e)
            self._save_map(sync_map)
            if on_progress:
                on_progress(pushed, len(to_sync))

        return PushSummary(
            pushed=pushed,
            total=len(to_sync),
            already_synced=len(entries) - len(to_sync),
            failed=failed,
        )

    def auto_sync_entry(self, entry: JournalEntry) -> Result[str | None]:
        """Push one freshly saved entry. Never raises; the caller decides what to do with errors."""
        try:
            sync_map = self.sync_map()
            if entry.id in sync_map:
                return Result.success(sync_map[entry.id])
            page_id = self.client.create_page(self.database_id, self.title_property, entry.text)
            sync_map[entry.id] = page_id
            self._save_map(sync_map)
            counter("notion.auto_synced")
            return Result.success(page_id)
        except ClarityError as e:
            counter("notion.auto_sync_failed")
            logger.info("Auto-sync of entry %s skipped: %s", entry.id, e)
            return Result.failure(e)

    def cleanup_duplicates(self, on_progress: ProgressCallback | None = None) -> CleanupSummary:
        """
        Archive pages whose title duplicates an older page's title.

        Raises:
            CollaboratorError: The initial query failed. Individual archive
                failures are counted, not raised.
        """
        pages = self.query_all()
        groups: dict[str, list[dict[str, Any]]] = {}
        for page in pages:
            key = normalize_text(page_title(page))
            if key:
                groups.setdefault(key, []).append(page)

        to_archive: list[str] = []
        for group in groups.values():
            if len(group) > 1:
                group.sort(key=_created_at)
                to_archive.extend(str(p["id"]) for p in group[1:])

        archived = failed = 0
        self.pacer.reset()
        for page_id in to_archive:
            self.pacer.wait()
            try:
                self.client.archive_page(page_id)
                archived += 1
                log_event("notion.page_archived", page_id=page_id)
            except CollaboratorError as e:
                failed += 1
                counter("notion.archive_failed")
                logger.warning("Archiving Notion page %s failed: %s", page_id, e)
            if on_progress:
                on_progress(archived, len(to_archive))

        return CleanupSummary(
            total=len(pages), duplicates=len(to_archive), archived=archived, failed=failed
        )
