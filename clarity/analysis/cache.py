"""
Two-tier cache of per-day analyses.

Local snapshot: one JSON document {date: DayAnalysis payload} per user, written
synchronously. Remote: one `day_analyses` row per (user_id, date), written in the
background. On load the remote wins per date; dates only known locally survive.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Mapping
from typing import Any

from clarity.config import DAY_SUMMARIES_KEY
from clarity.errors import RemoteStoreError, Result
from clarity.journal.models import DayAnalysis, normalize_day_analysis
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event
from clarity.storage.background import BackgroundWriter
from clarity.storage.local import KeyValueStore, scoped_key
from clarity.storage.remote import RemoteTable

logger = get_logger(__name__)

REMOTE_WRITE_EVENT = "cache.remote_write_failed"


def to_remote_row(user_id: str, date: str, analysis: DayAnalysis) -> dict[str, Any]:
    """Remote column layout. Actions are stored under the `substances` column."""
    return {
        "user_id": user_id,
        "date": date,
        "summary": analysis.summary,
        "insight": analysis.insight,
        "substances": [a.model_dump() for a in analysis.actions],
        "entries_hash": analysis.entries_hash,
    }


def _normalize_snapshot(raw: Any) -> dict[str, DayAnalysis]:
    if not isinstance(raw, Mapping):
        return {}
    result: dict[str, DayAnalysis] = {}
    for date, record in raw.items():
        analysis = normalize_day_analysis(record)
        if analysis is not None:
            result[str(date)] = analysis
    return result


class AnalysisCache:
    """Per-user cache of DayAnalysis records, constructed once per session."""

    def __init__(
        self,
        user_id: str,
        local: KeyValueStore,
        remote: RemoteTable | None = None,
        writer: BackgroundWriter | None = None,
    ) -> None:
        self.user_id = user_id
        self.local = local
        self.remote = remote
        # Threaded writers belong to the caller, which closes them.
        self.writer = writer or BackgroundWriter(inline=True)
        self._key = scoped_key(DAY_SUMMARIES_KEY, user_id)

    def get_local(self) -> dict[str, DayAnalysis]:
        """Local snapshot only; used for immediate reads before remote sync completes."""
        return _normalize_snapshot(self.local.get(self._key, {}))

    def get(self) -> dict[str, DayAnalysis]:
        """
        Merge the local snapshot with the remote rows and persist the result locally.

        Raises:
            LocalPersistenceError: If the merged snapshot cannot be written.

        Side Effects:
            - Reads the remote table (failures are logged, local snapshot is used)
            - Overwrites the local snapshot with the merged view
        """
        merged = self.get_local()

        remote_rows: list[dict[str, Any]] = []
        if self.remote is not None:
            try:
                remote_rows = self.remote.select(self.user_id)
            except RemoteStoreError as e:
                counter("cache.remote_read_failed")
                logger.warning("Remote day analyses unavailable, using local snapshot: %s", e)

        for row in remote_rows:
            date = row.get("date")
            analysis = normalize_day_analysis(row)
            if date and analysis is not None:
                merged[str(date)] = analysis

        self._write_local(merged)
        counter("cache.loaded")
        return merged

    def put(self, date: str, analysis: DayAnalysis) -> concurrent.futures.Future[Result[Any]] | None:
        """
        Store one day's analysis: local now, remote in the background.

        Returns the background task's future (None when no remote is configured).

        Raises:
            LocalPersistenceError: If the local snapshot write fails.
        """
        snapshot = self.get_local()
        snapshot[date] = analysis
        self._write_local(snapshot)

        if self.remote is None:
            return None
        return self.writer.submit(
            f"day_analysis:{date}",
            self.remote.upsert,
            [to_remote_row(self.user_id, date, analysis)],
            event=REMOTE_WRITE_EVENT,
        )

    def clear(self) -> concurrent.futures.Future[Result[Any]] | None:
        """Drop local and remote state for this user."""
        self.local.delete(self._key)
        log_event("cache.cleared")
        if self.remote is None:
            return None
        return self.writer.submit(
            "day_analysis:clear", self.remote.delete, self.user_id, event=REMOTE_WRITE_EVENT
        )

    def _write_local(self, snapshot: Mapping[str, DayAnalysis]) -> None:
        self.local.set(self._key, {date: a.to_payload() for date, a in sorted(snapshot.items())})
