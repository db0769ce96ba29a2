"""
AlertBoard - accumulated alerts for one user.

Three generation cycles share the in-flight guard:
  - regenerate(): full generation over the 14-day window; replaces the list and
    prunes dismissals that no longer match
  - update(): incremental; only entries not yet processed are sent, results are
    merged by derived key
  - scan_missed(): gap scan over the window, told which alerts already exist

Each cycle runs hash -> model -> merge -> persist -> advance processed ids. The
processed set is written last, so an entry is never marked processed unless the
alerts it produced were stored.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from clarity.analysis.cross_day import CrossDayAnalyzer
from clarity.analysis.merge import merge_alerts, prune_dismissed
from clarity.config import (
    ALERT_WINDOW_DAYS,
    ALERTS_DISMISSED_KEY,
    ALERTS_HASH_KEY,
    ALERTS_KEY,
    ALERTS_NOTIFIED_KEY,
    ALERTS_PROCESSED_KEY,
    NOTIFY_MAX_ALERTS,
)
from clarity.errors import RemoteStoreError, Result
from clarity.infrastructure.guards import InFlightGuard
from clarity.journal.hashing import entry_ids_hash
from clarity.journal.models import (
    Alert,
    AlertType,
    DayAnalysis,
    JournalEntry,
    Severity,
    migrate_legacy_alerts,
)
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event
from clarity.storage.background import BackgroundWriter
from clarity.storage.local import KeyValueStore, scoped_key
from clarity.storage.remote import RemoteTable

logger = get_logger(__name__)

FULL = "alerts.full"
INCREMENTAL = "alerts.incremental"
SCAN = "alerts.scan"
_OPERATIONS = (FULL, INCREMENTAL, SCAN)

SEVERITY_ORDER = {Severity.HIGH.value: 0, Severity.MEDIUM.value: 1, Severity.LOW.value: 2}
TYPE_ORDER = {
    AlertType.WARNING.value: 0,
    AlertType.MEDICATION.value: 1,
    AlertType.PATTERN.value: 2,
    AlertType.ANSWER.value: 3,
    AlertType.POSITIVE.value: 4,
}
NOTIFY_TYPES = {AlertType.WARNING.value, AlertType.MEDICATION.value}


def sort_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    """Severity first (high..low), then type (warning, medication, pattern, answer, positive)."""
    return sorted(
        alerts, key=lambda a: (SEVERITY_ORDER.get(a.severity, 3), TYPE_ORDER.get(a.type, 5))
    )


def notifiable(
    alerts: Iterable[Alert], dismissed: Iterable[str], sent: Iterable[str]
) -> list[Alert]:
    """High-severity warning/medication alerts not dismissed and not yet notified, at most 3."""
    excluded = set(dismissed) | set(sent)
    candidates = [
        a
        for a in sort_alerts(alerts)
        if a.severity == Severity.HIGH.value and a.type in NOTIFY_TYPES and a.key not in excluded
    ]
    return candidates[:NOTIFY_MAX_ALERTS]


def alert_window(entries: Iterable[JournalEntry], today: date) -> list[JournalEntry]:
    """Entries dated within the last ALERT_WINDOW_DAYS days, today included."""
    start = (today - timedelta(days=ALERT_WINDOW_DAYS - 1)).isoformat()
    end = today.isoformat()
    return [e for e in entries if start <= e.entry_date <= end]


class AlertState(BaseModel):
    alerts: list[Alert] = Field(default_factory=list)
    entries_hash: str | None = None
    dismissed: set[str] = Field(default_factory=set)
    processed_ids: set[str] = Field(default_factory=set)
    notified: set[str] = Field(default_factory=set)


class AlertBoard:
    """Per-user alert state with guarded generation cycles."""

    def __init__(
        self,
        user_id: str,
        analyzer: CrossDayAnalyzer,
        local: KeyValueStore,
        remote: RemoteTable | None = None,
        writer: BackgroundWriter | None = None,
        guard: InFlightGuard | None = None,
    ) -> None:
        self.user_id = user_id
        self.analyzer = analyzer
        self.local = local
        self.remote = remote
        # Threaded writers belong to the caller, which closes them.
        self.writer = writer or BackgroundWriter(inline=True)
        self.guard = guard or InFlightGuard()
        self.state = self._read_local()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _key(self, key: str) -> str:
        return scoped_key(key, self.user_id)

    def _read_local(self) -> AlertState:
        return AlertState(
            alerts=migrate_legacy_alerts(self.local.get(self._key(ALERTS_KEY))),
            entries_hash=self.local.get(self._key(ALERTS_HASH_KEY)),
            dismissed=set(self.local.get(self._key(ALERTS_DISMISSED_KEY), [])),
            processed_ids=set(self.local.get(self._key(ALERTS_PROCESSED_KEY), [])),
            notified=set(self.local.get(self._key(ALERTS_NOTIFIED_KEY), [])),
        )

    def _save_alerts(self, alerts: Sequence[Alert], dismissed: set[str]) -> None:
        self.local.set(self._key(ALERTS_KEY), {"alerts": [a.model_dump() for a in alerts]})
        self.local.set(self._key(ALERTS_DISMISSED_KEY), sorted(dismissed))
        self.state.alerts = list(alerts)
        self.state.dismissed = set(dismissed)

    def _advance(self, processed_ids: set[str], entries_hash: str | None) -> None:
        self.local.set(self._key(ALERTS_PROCESSED_KEY), sorted(processed_ids))
        self.local.set(self._key(ALERTS_HASH_KEY), entries_hash)
        self.state.processed_ids = set(processed_ids)
        self.state.entries_hash = entries_hash

    def _mirror(self) -> concurrent.futures.Future[Result[Any]] | None:
        if self.remote is None:
            return None
        row = {
            "user_id": self.user_id,
            "reminders": {"alerts": [a.model_dump() for a in self.state.alerts]},
            "dismissed": sorted(self.state.dismissed),
            "processed_ids": sorted(self.state.processed_ids),
            "entries_hash": self.state.entries_hash,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        return self.writer.submit(
            "alerts:state", self.remote.upsert, [row], event="alerts.remote_write_failed"
        )

    def load(self) -> list[Alert]:
        """
        Refresh state from the remote row when it exists (remote wins).

        Side Effects:
            - Reads the remote table; a failure keeps the local state
            - Rewrites the local keys from the remote row when it carries alert state
        """
        if self.remote is not None:
            try:
                rows = self.remote.select(self.user_id)
            except RemoteStoreError as e:
                counter("alerts.remote_read_failed")
                logger.warning("Remote alert state unavailable, using local: %s", e)
                rows = []
            row = rows[0] if rows else {}
            # The row is shared with the global report; a report-only row carries no alert state.
            if row.get("reminders") is not None:
                alerts = migrate_legacy_alerts(row["reminders"])
                remote_dismissed = row.get("dismissed")
                dismissed = set(
                    self.state.dismissed if remote_dismissed is None else remote_dismissed
                )
                self._save_alerts(alerts, dismissed)
                if row.get("processed_ids") is not None:
                    self._advance(set(row["processed_ids"]), row.get("entries_hash"))
            elif row:
                counter("alerts.remote_row_without_alerts")
        return self.active()

    # ------------------------------------------------------------------
    # Generation cycles
    # ------------------------------------------------------------------

    def is_stale(self, entries: Iterable[JournalEntry], today: date) -> bool:
        """True when the window's entry membership changed since the last generation."""
        return entry_ids_hash(alert_window(entries, today)) != self.state.entries_hash

    def pending_entries(self, entries: Iterable[JournalEntry], today: date) -> list[JournalEntry]:
        return [e for e in alert_window(entries, today) if e.id not in self.state.processed_ids]

    def regenerate(
        self, entries: Sequence[JournalEntry], days: Mapping[str, DayAnalysis], today: date
    ) -> list[Alert]:
        """
        Full regeneration over the window. Replaces the stored list.

        Raises:
            OperationInFlight: Another alert cycle is running.
            ClarityError: Generation failed; stored alerts are left untouched.
        """
        with self.guard.hold(FULL, *_OPERATIONS):
            window = alert_window(entries, today)
            fingerprint = entry_ids_hash(window)
            alerts = self.analyzer.alerts(window, days, today.isoformat()) if window else []
            dismissed = prune_dismissed(self.state.dismissed, alerts)
            self._save_alerts(alerts, dismissed)
            self._advance({e.id for e in window}, fingerprint)
            self._mirror()
            log_event("alerts.regenerated", count=len(alerts))
            return self.active()

    def update(
        self, entries: Sequence[JournalEntry], days: Mapping[str, DayAnalysis], today: date
    ) -> list[Alert]:
        """
        Incremental generation for entries not processed yet.

        Raises:
            OperationInFlight: Another alert cycle is running.
            ClarityError: Generation failed; processed ids are not advanced.
        """
        with self.guard.hold(INCREMENTAL, *_OPERATIONS):
            window = alert_window(entries, today)
            fingerprint = entry_ids_hash(window)
            pending = [e for e in window if e.id not in self.state.processed_ids]
            if not pending:
                counter("alerts.update_noop")
                return self.active()

            fresh = self.analyzer.alerts(pending, days, today.isoformat())
            merged = merge_alerts(self.state.alerts, fresh)
            self._save_alerts(merged, self.state.dismissed)
            self._advance(self.state.processed_ids | {e.id for e in pending}, fingerprint)
            self._mirror()
            return self.active()

    def scan_missed(
        self, entries: Sequence[JournalEntry], days: Mapping[str, DayAnalysis], today: date
    ) -> list[Alert]:
        """Gap scan over the whole window; results merged like an incremental batch."""
        with self.guard.hold(SCAN, *_OPERATIONS):
            window = alert_window(entries, today)
            if not window:
                return self.active()
            found = self.analyzer.missed_alerts(
                window, days, self.state.alerts, today.isoformat()
            )
            merged = merge_alerts(self.state.alerts, found)
            self._save_alerts(merged, self.state.dismissed)
            self._advance(self.state.processed_ids | {e.id for e in window}, entry_ids_hash(window))
            self._mirror()
            return self.active()

    # ------------------------------------------------------------------
    # User actions and views
    # ------------------------------------------------------------------

    def dismiss(self, key: str) -> None:
        if key in self.state.dismissed:
            return
        self._save_alerts(self.state.alerts, self.state.dismissed | {key})
        self._mirror()
        counter("alerts.dismissed")

    def active(self) -> list[Alert]:
        return sort_alerts(a for a in self.state.alerts if a.key not in self.state.dismissed)

    def notifiable(self) -> list[Alert]:
        return notifiable(self.state.alerts, self.state.dismissed, self.state.notified)

    def mark_notified(self, keys: Iterable[str]) -> None:
        notified = self.state.notified | set(keys)
        self.local.set(self._key(ALERTS_NOTIFIED_KEY), sorted(notified))
        self.state.notified = notified
