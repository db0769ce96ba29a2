"""
ReportService - bring day analyses up to date, then regenerate the global report.

Dates without a cached analysis are analyzed one at a time, paced by
DAY_ANALYSIS_SPACING_SECONDS, each seeing every earlier analyzed day as context.
The stored report is replaced only after a successful generation.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from clarity.analysis.cache import AnalysisCache
from clarity.analysis.cross_day import CrossDayAnalyzer
from clarity.analysis.day import DayAnalyzer
from clarity.config import DAY_ANALYSIS_SPACING_SECONDS, GLOBAL_REPORT_KEY
from clarity.infrastructure.guards import InFlightGuard
from clarity.infrastructure.pacing import IntervalScheduler
from clarity.journal.models import DayAnalysis, GlobalReport, JournalEntry, group_by_date
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event
from clarity.storage.background import BackgroundWriter
from clarity.storage.local import KeyValueStore, scoped_key
from clarity.storage.remote import RemoteTable

logger = get_logger(__name__)

RUN = "report.run"


class ReportService:
    def __init__(
        self,
        user_id: str,
        cache: AnalysisCache,
        day_analyzer: DayAnalyzer,
        cross_day: CrossDayAnalyzer,
        local: KeyValueStore,
        remote: RemoteTable | None = None,
        writer: BackgroundWriter | None = None,
        guard: InFlightGuard | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.user_id = user_id
        self.cache = cache
        self.day_analyzer = day_analyzer
        self.cross_day = cross_day
        self.local = local
        self.remote = remote
        # Threaded writers belong to the caller, which closes them.
        self.writer = writer or BackgroundWriter(inline=True)
        self.guard = guard or InFlightGuard()
        self.pacer = IntervalScheduler(
            DAY_ANALYSIS_SPACING_SECONDS, sleep_fn=sleep_fn, name="day_analysis"
        )
        self._key = scoped_key(GLOBAL_REPORT_KEY, user_id)

    def stored_report(self) -> GlobalReport | None:
        raw = self.local.get(self._key)
        if raw is None:
            return None
        return GlobalReport.from_model_output(raw)

    def analyze_missing_days(
        self, entries: Sequence[JournalEntry], profile_context: str | None = None
    ) -> dict[str, DayAnalysis]:
        """
        Analyze every date that has entries but no cached record.

        Returns the full {date: analysis} map including the cached days.
        Unavailable results are left out so the next run retries them.
        """
        days = self.cache.get()
        grouped = group_by_date(entries)
        missing = [d for d in grouped if d not in days]
        if missing:
            logger.info("Analyzing %d day(s) without a cached analysis", len(missing))

        self.pacer.reset()
        for date in missing:
            self.pacer.wait()
            prior = [(d, days[d]) for d in sorted(days) if d < date]
            analysis = self.day_analyzer.analyze(
                grouped[date], None, prior, profile_context=profile_context
            )
            if analysis.is_unavailable:
                counter("report.day_skipped")
                continue
            days[date] = analysis
        return days

    def run(
        self, entries: Sequence[JournalEntry], profile_context: str | None = None
    ) -> GlobalReport:
        """
        Regenerate the global report.

        Raises:
            OperationInFlight: A run is already in progress.
            ValueError: No day could be analyzed.
            ClarityError: Report generation failed; the stored report is unchanged.

        Side Effects:
            - Model calls for missing days and for the report
            - Replaces the stored report locally; mirrors it remotely in the background
        """
        with self.guard.hold(RUN):
            days = self.analyze_missing_days(entries, profile_context)
            report = self.cross_day.global_report(days)

            payload = report.model_dump()
            self.local.set(self._key, payload)
            if self.remote is not None:
                row = {
                    "user_id": self.user_id,
                    "insights": payload,
                    "updated_at": datetime.now(UTC).isoformat(),
                }
                self.writer.submit(
                    "report:replace", self.remote.upsert, [row], event="report.remote_write_failed"
                )
            log_event("report.replaced", days=len(days))
            return report
