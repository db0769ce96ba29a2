"""
DayAnalyzer - per-day extraction of summary, insight and actions.

A day is only sent to the model when its entry set changed since the cached
analysis was produced (entries hash mismatch). Model failures never reach the
caller: they yield DayAnalysis.unavailable(), which the UI offers to retry.
"""

from __future__ import annotations

from collections.abc import Sequence

from clarity.analysis.cache import AnalysisCache
from clarity.config import DAY_ANALYSIS_GENERATION, DAY_INSIGHT_FALLBACK
from clarity.errors import ModelRequestError, ParseFailure, RetryableModelError
from clarity.journal.hashing import entries_hash
from clarity.journal.models import DayAnalysis, JournalEntry, normalize_day_analysis
from clarity.llm.gemini import CallOptions, ModelGateway
from clarity.llm.prompts import render_prompt
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event

logger = get_logger(__name__)


def format_entries(entries: Sequence[JournalEntry]) -> str:
    """One line per entry, time-prefixed when known, in time order."""
    ordered = sorted(entries, key=lambda e: (e.entry_date, e.entry_time or ""))
    return "\n".join(f"[{e.entry_time}] {e.text}" if e.entry_time else e.text for e in ordered)


def format_prior_days(prior_days: Sequence[tuple[str, DayAnalysis]]) -> str:
    if not prior_days:
        return ""
    lines = ["\nPREVIOUS DAYS (oldest to newest):"]
    for date, analysis in sorted(prior_days, key=lambda item: item[0]):
        if analysis.is_unavailable:
            continue
        line = f"- {date}: {analysis.summary}"
        if analysis.insight:
            line += f" | Insight: {analysis.insight}"
        lines.append(line)
    return "\n".join(lines) + "\n" if len(lines) > 1 else ""


def build_day_prompt(
    entries: Sequence[JournalEntry],
    prior_days: Sequence[tuple[str, DayAnalysis]] = (),
    profile_context: str | None = None,
) -> str:
    profile_block = ""
    if profile_context and profile_context.strip():
        profile_block = f"\nABOUT THE PERSON:\n{profile_context.strip()}\n"
    return render_prompt(
        "day_analysis",
        profile_block=profile_block,
        context_block=format_prior_days(prior_days),
        entry_date=entries[0].entry_date,
        entries_text=format_entries(entries),
    )


class DayAnalyzer:
    def __init__(self, gateway: ModelGateway, cache: AnalysisCache) -> None:
        self.gateway = gateway
        self.cache = cache
        self.options = CallOptions.from_profile(DAY_ANALYSIS_GENERATION)

    def analyze(
        self,
        entries: Sequence[JournalEntry],
        cached: DayAnalysis | None = None,
        prior_days: Sequence[tuple[str, DayAnalysis]] = (),
        profile_context: str | None = None,
    ) -> DayAnalysis:
        """
        Analyze one date's entries, reusing the cached record when nothing changed.

        Args:
            entries: All entries for a single entry_date (non-empty)
            cached: The stored record for that date, if any
            prior_days: (date, analysis) context from earlier days
            profile_context: Optional free-text description of the person

        Returns:
            The cached record (same object) on a hash match, the fresh analysis,
            or DayAnalysis.unavailable() when the model call or repair failed or
            the result had no summary.

        Raises:
            ValueError: If entries is empty or spans more than one date.
            LocalPersistenceError: If the fresh analysis cannot be stored locally.

        Side Effects:
            - Calls the model on a cache miss
            - Writes the new analysis to the cache (local now, remote in background)
        """
        if not entries:
            raise ValueError("analyze() needs at least one entry")
        dates = {e.entry_date for e in entries}
        if len(dates) != 1:
            raise ValueError(f"analyze() expects entries from one date, got {sorted(dates)}")
        date = entries[0].entry_date

        fingerprint = entries_hash(entries)
        if cached is not None and cached.summary and cached.entries_hash == fingerprint:
            counter("day_analysis.cache_hit")
            log_event("day_analysis.cache_hit", date=date)
            return cached

        prompt = build_day_prompt(entries, prior_days, profile_context)
        try:
            raw = self.gateway.call(prompt, self.options)
        except (RetryableModelError, ModelRequestError, ParseFailure) as e:
            counter("day_analysis.failed")
            log_event("day_analysis.failed", date=date, kind=e.kind.value)
            logger.warning("Day analysis for %s unavailable: %s", date, e)
            return DayAnalysis.unavailable()

        analysis = normalize_day_analysis(raw, entries_hash=fingerprint)
        if analysis is None:
            counter("day_analysis.failed")
            log_event("day_analysis.failed", date=date, kind="validation")
            return DayAnalysis.unavailable()
        if not analysis.summary:
            counter("day_analysis.incomplete")
            log_event("day_analysis.failed", date=date, kind="validation")
            logger.warning("Day analysis for %s has no summary, not stored", date)
            return DayAnalysis.unavailable()
        if analysis.insight is None:
            counter("day_analysis.incomplete")
            analysis = analysis.model_copy(update={"insight": DAY_INSIGHT_FALLBACK})

        self.cache.put(date, analysis)
        counter("day_analysis.analyzed")
        return analysis
