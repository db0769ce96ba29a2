"""
Cross-day generation: global report, alerts, missed-alert scans, placeholder
hints and voice-to-journal.

Nothing here caches or merges; callers (ReportService, AlertBoard, HintService)
own persistence. Errors propagate so the UI can show them, except for hints,
which are optional and return None on failure.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from clarity.analysis.day import format_entries
from clarity.config import (
    ALERT_WINDOW_DAYS,
    ALERTS_GENERATION,
    GLOBAL_REPORT_GENERATION,
    HINT_MAX_COUNT,
    HINT_RECENT_ENTRIES,
    HINTS_GENERATION,
    VOICE_GENERATION,
)
from clarity.errors import ClarityError
from clarity.journal.models import (
    Alert,
    DayAnalysis,
    GlobalReport,
    JournalEntry,
    PlaceholderHint,
    Utterance,
    alerts_from_model_output,
    coerce_items,
    group_by_date,
)
from clarity.llm.gemini import CallOptions, ModelGateway
from clarity.llm.prompts import render_prompt
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event

logger = get_logger(__name__)


def time_of_day(now: datetime) -> str:
    hour = now.hour
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 23:
        return "evening"
    return "night"


def format_days(days: Mapping[str, DayAnalysis]) -> str:
    blocks = []
    for date in sorted(days):
        analysis = days[date]
        lines = [f"=== {date} ===", f"Summary: {analysis.summary}"]
        if analysis.insight:
            lines.append(f"Insight: {analysis.insight}")
        if analysis.actions:
            rendered = []
            for action in analysis.actions:
                text = action.name
                if action.detail:
                    text += f" ({action.detail})"
                if action.time:
                    text += f" @{action.time}"
                rendered.append(f"{text} [{action.type}]")
            lines.append("Actions: " + "; ".join(rendered))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def format_entries_by_date(entries: Sequence[JournalEntry]) -> str:
    return "\n\n".join(
        f"--- {date} ---\n{format_entries(day_entries)}"
        for date, day_entries in group_by_date(entries).items()
    )


def format_summaries(days: Mapping[str, DayAnalysis]) -> str:
    lines = [f"- {date}: {days[date].summary}" for date in sorted(days) if days[date].summary]
    return "\n".join(lines) or "(none)"


class CrossDayAnalyzer:
    """Prompt-build, model call and shape validation for multi-day operations."""

    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway

    def global_report(self, days: Mapping[str, DayAnalysis]) -> GlobalReport:
        """
        Generate the replace-everything report from every analyzed day.

        Raises:
            ValueError: If no analyzed day is available.
            ClarityError: Gateway or repair failures, unchanged.
        """
        usable = {d: a for d, a in days.items() if not a.is_unavailable}
        if not usable:
            raise ValueError("global_report() needs at least one analyzed day")

        prompt = render_prompt(
            "global_report", day_count=len(usable), days_text=format_days(usable)
        )
        raw = self.gateway.call(prompt, CallOptions.from_profile(GLOBAL_REPORT_GENERATION))
        report = GlobalReport.from_model_output(raw)
        counter("report.generated")
        if not report.observations or not report.recommendations:
            counter("report.sparse")
        return report

    def alerts(
        self,
        entries: Sequence[JournalEntry],
        days: Mapping[str, DayAnalysis],
        today: str,
    ) -> list[Alert]:
        """Alerts for the given window of entries plus their day summaries."""
        return self._alerts(entries, days, today, existing_block="")

    def missed_alerts(
        self,
        entries: Sequence[JournalEntry],
        days: Mapping[str, DayAnalysis],
        existing: Sequence[Alert],
        today: str,
    ) -> list[Alert]:
        """Gap scan: same as alerts() but told which headlines already exist."""
        headlines = "\n".join(f"- {a.text}" for a in existing) or "(none)"
        existing_block = (
            "\nALERTS ALREADY SHOWN (do NOT repeat these or rephrase them, "
            f"only report what they miss):\n{headlines}\n"
        )
        return self._alerts(entries, days, today, existing_block=existing_block)

    def _alerts(
        self,
        entries: Sequence[JournalEntry],
        days: Mapping[str, DayAnalysis],
        today: str,
        existing_block: str,
    ) -> list[Alert]:
        dates = {e.entry_date for e in entries}
        prompt = render_prompt(
            "alerts",
            today=today,
            window_days=ALERT_WINDOW_DAYS,
            existing_block=existing_block,
            summaries_text=format_summaries({d: a for d, a in days.items() if d in dates}),
            entries_text=format_entries_by_date(entries),
        )
        raw = self.gateway.call(prompt, CallOptions.from_profile(ALERTS_GENERATION))
        alerts = alerts_from_model_output(raw)
        counter("alerts.generated", len(alerts))
        return alerts

    def placeholder_hints(
        self, entries: Sequence[JournalEntry], now: datetime
    ) -> list[PlaceholderHint] | None:
        """
        Short writing prompts from the most recent entries.

        Returns None on any model or repair failure.
        """
        recent = sorted(entries, key=lambda e: (e.entry_date, e.entry_time or ""))
        recent = recent[-HINT_RECENT_ENTRIES:]
        if not recent:
            return []

        entries_text = "\n".join(
            f"[{e.entry_date}{' ' + e.entry_time if e.entry_time else ''}] {e.text}"
            for e in recent
        )
        prompt = render_prompt(
            "hints",
            time_of_day=time_of_day(now),
            max_hints=HINT_MAX_COUNT,
            entries_text=entries_text,
        )
        try:
            raw = self.gateway.call(prompt, CallOptions.from_profile(HINTS_GENERATION))
        except ClarityError as e:
            counter("hints.failed")
            log_event("hints.failed", kind=e.kind.value)
            return None

        items = raw.get("hints") if isinstance(raw, Mapping) else raw
        return coerce_items(items, PlaceholderHint, "hint")[:HINT_MAX_COUNT]

    def voice_to_journal(self, utterances: Sequence[Utterance]) -> str:
        """
        First-person entry text from a voice conversation (plain-text mode).

        Returns "" when the person said nothing.
        """
        if not any(u.role == "user" and u.text.strip() for u in utterances):
            return ""
        conversation = "\n".join(
            f"{'Person' if u.role == 'user' else 'Assistant'}: {u.text.strip()}"
            for u in utterances
            if u.text.strip()
        )
        prompt = render_prompt("voice_journal", conversation=conversation)
        text = self.gateway.call(prompt, CallOptions.from_profile(VOICE_GENERATION, json_mode=False))
        counter("voice.transcribed")
        return text
