"""
Journal domain models for Clarity.

Entries are owned by the entry store; everything else here is extracted by the
model and must tolerate responses that only loosely follow the requested shape.
Model output is always funnelled through the `from_model_output` / normalize
helpers, which default missing fields instead of raising.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from clarity.journal.hashing import alert_key
from clarity.observability.telemetry import counter

M = TypeVar("M", bound=BaseModel)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{1,2}:\d{2}")


class EntrySource(str, Enum):
    MANUAL = "manual"
    VOICE = "voice"
    IMPORTED = "imported"


class ActionType(str, Enum):
    MEDICATION = "medication"
    SUPPLEMENT = "supplement"
    CAFFEINE = "caffeine"
    SUBSTANCE = "substance"
    EXERCISE = "exercise"
    WELLNESS = "wellness"
    SOCIAL = "social"
    THERAPY = "therapy"
    OTHER = "other"


class AlertType(str, Enum):
    WARNING = "warning"
    MEDICATION = "medication"
    PATTERN = "pattern"
    POSITIVE = "positive"
    ANSWER = "answer"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MoodTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    FLUCTUATING = "fluctuating"


def _enum_or(enum_cls: type[Enum], value: Any, default: Enum) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        for member in enum_cls:
            if member.value == lowered:
                return member.value
    return default.value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def coerce_items(items: Any, model: type[M], label: str) -> list[M]:
    """Validate each element of a model-provided list, dropping the ones that don't fit."""
    if not isinstance(items, list):
        return []
    result: list[M] = []
    for item in items:
        try:
            result.append(model.model_validate(item))
        except ValidationError:
            counter(f"validation.{label}.dropped")
    return result


# ============================================================================
# Entries
# ============================================================================


class JournalEntry(BaseModel):
    """A free-text diary entry as stored by the entry store."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(..., description="Opaque identifier from the entry store")
    text: str = Field(default="")
    entry_date: str = Field(..., description="YYYY-MM-DD")
    entry_time: str | None = Field(default=None, description="HH:MM")
    source: EntrySource = Field(default=EntrySource.MANUAL)

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v: Any) -> str:
        if v is None or v == "":
            raise ValueError("id cannot be empty")
        return str(v)

    @field_validator("entry_date")
    @classmethod
    def date_is_iso(cls, v: str) -> str:
        if not _DATE_RE.match(v):
            raise ValueError("entry_date must be YYYY-MM-DD")
        return v

    @field_validator("entry_time", mode="before")
    @classmethod
    def time_is_hhmm(cls, v: Any) -> str | None:
        if not v:
            return None
        if not _TIME_RE.match(str(v)):
            raise ValueError("entry_time must be HH:MM")
        return str(v)[:5]

    @field_validator("source", mode="before")
    @classmethod
    def known_source(cls, v: Any) -> str:
        return _enum_or(EntrySource, v, EntrySource.MANUAL)


def group_by_date(entries: Iterable[JournalEntry]) -> dict[str, list[JournalEntry]]:
    """Group entries by entry_date, dates in ascending order."""
    grouped: dict[str, list[JournalEntry]] = {}
    for entry in sorted(entries, key=lambda e: e.entry_date):
        grouped.setdefault(entry.entry_date, []).append(entry)
    return grouped


# ============================================================================
# Day analysis
# ============================================================================


class Action(BaseModel):
    """Something the person did or took that matters for wellness tracking."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    name: str
    detail: str | None = None
    time: str | None = None
    type: ActionType = ActionType.OTHER

    @field_validator("name", mode="before")
    @classmethod
    def name_not_empty(cls, v: Any) -> str:
        text = _str(v)
        if not text:
            raise ValueError("action name cannot be empty")
        return text

    @field_validator("detail", mode="before")
    @classmethod
    def clean_detail(cls, v: Any) -> str | None:
        return _optional_str(v)

    @field_validator("time", mode="before")
    @classmethod
    def clean_time(cls, v: Any) -> str | None:
        text = _optional_str(v)
        if text and _TIME_RE.match(text):
            return text[:5]
        return None

    @field_validator("type", mode="before")
    @classmethod
    def known_type(cls, v: Any) -> str:
        return _enum_or(ActionType, v, ActionType.OTHER)


class DayAnalysis(BaseModel):
    """
    Extracted view of one day of entries.

    entries_hash is the fingerprint of the entry set this analysis reflects;
    None means the record is not tied to any entry set and must be recomputed.
    """

    summary: str = ""
    insight: str | None = None
    actions: list[Action] = Field(default_factory=list)
    entries_hash: str | None = None

    @classmethod
    def unavailable(cls) -> DayAnalysis:
        """The safe empty record returned when analysis could not run."""
        return cls()

    @property
    def is_unavailable(self) -> bool:
        return (
            not self.summary
            and self.insight is None
            and not self.actions
            and self.entries_hash is None
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()


def normalize_day_analysis(raw: Any, entries_hash: str | None = None) -> DayAnalysis | None:
    """
    Convert any stored or model-produced day record into the canonical shape.

    Accepts the legacy field names: `substances` for `actions`, an `insights`
    list when `insight` is missing, and camelCase `entriesHash`. Returns None
    when `raw` is not a mapping at all.
    """
    if isinstance(raw, DayAnalysis):
        return raw
    if not isinstance(raw, Mapping):
        return None

    insight = _optional_str(raw.get("insight"))
    if insight is None:
        legacy = raw.get("insights")
        if isinstance(legacy, list) and legacy:
            insight = _optional_str(legacy[0])

    actions_raw = raw.get("actions")
    if not isinstance(actions_raw, list):
        actions_raw = raw.get("substances")

    stored_hash = raw.get("entries_hash", raw.get("entriesHash"))

    return DayAnalysis(
        summary=_str(raw.get("summary")),
        insight=insight,
        actions=coerce_items(actions_raw, Action, "action"),
        entries_hash=entries_hash if entries_hash is not None else _optional_str(stored_hash),
    )


# ============================================================================
# Alerts
# ============================================================================


class Alert(BaseModel):
    """A health-relevant observation surfaced from recent entries."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    text: str
    type: AlertType = AlertType.PATTERN
    severity: Severity = Severity.LOW
    detail: str = ""
    source_dates: list[str] = Field(default_factory=list)
    source_excerpt: str = ""
    search_query: str | None = None

    @field_validator("text", mode="before")
    @classmethod
    def text_not_empty(cls, v: Any) -> str:
        text = _str(v)
        if not text:
            raise ValueError("alert text cannot be empty")
        return text

    @field_validator("type", mode="before")
    @classmethod
    def known_type(cls, v: Any) -> str:
        return _enum_or(AlertType, v, AlertType.PATTERN)

    @field_validator("severity", mode="before")
    @classmethod
    def known_severity(cls, v: Any) -> str:
        return _enum_or(Severity, v, Severity.LOW)

    @field_validator("detail", "source_excerpt", mode="before")
    @classmethod
    def as_text(cls, v: Any) -> str:
        return _str(v)

    @field_validator("source_dates", mode="before")
    @classmethod
    def date_list(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return []
        return [str(d) for d in v if d]

    @field_validator("search_query", mode="before")
    @classmethod
    def clean_query(cls, v: Any) -> str | None:
        return _optional_str(v)

    @property
    def key(self) -> str:
        return alert_key(self.text, self.source_dates[0] if self.source_dates else None)


def alerts_from_model_output(raw: Any) -> list[Alert]:
    """Pull the alert list out of a model response ({"alerts": [...]} or a bare list)."""
    items = raw.get("alerts") if isinstance(raw, Mapping) else raw
    alerts = coerce_items(items, Alert, "alert")
    for alert in alerts:
        if alert.type != AlertType.ANSWER.value:
            alert.search_query = None
    return alerts


_LEGACY_SUGGESTION_TYPES = {"positive": "positive", "warning": "warning", "info": "pattern"}


def migrate_legacy_alerts(payload: Any) -> list[Alert]:
    """
    Convert a stored alert payload into Alert records.

    Handles the current {"alerts": [...]} shape and the older reminders payload
    ({"suggestions", "answers", "reminders"}); reminders are to-do items and are dropped.
    """
    if not isinstance(payload, Mapping):
        return []
    if "alerts" in payload:
        return coerce_items(payload.get("alerts"), Alert, "alert")

    converted: list[dict[str, Any]] = []
    for suggestion in payload.get("suggestions") or []:
        if not isinstance(suggestion, Mapping):
            continue
        kind = suggestion.get("type")
        converted.append(
            {
                "text": suggestion.get("text"),
                "type": _LEGACY_SUGGESTION_TYPES.get(kind, "pattern"),
                "severity": "medium" if kind == "warning" else "low",
                "detail": suggestion.get("based_on") or "",
                "source_dates": [suggestion["source_date"]] if suggestion.get("source_date") else [],
            }
        )
    for answer in payload.get("answers") or []:
        if not isinstance(answer, Mapping):
            continue
        converted.append(
            {
                "text": answer.get("question"),
                "type": "answer",
                "severity": "low",
                "detail": answer.get("answer") or "",
                "source_dates": [answer["source_date"]] if answer.get("source_date") else [],
                "search_query": answer.get("search_query"),
            }
        )
    if converted:
        counter("alerts.legacy_migrated")
    return coerce_items(converted, Alert, "alert")


# ============================================================================
# Global report
# ============================================================================


class Observation(BaseModel):
    title: str
    description: str = ""
    evidence_dates: list[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def title_not_empty(cls, v: Any) -> str:
        text = _str(v)
        if not text:
            raise ValueError("title cannot be empty")
        return text

    @field_validator("evidence_dates", mode="before")
    @classmethod
    def date_list(cls, v: Any) -> list[str]:
        return [str(d) for d in v] if isinstance(v, list) else []


class Hypothesis(BaseModel):
    statement: str
    confidence: int = 50
    evidence: str = ""

    @field_validator("statement", mode="before")
    @classmethod
    def statement_not_empty(cls, v: Any) -> str:
        text = _str(v)
        if not text:
            raise ValueError("statement cannot be empty")
        return text

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> int:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 50
        if 0 < value <= 1:
            value *= 100
        return int(max(0, min(100, round(value))))


class SubstanceEffect(BaseModel):
    substance: str
    observed_effects: str = ""
    mood_impact: str = "neutral"
    energy_impact: str = "neutral"
    consistency: str = "variable"
    notes: str = ""

    @field_validator("substance", mode="before")
    @classmethod
    def substance_not_empty(cls, v: Any) -> str:
        text = _str(v)
        if not text:
            raise ValueError("substance cannot be empty")
        return text


class Recommendation(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    text: str
    priority: Severity = Severity.MEDIUM
    rationale: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def known_priority(cls, v: Any) -> str:
        return _enum_or(Severity, v, Severity.MEDIUM)


class RoutineSlot(BaseModel):
    time: str
    activity: str
    reason: str = ""


class IdealRoutine(BaseModel):
    summary: str = ""
    schedule: list[RoutineSlot] = Field(default_factory=list)


class Experiment(BaseModel):
    title: str
    hypothesis: str = ""
    protocol: str = ""
    duration_days: int | None = None
    measure: str = ""


class GlobalReport(BaseModel):
    """Cross-day report. Always replaced wholesale, never merged."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    executive_summary: str = ""
    mood_trend: MoodTrend = MoodTrend.STABLE
    observations: list[Observation] = Field(default_factory=list)
    hypotheses: list[Hypothesis] = Field(default_factory=list)
    substance_effects: list[SubstanceEffect] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    ideal_routine: IdealRoutine | None = None
    experiments: list[Experiment] = Field(default_factory=list)

    @classmethod
    def from_model_output(cls, raw: Any) -> GlobalReport:
        if not isinstance(raw, Mapping):
            counter("validation.report.not_object")
            return cls()

        recommendations = raw.get("recommendations")
        if isinstance(recommendations, list):
            recommendations = [{"text": r} if isinstance(r, str) else r for r in recommendations]

        routine = None
        if isinstance(raw.get("ideal_routine"), Mapping):
            try:
                routine = IdealRoutine.model_validate(raw["ideal_routine"])
            except ValidationError:
                counter("validation.report.routine_dropped")

        return cls(
            executive_summary=_str(raw.get("executive_summary") or raw.get("summary")),
            mood_trend=_enum_or(MoodTrend, raw.get("mood_trend"), MoodTrend.STABLE),
            observations=coerce_items(raw.get("observations"), Observation, "observation"),
            hypotheses=coerce_items(raw.get("hypotheses"), Hypothesis, "hypothesis"),
            substance_effects=coerce_items(
                raw.get("substance_effects"), SubstanceEffect, "substance_effect"
            ),
            recommendations=coerce_items(recommendations, Recommendation, "recommendation"),
            ideal_routine=routine,
            experiments=coerce_items(raw.get("experiments"), Experiment, "experiment"),
        )


# ============================================================================
# Hints and voice
# ============================================================================


class PlaceholderHint(BaseModel):
    """Short writing prompt, optionally pointing back at the entry that inspired it."""

    text: str
    source_date: str | None = None
    source_time: str | None = None

    @field_validator("text", mode="before")
    @classmethod
    def text_not_empty(cls, v: Any) -> str:
        text = _str(v)
        if not text:
            raise ValueError("hint text cannot be empty")
        return text

    @field_validator("source_date", "source_time", mode="before")
    @classmethod
    def clean_optional(cls, v: Any) -> str | None:
        return _optional_str(v)


class Utterance(BaseModel):
    """One speaker-tagged turn from a voice session."""

    role: str
    text: str
