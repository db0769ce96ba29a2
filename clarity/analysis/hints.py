"""
HintService - placeholder hints with a staleness window.

Hints are regenerated when the set of recent entries changes or the window
expires. A failed generation keeps showing the last good hints.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import datetime

from cachetools import TTLCache

from clarity.analysis.cross_day import CrossDayAnalyzer
from clarity.config import HINT_RECENT_ENTRIES, HINT_STALENESS_SECONDS
from clarity.journal.hashing import entry_ids_hash
from clarity.journal.models import JournalEntry, PlaceholderHint
from clarity.observability.telemetry import counter


class HintService:
    def __init__(
        self,
        analyzer: CrossDayAnalyzer,
        ttl_seconds: float = HINT_STALENESS_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.analyzer = analyzer
        self._cache: TTLCache[str, list[PlaceholderHint]] = TTLCache(
            maxsize=8, ttl=ttl_seconds, timer=timer
        )
        self._last_good: list[PlaceholderHint] = []
        self.generated_at: datetime | None = None

    def hints(
        self, entries: Sequence[JournalEntry], now: datetime, force: bool = False
    ) -> list[PlaceholderHint]:
        recent = sorted(entries, key=lambda e: (e.entry_date, e.entry_time or ""))
        key = entry_ids_hash(recent[-HINT_RECENT_ENTRIES:])

        if not force and key in self._cache:
            counter("hints.cache_hit")
            return self._cache[key]

        generated = self.analyzer.placeholder_hints(recent, now)
        if generated is None:
            return self._last_good

        self._cache[key] = generated
        self._last_good = generated
        self.generated_at = now
        return generated
