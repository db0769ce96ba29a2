"""
Per-user wiring of the analysis components.

A ClaritySession is built once per signed-in user and closed on logout or user
switch; nothing in the analysis layer keeps module-level state between users.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from clarity.analysis.alerts import AlertBoard
from clarity.analysis.cache import AnalysisCache
from clarity.analysis.cross_day import CrossDayAnalyzer
from clarity.analysis.day import DayAnalyzer
from clarity.analysis.hints import HintService
from clarity.analysis.report import ReportService
from clarity.config import (
    ACTION_OVERRIDES_KEY,
    ALERTS_TABLE,
    DAY_ANALYSES_TABLE,
    SUPABASE_KEY,
    SUPABASE_URL,
)
from clarity.infrastructure.guards import InFlightGuard
from clarity.journal.overrides import OverrideMap, dump_overrides, load_overrides
from clarity.llm.gemini import ModelGateway
from clarity.storage.background import BackgroundWriter
from clarity.storage.local import KeyValueStore, SqliteKeyValueStore, scoped_key
from clarity.storage.remote import RemoteTable, SupabaseTable


class ClaritySession:
    def __init__(
        self,
        user_id: str,
        gateway: ModelGateway | None = None,
        local: KeyValueStore | None = None,
        day_table: RemoteTable | None = None,
        state_table: RemoteTable | None = None,
        writer: BackgroundWriter | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.user_id = user_id
        self.gateway = gateway or ModelGateway(sleep_fn=sleep_fn)
        self.local = local or SqliteKeyValueStore()
        self.writer = writer or BackgroundWriter()
        self.guard = InFlightGuard()

        if day_table is None and state_table is None and SUPABASE_URL and SUPABASE_KEY:
            day_table = SupabaseTable(DAY_ANALYSES_TABLE, ("user_id", "date"))
            state_table = SupabaseTable(ALERTS_TABLE, ("user_id",))

        self.cache = AnalysisCache(user_id, self.local, day_table, self.writer)
        self.day_analyzer = DayAnalyzer(self.gateway, self.cache)
        self.cross_day = CrossDayAnalyzer(self.gateway)
        self.alerts = AlertBoard(
            user_id, self.cross_day, self.local, state_table, self.writer, self.guard
        )
        self.reports = ReportService(
            user_id,
            self.cache,
            self.day_analyzer,
            self.cross_day,
            self.local,
            state_table,
            self.writer,
            self.guard,
            sleep_fn=sleep_fn,
        )
        self.hints = HintService(self.cross_day)

    def overrides(self) -> OverrideMap:
        return load_overrides(self.local.get(scoped_key(ACTION_OVERRIDES_KEY, self.user_id)))

    def save_overrides(self, overrides: OverrideMap) -> None:
        self.local.set(scoped_key(ACTION_OVERRIDES_KEY, self.user_id), dump_overrides(overrides))

    def close(self) -> None:
        """Wait for pending remote writes and stop the writer thread."""
        self.writer.flush()
        self.writer.shutdown()
