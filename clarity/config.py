"""Centralized configuration for Clarity.

Re-exports everything from clarity.infrastructure.settings so existing imports
continue to work, then adds typed constants for model calls, caching, alerts
and the notes workspace. Environment variable overrides use safe defaults so
the app starts without extra env configuration.
"""

from __future__ import annotations

import os

from clarity.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.0.0"

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("CLARITY_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("CLARITY_LLM_RETRIES", "2"))
LLM_BACKOFF_STEP_SECONDS: float = 1.0
LLM_DEFAULT_MAX_TOKENS: int = 8192
LLM_DEFAULT_TEMPERATURE: float = 0.1

# Per-operation generation settings: (max_output_tokens, temperature, retries)
DAY_ANALYSIS_GENERATION: tuple[int, float, int] = (2048, 0.25, LLM_MAX_RETRIES)
GLOBAL_REPORT_GENERATION: tuple[int, float, int] = (4096, 0.3, 1)
ALERTS_GENERATION: tuple[int, float, int] = (4096, 0.3, LLM_MAX_RETRIES)
HINTS_GENERATION: tuple[int, float, int] = (1024, 0.7, 0)
VOICE_GENERATION: tuple[int, float, int] = (2048, 0.4, LLM_MAX_RETRIES)

# --- Response repair ---
PARSE_FAILURE_TAIL_CHARS: int = 200

# --- Hashing ---
ENTRY_HASH_TEXT_PREFIX: int = 50
ALERT_KEY_TEXT_PREFIX: int = 80

# --- Analysis ---
DAY_ANALYSIS_SPACING_SECONDS: float = 1.5
DAY_INSIGHT_FALLBACK: str = "No single pattern stood out in today's entries."
ALERT_WINDOW_DAYS: int = int(os.getenv("CLARITY_ALERT_WINDOW_DAYS", "14"))
HINT_RECENT_ENTRIES: int = 5
HINT_MAX_COUNT: int = 6
HINT_STALENESS_SECONDS: int = int(os.getenv("CLARITY_HINT_STALENESS", str(6 * 3600)))
NOTIFY_MAX_ALERTS: int = 3

# --- Local snapshot keys ---
DAY_SUMMARIES_KEY: str = "clarity_day_summaries"
GLOBAL_REPORT_KEY: str = "clarity_global_insights"
ALERTS_KEY: str = "clarity_alerts"
ALERTS_HASH_KEY: str = "clarity_alerts_hash"
ALERTS_DISMISSED_KEY: str = "clarity_alerts_dismissed"
ALERTS_PROCESSED_KEY: str = "clarity_alerts_processed_ids"
ALERTS_NOTIFIED_KEY: str = "clarity_notif_sent"
ACTION_OVERRIDES_KEY: str = "clarity_med_overrides"
NOTION_SYNC_MAP_KEY: str = "clarity_notion_sync_map"

# --- Remote tables ---
DAY_ANALYSES_TABLE: str = "day_analyses"
ALERTS_TABLE: str = "user_reminders"
REMOTE_TIMEOUT_SECONDS: int = 10

# --- Notes workspace ---
NOTION_PACING_SECONDS: float = 0.35
NOTION_PAGE_SIZE: int = 100
NOTION_PUSH_BATCH: int = 10
NOTION_RICH_TEXT_LIMIT: int = 2000
