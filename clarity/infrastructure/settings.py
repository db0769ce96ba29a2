"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CLARITY_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("CLARITY_ENV", "development")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
APP_ORIGIN = os.getenv("CLARITY_APP_ORIGIN", "http://localhost:8000")

# Gemini (direct when a key is configured, relay otherwise)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta/models"
)
GEMINI_PROXY_URL = os.getenv("CLARITY_GEMINI_PROXY_URL", f"{APP_ORIGIN}/api/gemini")

# Remote cache tables (Supabase REST)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Local snapshot store
LOCAL_DB_PATH = Path(os.getenv("CLARITY_LOCAL_DB", str(CLARITY_ROOT / "data" / "clarity.db")))

# Notes workspace
NOTION_API_BASE = os.getenv("NOTION_API_BASE", "https://api.notion.com/v1")
NOTION_VERSION = os.getenv("NOTION_VERSION", "2022-06-28")
NOTION_DEFAULT_TITLE_PROPERTY = "Annotazione"


def is_development() -> bool:
    """Check if running in development"""
    return ENV == "development"
