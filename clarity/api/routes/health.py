"""Health check endpoint for the Clarity API."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from clarity.config import APP_VERSION, GEMINI_MODEL

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Service status, version and model credential presence (no API call is made)."""
    return {
        "status": "healthy",
        "service": "Clarity API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "ready": bool(os.getenv("GEMINI_API_KEY")),
            "model": GEMINI_MODEL,
        },
    }
