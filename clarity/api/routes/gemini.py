"""
Same-origin model relay.

Clients without their own key post {prompt, maxOutputTokens, temperature,
jsonMode} here; the request is forwarded with the server-held key and the
provider's status and body are returned unchanged. The key is never logged.
"""

from __future__ import annotations

import os
from typing import Any

import requests
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clarity.config import (
    GEMINI_API_BASE,
    GEMINI_MODEL,
    LLM_DEFAULT_MAX_TOKENS,
    LLM_DEFAULT_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
)
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event, redact_prompt

router = APIRouter(prefix="/api", tags=["gemini"])
logger = get_logger(__name__)


class GeminiRelayRequest(BaseModel):
    prompt: str | None = None
    maxOutputTokens: int = LLM_DEFAULT_MAX_TOKENS
    temperature: float = LLM_DEFAULT_TEMPERATURE
    jsonMode: bool = True


@router.post("/gemini")
def relay_gemini(body: GeminiRelayRequest) -> JSONResponse:
    """
    Forward one generateContent call.

    Side Effects:
        - Makes an HTTP request to the model provider
        - Increments relay.gemini.* counters
    """
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        counter("relay.gemini.no_key")
        return JSONResponse(
            status_code=500, content={"error": "GEMINI_API_KEY not configured on server"}
        )
    if not body.prompt:
        return JSONResponse(status_code=400, content={"error": "prompt is required"})

    config: dict[str, Any] = {
        "temperature": body.temperature,
        "maxOutputTokens": body.maxOutputTokens,
    }
    if body.jsonMode:
        config["responseMimeType"] = "application/json"

    log_event("relay.gemini.forward", prompt_preview=redact_prompt(body.prompt))
    try:
        response = requests.post(
            f"{GEMINI_API_BASE.rstrip('/')}/{GEMINI_MODEL}:generateContent",
            json={"contents": [{"parts": [{"text": body.prompt}]}], "generationConfig": config},
            headers={"x-goog-api-key": api_key},
            timeout=LLM_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        counter("relay.gemini.unreachable")
        logger.error("Gemini relay could not reach provider: %s", type(e).__name__)
        return JSONResponse(status_code=502, content={"error": "Failed to reach Gemini API"})

    try:
        data = response.json()
    except ValueError:
        data = {"error": response.text[:300]}
    counter(f"relay.gemini.status_{response.status_code}")
    return JSONResponse(status_code=response.status_code, content=data)
