"""
Gemini gateway - one model call with retry, part selection and JSON repair.

Supports two transports:
  1. Direct (GEMINI_API_KEY set) - calls generateContent with the key in a header
  2. Relay (no key configured) - posts {prompt, maxOutputTokens, temperature, jsonMode}
     to the same-origin /api/gemini endpoint, which holds the key server-side

Both return the provider's status and body, so retry and repair behave the same.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from clarity.config import (
    GEMINI_API_BASE,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    GEMINI_PROXY_URL,
    LLM_BACKOFF_STEP_SECONDS,
    LLM_DEFAULT_MAX_TOKENS,
    LLM_DEFAULT_TEMPERATURE,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
)
from clarity.errors import ModelRequestError, RetryableModelError
from clarity.infrastructure.retry import linear_retrying
from clarity.llm.repair import clean_response_text, parse_model_json
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter, log_event, redact_prompt, time_block

logger = get_logger(__name__)

EMPTY_OBJECT_TEXT = "{}"
TRUNCATED_FINISH_REASON = "MAX_TOKENS"


@dataclass(frozen=True)
class CallOptions:
    max_output_tokens: int = LLM_DEFAULT_MAX_TOKENS
    temperature: float = LLM_DEFAULT_TEMPERATURE
    json_mode: bool = True
    retries: int = LLM_MAX_RETRIES

    @classmethod
    def from_profile(cls, profile: tuple[int, float, int], json_mode: bool = True) -> CallOptions:
        max_tokens, temperature, retries = profile
        return cls(
            max_output_tokens=max_tokens,
            temperature=temperature,
            json_mode=json_mode,
            retries=retries,
        )

    def generation_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
        }
        if self.json_mode:
            config["responseMimeType"] = "application/json"
        return config


@dataclass
class ModelResponse:
    status_code: int
    payload: dict[str, Any] = field(default_factory=dict)
    body_preview: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(Protocol):
    name: str

    def send(self, prompt: str, options: CallOptions) -> ModelResponse: ...


def _post(
    session: requests.Session, url: str, timeout: float, label: str, **kwargs: Any
) -> ModelResponse:
    try:
        response = session.post(url, timeout=timeout, **kwargs)
    except (requests.ConnectionError, requests.Timeout) as exc:
        counter("llm.network_error")
        raise RetryableModelError(f"{label} unreachable: {type(exc).__name__}") from exc

    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    return ModelResponse(
        status_code=response.status_code, payload=payload, body_preview=response.text[:300]
    )


class DirectTransport:
    """Calls the Gemini REST API with a client-held key."""

    name = "direct"

    def __init__(
        self,
        api_key: str,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_API_BASE,
        session: requests.Session | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError("DirectTransport requires an API key")
        self._api_key = api_key
        self.model = model
        self.url = f"{base_url.rstrip('/')}/{model}:generateContent"
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, prompt: str, options: CallOptions) -> ModelResponse:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": options.generation_config(),
        }
        return _post(
            self.session,
            self.url,
            self.timeout,
            "Gemini API",
            json=body,
            headers={"x-goog-api-key": self._api_key},
        )


class ProxyTransport:
    """Calls the same-origin relay, which forwards to Gemini with the server key."""

    name = "proxy"

    def __init__(
        self,
        url: str = GEMINI_PROXY_URL,
        session: requests.Session | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, prompt: str, options: CallOptions) -> ModelResponse:
        body = {
            "prompt": prompt,
            "maxOutputTokens": options.max_output_tokens,
            "temperature": options.temperature,
            "jsonMode": options.json_mode,
        }
        return _post(self.session, self.url, self.timeout, "Gemini relay", json=body)


def select_transport(
    api_key: str | None = GEMINI_API_KEY, proxy_url: str = GEMINI_PROXY_URL
) -> Transport:
    """Direct transport when a key is configured, relay otherwise."""
    if api_key:
        return DirectTransport(api_key)
    return ProxyTransport(proxy_url)


def extract_candidate(payload: Mapping[str, Any]) -> tuple[list[Any], str | None]:
    """Return (parts, finishReason) of the first candidate; empty parts if absent."""
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], Mapping):
        return [], None
    candidate = candidates[0]
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, Mapping) else None
    return (parts if isinstance(parts, list) else []), candidate.get("finishReason")


def select_answer_text(parts: Sequence[Any]) -> str:
    """
    Pick the user-facing answer among response parts.

    Some model configurations emit a reasoning part (thought=True) before the
    answer. Prefer the first unflagged part with text, then any part with text,
    then an empty JSON object.

    Side Effects:
        None (pure function)
    """
    with_text = [
        p for p in parts if isinstance(p, Mapping) and isinstance(p.get("text"), str) and p["text"]
    ]
    for part in with_text:
        if not part.get("thought"):
            return part["text"]
    if with_text:
        return with_text[0]["text"]
    return EMPTY_OBJECT_TEXT


class ModelGateway:
    """Single entry point for model calls used by every analyzer."""

    def __init__(
        self,
        transport: Transport | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        backoff_step: float = LLM_BACKOFF_STEP_SECONDS,
    ) -> None:
        self.transport = transport or select_transport()
        self._sleep = sleep_fn
        self._backoff_step = backoff_step

    def call(self, prompt: str, options: CallOptions | None = None) -> Any:
        """
        Call the model and return the parsed object (JSON mode) or cleaned text.

        Raises:
            RetryableModelError: Retries exhausted on 429 / 5xx / network failure.
            ModelRequestError: Non-retryable status, raised on the first occurrence.
            ParseFailure: JSON mode and the answer could not be repaired.

        Side Effects:
            - Makes HTTP requests through the configured transport
            - Sleeps between retry attempts (linear backoff)
            - Increments telemetry counters and writes log events
        """
        options = options or CallOptions()
        retrying = linear_retrying(
            options.retries, stage="llm", step=self._backoff_step, sleep_fn=self._sleep
        )
        with time_block("llm.call"):
            text = retrying(self._attempt, prompt, options)

        if not options.json_mode:
            return clean_response_text(text)
        return parse_model_json(text)

    def _attempt(self, prompt: str, options: CallOptions) -> str:
        counter("llm.attempt")
        log_event(
            "llm.call_start",
            transport=self.transport.name,
            prompt_preview=redact_prompt(prompt),
            json_mode=options.json_mode,
        )
        response = self.transport.send(prompt, options)
        status = response.status_code

        if status == 429 or status >= 500:
            counter("llm.retryable_status")
            raise RetryableModelError(f"Gemini API {status}", status_code=status)
        if not response.ok:
            counter("llm.request_error")
            logger.error("Gemini %s: %s", status, response.body_preview)
            raise ModelRequestError(f"Gemini API {status}", status_code=status)

        parts, finish_reason = extract_candidate(response.payload)
        if finish_reason == TRUNCATED_FINISH_REASON:
            counter("llm.truncated")
            log_event("llm.truncated", max_output_tokens=options.max_output_tokens)
            logger.warning(
                "Gemini response hit the %d token ceiling, repair will be attempted",
                options.max_output_tokens,
            )

        counter("llm.call_success")
        return select_answer_text(parts)
