"""
Pytest configuration for Clarity tests

Provides in-memory stores, a scripted model transport and a recording sleep so
no test touches the network, the filesystem outside tmp_path, or real time.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from clarity.errors import RetryableModelError
from clarity.journal.models import JournalEntry
from clarity.llm.gemini import CallOptions, ModelGateway, ModelResponse
from clarity.observability.telemetry import reset_counters
from clarity.storage.background import BackgroundWriter
from clarity.storage.local import MemoryKeyValueStore
from clarity.storage.remote import MemoryRemoteTable


def gemini_payload(text: str, finish_reason: str = "STOP", thought: str | None = None) -> dict:
    parts: list[dict[str, Any]] = []
    if thought is not None:
        parts.append({"text": thought, "thought": True})
    parts.append({"text": text})
    return {"candidates": [{"content": {"parts": parts}, "finishReason": finish_reason}]}


class FakeTransport:
    """Replays queued responses in order and records every request."""

    name = "fake"

    def __init__(self) -> None:
        self.script: list[ModelResponse | Exception] = []
        self.calls: list[tuple[str, CallOptions]] = []

    def reply_json(self, obj: Any, **kwargs: Any) -> FakeTransport:
        return self.reply_text(json.dumps(obj), **kwargs)

    def reply_text(self, text: str, **kwargs: Any) -> FakeTransport:
        self.script.append(ModelResponse(status_code=200, payload=gemini_payload(text, **kwargs)))
        return self

    def reply_payload(self, payload: dict) -> FakeTransport:
        self.script.append(ModelResponse(status_code=200, payload=payload))
        return self

    def reply_status(self, status_code: int, times: int = 1) -> FakeTransport:
        for _ in range(times):
            self.script.append(
                ModelResponse(status_code=status_code, body_preview=f"error {status_code}")
            )
        return self

    def fail_network(self, times: int = 1) -> FakeTransport:
        for _ in range(times):
            self.script.append(RetryableModelError("Gemini API unreachable: ConnectionError"))
        return self

    def send(self, prompt: str, options: CallOptions) -> ModelResponse:
        self.calls.append((prompt, options))
        if not self.script:
            raise AssertionError("FakeTransport has no scripted response left")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def prompts(self) -> list[str]:
        return [prompt for prompt, _ in self.calls]


@pytest.fixture(autouse=True)
def _reset_telemetry():
    """Counters are process-global; start each test from zero."""
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def record_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def gateway(transport, record_sleep) -> ModelGateway:
    return ModelGateway(transport=transport, sleep_fn=record_sleep)


@pytest.fixture
def local_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def day_table() -> MemoryRemoteTable:
    return MemoryRemoteTable("day_analyses", ("user_id", "date"))


@pytest.fixture
def state_table() -> MemoryRemoteTable:
    return MemoryRemoteTable("user_reminders", ("user_id",))


@pytest.fixture
def writer() -> BackgroundWriter:
    return BackgroundWriter(inline=True)


@pytest.fixture
def make_entry():
    counter = {"n": 0}

    def _make(text: str, entry_date: str = "2026-01-01", entry_time: str | None = None, **kw):
        counter["n"] += 1
        return JournalEntry(
            id=kw.pop("id", f"id{counter['n']}"),
            text=text,
            entry_date=entry_date,
            entry_time=entry_time,
            **kw,
        )

    return _make
