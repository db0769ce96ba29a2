"""
Remote per-user tables.

Rows are plain dicts that always carry `user_id`; conflicts resolve at the row
level on the table's conflict columns (last writer wins). Failures raise
RemoteStoreError; callers that treat the remote as a mirror only log them.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any, Protocol

import requests

from clarity.config import REMOTE_TIMEOUT_SECONDS, SUPABASE_KEY, SUPABASE_URL
from clarity.errors import RemoteStoreError
from clarity.observability.logging import get_logger
from clarity.observability.telemetry import counter

logger = get_logger(__name__)


class RemoteTable(Protocol):
    name: str

    def upsert(self, rows: Sequence[dict[str, Any]]) -> None: ...

    def select(self, user_id: str) -> list[dict[str, Any]]: ...

    def delete(self, user_id: str) -> None: ...


class SupabaseTable:
    """PostgREST access to one table, scoped by `user_id`."""

    def __init__(
        self,
        name: str,
        conflict_columns: Sequence[str],
        base_url: str | None = SUPABASE_URL,
        api_key: str | None = SUPABASE_KEY,
        session: requests.Session | None = None,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
    ) -> None:
        if not base_url or not api_key:
            raise ValueError("SupabaseTable requires SUPABASE_URL and SUPABASE_KEY")
        self.name = name
        self.conflict_columns = tuple(conflict_columns)
        self.url = f"{base_url.rstrip('/')}/rest/v1/{name}"
        self.session = session or requests.Session()
        self.timeout = timeout
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, **kwargs: Any) -> requests.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = self.session.request(
                method, self.url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            counter(f"remote.{self.name}.unreachable")
            raise RemoteStoreError(f"{self.name} {method} failed: {type(e).__name__}") from e
        if response.status_code >= 400:
            counter(f"remote.{self.name}.http_error")
            raise RemoteStoreError(f"{self.name} {method} returned {response.status_code}")
        return response

    def upsert(self, rows: Sequence[dict[str, Any]]) -> None:
        if not rows:
            return
        self._request(
            "POST",
            params={"on_conflict": ",".join(self.conflict_columns)},
            json=list(rows),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    def select(self, user_id: str) -> list[dict[str, Any]]:
        response = self._request("GET", params={"user_id": f"eq.{user_id}", "select": "*"})
        try:
            rows = response.json()
        except ValueError as e:
            raise RemoteStoreError(f"{self.name} select returned non-JSON body") from e
        return [row for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []

    def delete(self, user_id: str) -> None:
        self._request("DELETE", params={"user_id": f"eq.{user_id}"})


class MemoryRemoteTable:
    """In-process table with the same conflict semantics; `fail_writes` simulates an outage."""

    def __init__(self, name: str, conflict_columns: Sequence[str]) -> None:
        self.name = name
        self.conflict_columns = tuple(conflict_columns)
        self.fail_writes = False
        self.fail_reads = False
        self._rows: dict[tuple[Any, ...], dict[str, Any]] = {}

    def _row_key(self, row: dict[str, Any]) -> tuple[Any, ...]:
        return tuple(row.get(column) for column in self.conflict_columns)

    def upsert(self, rows: Sequence[dict[str, Any]]) -> None:
        if self.fail_writes:
            raise RemoteStoreError(f"{self.name} upsert failed: simulated outage")
        for row in rows:
            key = self._row_key(row)
            self._rows[key] = {**self._rows.get(key, {}), **copy.deepcopy(row)}

    def select(self, user_id: str) -> list[dict[str, Any]]:
        if self.fail_reads:
            raise RemoteStoreError(f"{self.name} select failed: simulated outage")
        return [copy.deepcopy(r) for r in self._rows.values() if r.get("user_id") == user_id]

    def delete(self, user_id: str) -> None:
        if self.fail_writes:
            raise RemoteStoreError(f"{self.name} delete failed: simulated outage")
        self._rows = {k: r for k, r in self._rows.items() if r.get("user_id") != user_id}
