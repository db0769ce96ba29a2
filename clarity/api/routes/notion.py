"""
Notes-workspace relay.

One POST endpoint dispatching on `action` (test, query, push, archive) with a
caller-supplied integration token. Upstream error statuses are passed through;
an unreachable workspace is a 502.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clarity.config import NOTION_DEFAULT_TITLE_PROPERTY, NOTION_PACING_SECONDS
from clarity.errors import CollaboratorError
from clarity.infrastructure.pacing import IntervalScheduler
from clarity.observability.logging import get_logger
from clarity.sync.notion import NotionClient

router = APIRouter(prefix="/api", tags=["notion"])
logger = get_logger(__name__)


class PushItem(BaseModel):
    id: str
    text: str = ""


class NotionRelayRequest(BaseModel):
    action: str | None = None
    token: str | None = None
    database_id: str | None = None
    cursor: str | None = None
    page_id: str | None = None
    title_property: str = NOTION_DEFAULT_TITLE_PROPERTY
    entries: list[PushItem] = Field(default_factory=list)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _push(client: NotionClient, body: NotionRelayRequest) -> list[dict[str, Any]]:
    pacer = IntervalScheduler(NOTION_PACING_SECONDS, name="notion")
    results = []
    for item in body.entries:
        pacer.wait()
        try:
            page_id = client.create_page(body.database_id or "", body.title_property, item.text)
            results.append({"entry_id": item.id, "notion_page_id": page_id, "ok": True, "error": None})
        except CollaboratorError as e:
            if e.status_code is None:
                raise
            results.append({"entry_id": item.id, "notion_page_id": None, "ok": False, "error": str(e)})
    return results


@router.post("/notion")
def relay_notion(body: NotionRelayRequest) -> JSONResponse:
    if not body.token:
        return _error(400, "Notion token is required")
    client = NotionClient(body.token)

    try:
        if body.action == "test":
            if not body.database_id:
                return _error(400, "database_id is required")
            return JSONResponse(content=client.test(body.database_id))

        if body.action == "query":
            if not body.database_id:
                return _error(400, "database_id is required")
            return JSONResponse(content=client.query(body.database_id, body.cursor))

        if body.action == "push":
            if not body.database_id or not body.entries:
                return _error(400, "database_id and entries are required")
            return JSONResponse(content={"results": _push(client, body)})

        if body.action == "archive":
            if not body.page_id:
                return _error(400, "page_id is required")
            return JSONResponse(content={"ok": True, "id": client.archive_page(body.page_id)})

    except CollaboratorError as e:
        if e.status_code is None:
            logger.error("Notion relay could not reach workspace: %s", e)
            return _error(502, "Failed to reach Notion API")
        return _error(e.status_code, str(e))

    return _error(400, f"Unknown action: {body.action}")
