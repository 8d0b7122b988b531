"""JSON and WebSocket endpoints exposing the mirrored guestbook."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, FastAPI, Query, WebSocket
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketDisconnect

from .broadcast import ChangeBroadcaster
from .formatting import format_relative_time, should_truncate
from .guestbook import GuestbookManager
from .models import GuestbookEntry

logger = logging.getLogger("guestbook.api")


class EntryView(BaseModel):
    id: str
    author_name: str
    message: str
    date: Optional[str] = None
    relative_date: str
    user_id: Optional[str] = None
    is_admin: bool = False
    truncated: bool = False


class EntryListResponse(BaseModel):
    ready: bool
    count: int
    entries: List[EntryView] = Field(default_factory=list)
    notice: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    ready: bool
    entries: int
    subscribers: int


def _entry_to_view(entry: GuestbookEntry, *, now: datetime, locale: str) -> EntryView:
    return EntryView(
        id=entry.id,
        author_name=entry.author_name,
        message=entry.message,
        date=entry.date,
        relative_date=format_relative_time(entry.date, now=now, locale=locale),
        user_id=entry.user_id,
        is_admin=entry.is_admin,
        truncated=should_truncate(entry.message),
    )


def register_api_routes(
    app: FastAPI,
    *,
    guestbook: GuestbookManager,
    broadcaster: ChangeBroadcaster,
    locale: str,
) -> None:
    """Expose read-only JSON views and the change notification socket."""

    router = APIRouter()

    @router.get("/api/entries", response_model=EntryListResponse, name="api_entries")
    async def list_entries(q: str = Query("", max_length=200)) -> EntryListResponse:
        matches = await guestbook.resolve_authors(guestbook.search(q))
        now = datetime.now(timezone.utc)
        return EntryListResponse(
            ready=guestbook.ready,
            count=len(matches),
            entries=[_entry_to_view(entry, now=now, locale=locale) for entry in matches],
            notice=guestbook.notice,
        )

    @router.get("/healthz", response_model=HealthResponse, name="healthz")
    async def healthz() -> HealthResponse:
        return HealthResponse(
            status="ok" if guestbook.ready else "degraded",
            ready=guestbook.ready,
            entries=len(guestbook.entries),
            subscribers=broadcaster.client_count,
        )

    @router.websocket("/ws/entries")
    async def entries_socket(websocket: WebSocket) -> None:
        await broadcaster.register(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.unregister(websocket)

    app.include_router(router)


__all__ = ["EntryListResponse", "EntryView", "HealthResponse", "register_api_routes"]
