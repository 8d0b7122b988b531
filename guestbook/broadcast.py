"""Fan-out of guestbook change notifications over WebSockets."""
from __future__ import annotations

import logging
from contextlib import suppress
from typing import Any, Callable, Dict, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger("guestbook.broadcast")


async def send_websocket_json(websocket: WebSocket, payload: dict[str, Any]) -> bool:
    """Safely send a JSON payload to a websocket client."""

    if websocket.client_state == WebSocketState.DISCONNECTED:
        return False
    try:
        await websocket.send_json(payload)
    except Exception:
        return False
    return True


class ChangeBroadcaster:
    """Track connected clients and notify them whenever the guestbook changes."""

    def __init__(self, snapshot: Callable[[], Dict[str, Any]]) -> None:
        self._snapshot = snapshot
        self._clients: Set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def register(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        await send_websocket_json(websocket, self._snapshot())

    def unregister(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)

    async def publish(self) -> None:
        if not self._clients:
            return
        payload = self._snapshot()
        stale = []
        for websocket in list(self._clients):
            if not await send_websocket_json(websocket, payload):
                stale.append(websocket)
        for websocket in stale:
            self._clients.discard(websocket)
            with suppress(Exception):
                await websocket.close()
        if stale:
            logger.debug("Dropped %d disconnected change subscribers", len(stale))


__all__ = ["ChangeBroadcaster", "send_websocket_json"]
