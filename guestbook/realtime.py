"""REST client for the hosted realtime database."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import httpx

logger = logging.getLogger("guestbook.realtime")

PERMISSION_DENIED = "PERMISSION_DENIED"
NETWORK_ERROR = "NETWORK_ERROR"
UNAVAILABLE = "UNAVAILABLE"
NOT_FOUND = "NOT_FOUND"
LISTEN_CANCELLED = "LISTEN_CANCELLED"

_DEFAULT = object()


class DatabaseError(RuntimeError):
    """Raised when the realtime database rejects or fails a request."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def permission_denied(self) -> bool:
        return self.code == PERMISSION_DENIED


@dataclass(frozen=True)
class ChangeEvent:
    """A ``put`` or ``patch`` event delivered by the change feed."""

    event: str
    path: str
    data: Any


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("Realtime database URL must not be empty")
    return cleaned.rstrip("/")


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return default


def _code_for_status(status_code: int) -> str:
    if status_code in {401, 403}:
        return PERMISSION_DENIED
    if status_code == 404:
        return NOT_FOUND
    if status_code >= 500:
        return UNAVAILABLE
    return f"HTTP_{status_code}"


def _raise_for_response(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        parsed: object = response.json()
    except ValueError:
        parsed = response.text
    default = f"Realtime database request failed with status {response.status_code}"
    raise DatabaseError(_code_for_status(response.status_code), _extract_error_message(parsed, default))


class RealtimeDatabase:
    """Read, write and subscribe to paths of the hosted realtime database."""

    def __init__(
        self,
        database_url: str,
        *,
        auth: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = _normalize_base_url(database_url)
        self._auth = auth
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _url(self, path: str) -> str:
        cleaned = path.strip("/")
        if not cleaned:
            return f"{self._base_url}/.json"
        return f"{self._base_url}/{cleaned}.json"

    def _params(self, auth: object, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        params: Dict[str, str] = dict(extra or {})
        token = self._auth if auth is _DEFAULT else auth
        if token:
            params["auth"] = str(token)
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        auth: object = _DEFAULT,
        payload: object = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Any:
        url = self._url(path)
        kwargs: Dict[str, Any] = {"params": self._params(auth, params)}
        if payload is not None:
            kwargs["content"] = json.dumps(payload)
            kwargs["headers"] = {"Content-Type": "application/json"}
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            raise DatabaseError(NETWORK_ERROR, f"Failed to contact the realtime database: {exc}") from exc

        _raise_for_response(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise DatabaseError(UNAVAILABLE, "Realtime database returned an invalid response") from exc

    async def get(self, path: str, *, auth: object = _DEFAULT, shallow: bool = False) -> Any:
        params = {"shallow": "true"} if shallow else None
        return await self._request("GET", path, auth=auth, params=params)

    async def set(self, path: str, value: Any, *, auth: object = _DEFAULT) -> None:
        await self._request("PUT", path, auth=auth, payload=value)

    async def update(self, path: str, values: Mapping[str, Any], *, auth: object = _DEFAULT) -> None:
        await self._request("PATCH", path, auth=auth, payload=dict(values))

    async def push(self, path: str, value: Any, *, auth: object = _DEFAULT) -> str:
        """Append ``value`` under ``path`` and return the generated key."""

        result = await self._request("POST", path, auth=auth, payload=value)
        if not isinstance(result, dict) or not isinstance(result.get("name"), str):
            raise DatabaseError(UNAVAILABLE, "Realtime database did not return a generated key")
        return result["name"]

    async def remove(self, path: str, *, auth: object = _DEFAULT) -> None:
        await self._request("DELETE", path, auth=auth)

    async def ping(self, path: str = "") -> bool:
        """Return ``True`` once the database answers requests at all."""

        try:
            await self._request("GET", path, params={"shallow": "true"})
        except DatabaseError as exc:
            if exc.code == NETWORK_ERROR:
                logger.debug("Realtime database not reachable yet: %s", exc.message)
                return False
            return True
        return True

    async def listen(self, path: str, *, auth: object = _DEFAULT) -> AsyncIterator[ChangeEvent]:
        """Yield change events streamed for ``path`` until the stream ends."""

        url = self._url(path)
        headers = {"Accept": "text/event-stream"}
        try:
            async with self._client.stream(
                "GET",
                url,
                params=self._params(auth),
                headers=headers,
                timeout=httpx.Timeout(10.0, read=None),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    _raise_for_response(response)

                event_name: Optional[str] = None
                data_lines: list[str] = []
                async for line in response.aiter_lines():
                    if line.startswith("event:"):
                        event_name = line[len("event:"):].strip()
                        continue
                    if line.startswith("data:"):
                        data_lines.append(line[len("data:"):].strip())
                        continue
                    if line.strip():
                        continue

                    change = _decode_event(event_name, data_lines)
                    event_name, data_lines = None, []
                    if change is not None:
                        yield change
        except httpx.RequestError as exc:
            raise DatabaseError(NETWORK_ERROR, f"Change feed connection failed: {exc}") from exc


def _decode_event(event_name: Optional[str], data_lines: list[str]) -> Optional[ChangeEvent]:
    if event_name is None or event_name == "keep-alive":
        return None
    if event_name == "cancel":
        raise DatabaseError(PERMISSION_DENIED, "Change feed was cancelled by the database rules")
    if event_name == "auth_revoked":
        raise DatabaseError(LISTEN_CANCELLED, "Change feed credential was revoked")
    if event_name not in {"put", "patch"}:
        logger.debug("Ignoring unknown change feed event %s", event_name)
        return None

    raw = "\n".join(data_lines)
    try:
        payload = json.loads(raw) if raw else None
    except ValueError:
        logger.warning("Discarding malformed change feed payload for event %s", event_name)
        return None
    if not isinstance(payload, dict) or "path" not in payload:
        return None
    return ChangeEvent(event=event_name, path=str(payload["path"]), data=payload.get("data"))


__all__ = [
    "ChangeEvent",
    "DatabaseError",
    "LISTEN_CANCELLED",
    "NETWORK_ERROR",
    "NOT_FOUND",
    "PERMISSION_DENIED",
    "RealtimeDatabase",
    "UNAVAILABLE",
]
