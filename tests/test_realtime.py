from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from guestbook.realtime import (
    LISTEN_CANCELLED,
    NETWORK_ERROR,
    NOT_FOUND,
    PERMISSION_DENIED,
    ChangeEvent,
    DatabaseError,
    RealtimeDatabase,
)

BASE_URL = "https://guestbook-test.firebaseio.com"


def _database(handler, *, auth=None) -> RealtimeDatabase:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RealtimeDatabase(BASE_URL + "/", auth=auth, client=client)


def test_get_targets_json_endpoint_with_server_credential() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"-a": {"authorName": "Alice"}})

    database = _database(handler, auth="server-secret")
    result = asyncio.run(database.get("/guestbooks/"))

    assert result == {"-a": {"authorName": "Alice"}}
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/guestbooks.json"
    assert seen[0].url.params["auth"] == "server-secret"


def test_per_request_token_replaces_server_credential() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"name": "-generated"})

    database = _database(handler, auth="server-secret")
    key = asyncio.run(database.push("guestbooks", {"message": "hi"}, auth="user-token"))

    assert key == "-generated"
    assert seen[0].method == "POST"
    assert seen[0].url.params["auth"] == "user-token"
    assert json.loads(seen[0].content) == {"message": "hi"}


def test_update_and_remove_use_patch_and_delete() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=None)

    database = _database(handler)

    async def scenario() -> None:
        await database.update("guestbooks/-a", {"message": "edited"})
        await database.remove("guestbooks/-a")

    asyncio.run(scenario())

    assert [request.method for request in seen] == ["PATCH", "DELETE"]
    assert "auth" not in seen[0].url.params
    assert json.loads(seen[0].content) == {"message": "edited"}


def test_rule_rejection_maps_to_permission_denied() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "Permission denied"})

    database = _database(handler)
    with pytest.raises(DatabaseError) as excinfo:
        asyncio.run(database.set("users/uid-1", {"isAdmin": True}))

    assert excinfo.value.code == PERMISSION_DENIED
    assert excinfo.value.permission_denied
    assert excinfo.value.message == "Permission denied"


def test_missing_resource_maps_to_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="Not Found")

    with pytest.raises(DatabaseError) as excinfo:
        asyncio.run(_database(handler).get("missing"))

    assert excinfo.value.code == NOT_FOUND


def test_ping_reports_reachability() -> None:
    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def denied(request: httpx.Request) -> httpx.Response:
        assert request.url.params["shallow"] == "true"
        return httpx.Response(401, json={"error": "Permission denied"})

    assert asyncio.run(_database(offline).ping("guestbooks")) is False
    assert asyncio.run(_database(denied).ping("guestbooks")) is True


def test_network_failure_raises_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DatabaseError) as excinfo:
        asyncio.run(_database(handler).get("guestbooks"))

    assert excinfo.value.code == NETWORK_ERROR


def _stream(body: str):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["accept"] == "text/event-stream"
        return httpx.Response(200, content=body.encode("utf-8"), headers={"content-type": "text/event-stream"})

    return _database(handler)


async def _collect(database: RealtimeDatabase):
    return [change async for change in database.listen("guestbooks")]


def test_listen_parses_put_and_patch_events() -> None:
    body = (
        "event: put\n"
        'data: {"path": "/", "data": {"-a": {"authorName": "Alice"}}}\n'
        "\n"
        "event: keep-alive\n"
        "data: null\n"
        "\n"
        "event: patch\n"
        'data: {"path": "/-a", "data": {"message": "edited"}}\n'
        "\n"
    )

    changes = asyncio.run(_collect(_stream(body)))

    assert changes == [
        ChangeEvent(event="put", path="/", data={"-a": {"authorName": "Alice"}}),
        ChangeEvent(event="patch", path="/-a", data={"message": "edited"}),
    ]


def test_listen_cancel_event_raises_permission_denied() -> None:
    body = "event: cancel\ndata: null\n\n"

    with pytest.raises(DatabaseError) as excinfo:
        asyncio.run(_collect(_stream(body)))

    assert excinfo.value.code == PERMISSION_DENIED


def test_listen_auth_revoked_stops_the_feed() -> None:
    body = "event: auth_revoked\ndata: credential is no longer valid\n\n"

    with pytest.raises(DatabaseError) as excinfo:
        asyncio.run(_collect(_stream(body)))

    assert excinfo.value.code == LISTEN_CANCELLED
