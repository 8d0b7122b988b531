"""End-to-end tests for the guestbook pages and JSON endpoints."""

from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient

from guestbook.config import Settings, StartupConfig
from guestbook.identity import AuthError
from guestbook.models import AuthSession, utc_now
from guestbook.service import create_app
from guestbook.sessions import SessionStore
from guestbook.web import SESSION_COOKIE_NAME

EMAIL = "alice@example.com"
PASSWORD = "secret-password"


def _settings(**overrides) -> Settings:
    values = {"session_secret": "not-so-secret", "startup": StartupConfig(attempts=2, interval=0)}
    values.update(overrides)
    return Settings(**values)


def _app(store, identity, **overrides):
    return create_app(settings=_settings(**overrides), store=store, identity=identity, start_listener=False)


def _register(identity, store, email: str = EMAIL, *, name: str = "Alice", admin: bool = False) -> str:
    uid = identity.register(email, PASSWORD)
    store.data.setdefault("users", {})[uid] = {
        "uid": uid,
        "email": email,
        "displayName": name,
        "isAdmin": admin,
        "createdAt": "2024-01-01T00:00:00.000Z",
    }
    return uid


def _login(client: TestClient, email: str = EMAIL) -> None:
    response = client.post("/login", data={"email": email, "password": PASSWORD}, follow_redirects=False)
    assert response.status_code == 303, response.text


def test_index_renders_empty_guestbook(store, identity) -> None:
    with TestClient(_app(store, identity)) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert "No entries yet. Be the first to sign the guestbook!" in response.text
    assert "Create first admin" in response.text


def test_login_sets_session_cookie_and_welcome(store, identity) -> None:
    _register(identity, store)

    with TestClient(_app(store, identity)) as client:
        response = client.post("/login", data={"email": EMAIL, "password": PASSWORD}, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].endswith("/")
        assert SESSION_COOKIE_NAME in response.cookies

        page = client.get("/")
        assert "Welcome, Alice" in page.text
        assert "Sign out" in page.text


def test_login_failure_shows_error(store, identity) -> None:
    _register(identity, store)

    with TestClient(_app(store, identity)) as client:
        response = client.post("/login", data={"email": EMAIL, "password": "wrong-password"})

    assert response.status_code == 400
    assert "The password is incorrect." in response.text


def test_anonymous_post_redirects_to_login_prompt(store, identity) -> None:
    with TestClient(_app(store, identity)) as client:
        response = client.post("/entries", data={"author_name": "Mallory", "message": "hi"}, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].endswith("/?login=required")

        page = client.get(response.headers["location"])

    assert "Please sign in to leave a message." in page.text
    assert "loginRequiredMessage" in page.text
    assert "guestbooks" not in store.data


def test_signed_in_visitor_can_post_and_sees_escaped_message(store, identity) -> None:
    uid = _register(identity, store)

    with TestClient(_app(store, identity)) as client:
        _login(client)
        response = client.post(
            "/entries",
            data={"author_name": "Alice", "message": "<script>alert(1)</script>"},
            follow_redirects=False,
        )
        assert response.status_code == 303

        page = client.get("/")

    records = list(store.data["guestbooks"].values())
    assert len(records) == 1
    assert records[0]["userId"] == uid
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in page.text
    assert "<script>alert(1)</script>" not in page.text
    assert "Your message has been posted." in page.text


def test_edit_and_delete_are_limited_to_owner(store, identity) -> None:
    _register(identity, store)
    store.data["guestbooks"] = {
        "-theirs": {
            "authorName": "Bob",
            "message": "original",
            "date": "2024-01-01T00:00:00.000Z",
            "userId": "uid-bob",
            "isAdmin": False,
        }
    }

    with TestClient(_app(store, identity)) as client:
        _login(client)

        edit = client.post(
            "/entries/-theirs/edit",
            data={"author_name": "Alice", "message": "hijacked"},
            follow_redirects=False,
        )
        assert edit.status_code == 303
        assert "edit=-theirs" in edit.headers["location"]

        page = client.get("/")
        assert "You can only edit your own entries." in page.text
        assert "/entries/-theirs/delete" not in page.text

        delete = client.post("/entries/-theirs/delete", follow_redirects=False)
        assert delete.status_code == 303

    assert store.data["guestbooks"]["-theirs"]["message"] == "original"


def test_owner_can_edit_and_delete(store, identity) -> None:
    uid = _register(identity, store)
    store.data["guestbooks"] = {
        "-mine": {
            "authorName": "Alice",
            "message": "draft",
            "date": "2024-01-01T00:00:00.000Z",
            "userId": uid,
            "isAdmin": False,
        }
    }

    with TestClient(_app(store, identity)) as client:
        _login(client)

        form = client.get("/?edit=-mine")
        assert 'class="edit-form"' in form.text

        client.post("/entries/-mine/edit", data={"author_name": "Alice", "message": "final"})
        assert store.data["guestbooks"]["-mine"]["message"] == "final"

        client.post("/entries/-mine/delete")
        assert "-mine" not in store.data.get("guestbooks", {})


def test_crlf_line_endings_are_stored_as_newlines(store, identity) -> None:
    _register(identity, store)
    message = "x" * 75 + "\r\n" + "y" * 74

    with TestClient(_app(store, identity)) as client:
        _login(client)
        client.post("/entries", data={"author_name": "Alice", "message": message})
        (key,) = store.data["guestbooks"]
        stored = store.data["guestbooks"][key]["message"]
        assert stored == "x" * 75 + "\n" + "y" * 74

        entries = client.get("/api/entries").json()["entries"]
        assert entries[0]["truncated"] is False

        client.post(f"/entries/{key}/edit", data={"author_name": "Alice", "message": "one\r\ntwo\rthree"})
        assert store.data["guestbooks"][key]["message"] == "one\ntwo\nthree"


def test_search_and_detail_view(store, identity) -> None:
    long_message = "line one\nline two\nline three\nline four"
    store.data["guestbooks"] = {
        "-a": {"authorName": "Alice", "message": "hello world", "date": "2024-01-02T00:00:00.000Z"},
        "-b": {"authorName": "Bob", "message": long_message, "date": "2024-01-01T00:00:00.000Z"},
    }

    with TestClient(_app(store, identity)) as client:
        found = client.get("/", params={"q": "HELLO"})
        assert "hello world" in found.text
        assert "line four" not in found.text

        none = client.get("/fragments/entries", params={"q": "nothing-matches"})
        assert "No entries match your search." in none.text

        listing = client.get("/")
        assert "line four" not in listing.text
        assert "/entries/-b" in listing.text

        detail = client.get("/entries/-b")
        assert detail.status_code == 200
        assert "line four" in detail.text

        missing = client.get("/entries/-zzz", follow_redirects=False)
        assert missing.status_code == 303


def test_signup_errors_and_success(store, identity) -> None:
    with TestClient(_app(store, identity)) as client:
        mismatch = client.post(
            "/signup",
            data={"name": "Carol", "email": "carol@example.com", "password": "secret1", "password_confirm": "secret2"},
        )
        assert mismatch.status_code == 400
        assert "Passwords do not match." in mismatch.text

        created = client.post(
            "/signup",
            data={"name": "Carol", "email": "carol@example.com", "password": "secret1", "password_confirm": "secret1"},
            follow_redirects=False,
        )
        assert created.status_code == 303

        page = client.get("/")
        assert "Welcome, Carol" in page.text

        logout = client.get("/logout", follow_redirects=False)
        assert logout.status_code == 303
        assert "Welcome, Carol" not in client.get("/").text


def test_first_admin_flow_and_admin_page(store, identity) -> None:
    with TestClient(_app(store, identity)) as client:
        form = client.get("/first-admin")
        assert form.status_code == 200

        denied = client.get("/admin", follow_redirects=False)
        assert denied.status_code == 303

        created = client.post(
            "/first-admin",
            data={"email": "root@example.com", "password": "secret1", "password_confirm": "secret1"},
            follow_redirects=False,
        )
        assert created.status_code == 303

        admin = client.get("/admin")
        assert admin.status_code == 200
        assert "root@example.com" in admin.text

        client.get("/logout")
        again = client.get("/first-admin", follow_redirects=False)
        assert again.status_code == 303
        assert "Create first admin" not in client.get("/").text


def test_api_entries_and_health(store, identity) -> None:
    store.data["guestbooks"] = {
        "-a": {"authorName": "Alice", "message": "hello", "date": "2024-01-02T00:00:00.000Z", "userId": "uid-a"},
    }
    store.data["users"] = {"uid-a": {"uid": "uid-a", "displayName": "Alicia", "isAdmin": True}}

    with TestClient(_app(store, identity)) as client:
        entries = client.get("/api/entries").json()
        health = client.get("/healthz").json()

    assert entries["ready"] is True
    assert entries["count"] == 1
    assert entries["entries"][0]["author_name"] == "Alicia"
    assert entries["entries"][0]["is_admin"] is True
    assert health == {"status": "ok", "ready": True, "entries": 1, "subscribers": 0}


def test_degraded_startup_reports_notice(store, identity) -> None:
    store.reachable = False

    with TestClient(_app(store, identity)) as client:
        health = client.get("/healthz").json()
        page = client.get("/")

    assert health["status"] == "degraded"
    assert "Could not connect to the database. Please refresh the page." in page.text


def test_websocket_receives_snapshot_and_updates(store, identity) -> None:
    _register(identity, store)

    with TestClient(_app(store, identity)) as client:
        with client.websocket_connect("/ws/entries") as websocket:
            initial = websocket.receive_json()
            assert initial == {"type": "entries", "ready": True, "count": 0}

            _login(client)
            client.post("/entries", data={"author_name": "Alice", "message": "live"})

            update = websocket.receive_json()
            assert update["count"] == 1


def test_websocket_ignores_binary_frames(store, identity) -> None:
    _register(identity, store)

    with TestClient(_app(store, identity)) as client:
        with client.websocket_connect("/ws/entries") as websocket:
            websocket.receive_json()
            websocket.send_bytes(b"\x00\x01")

            _login(client)
            client.post("/entries", data={"author_name": "Alice", "message": "still listening"})

            assert websocket.receive_json()["count"] == 1


def _expired_session(uid: str) -> AuthSession:
    return AuthSession(
        uid=uid,
        email=EMAIL,
        id_token=f"id-{uid}",
        refresh_token=f"refresh-{uid}",
        expires_at=utc_now() - timedelta(minutes=5),
        display_name="Alice",
    )


def test_expired_token_is_refreshed_before_writing(store, identity) -> None:
    uid = _register(identity, store)
    sessions = SessionStore()
    token = sessions.open(_expired_session(uid))
    app = create_app(settings=_settings(), store=store, identity=identity, sessions=sessions, start_listener=False)

    with TestClient(app) as client:
        client.cookies.set(SESSION_COOKIE_NAME, token)
        client.post("/entries", data={"author_name": "Alice", "message": "fresh"})

    assert identity.refreshed == [f"refresh-{uid}"]
    assert ("push", "guestbooks", f"id-{uid}-renewed") in store.calls
    assert sessions.get(token).id_token == f"id-{uid}-renewed"


def test_failed_refresh_signs_the_user_out(store, identity) -> None:
    uid = _register(identity, store)
    identity.fail["refresh"] = AuthError("auth/requires-recent-login", "TOKEN_EXPIRED")
    sessions = SessionStore()
    token = sessions.open(_expired_session(uid))
    app = create_app(settings=_settings(), store=store, identity=identity, sessions=sessions, start_listener=False)

    with TestClient(app) as client:
        client.cookies.set(SESSION_COOKIE_NAME, token)
        response = client.post("/entries", data={"author_name": "Alice", "message": "stale"})

    assert "Please sign in again for security reasons." in response.text
    assert sessions.get(token) is None
    assert "guestbooks" not in store.data
