"""Application factory wiring the guestbook to its hosted collaborators."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from typing import Any, List, Optional

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from . import messages
from .api import register_api_routes
from .auth import AuthManager
from .broadcast import ChangeBroadcaster
from .config import Settings, load_settings
from .guestbook import GuestbookManager
from .identity import IdentityProvider
from .realtime import DatabaseError, RealtimeDatabase
from .sessions import SessionStore
from .web import register_ui_routes

logger = logging.getLogger("guestbook.service")


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("GUESTBOOK_TRUSTED_PROXIES")
    if not raw:
        return "127.0.0.1"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "127.0.0.1"


def _build_store(settings: Settings) -> RealtimeDatabase:
    if not settings.firebase.database_url:
        raise RuntimeError(
            "GUESTBOOK_DATABASE_URL (or firebase.database_url) must be configured"
        )
    return RealtimeDatabase(settings.firebase.database_url, auth=settings.firebase.database_auth)


def _build_identity(settings: Settings) -> IdentityProvider:
    if not settings.firebase.api_key:
        raise RuntimeError(
            "GUESTBOOK_FIREBASE_API_KEY (or firebase.api_key) must be configured"
        )
    return IdentityProvider(settings.firebase.api_key)


def create_app(
    *,
    settings: Optional[Settings] = None,
    store: Any = None,
    identity: Any = None,
    sessions: Optional[SessionStore] = None,
    start_listener: bool = True,
) -> FastAPI:
    """Create the guestbook web application.

    ``store`` and ``identity`` are the realtime database and identity provider
    clients. When omitted they are built from ``settings``; injected clients
    are left open on shutdown.
    """

    if settings is None:
        settings = load_settings()
    if not settings.session_secret:
        raise RuntimeError("GUESTBOOK_SESSION_SECRET must be configured to serve the guestbook")

    owned: List[Any] = []
    if store is None:
        store = _build_store(settings)
        owned.append(store)
    if identity is None:
        identity = _build_identity(settings)
        owned.append(identity)

    firebase = settings.firebase
    guestbook = GuestbookManager(
        store,
        entries_path=firebase.entries_path,
        users_path=firebase.users_path,
        locale=settings.locale,
    )
    auth = AuthManager(identity, store, users_path=firebase.users_path, locale=settings.locale)
    if sessions is None:
        sessions = SessionStore()

    def _snapshot() -> dict:
        return {
            "type": "entries",
            "ready": guestbook.ready,
            "count": len(guestbook.entries),
        }

    broadcaster = ChangeBroadcaster(_snapshot)
    guestbook.subscribe(broadcaster.publish)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        listener: Optional[asyncio.Task] = None
        ready = await guestbook.wait_until_ready(
            attempts=settings.startup.attempts,
            interval=settings.startup.interval,
        )
        if ready:
            try:
                await guestbook.refresh()
            except DatabaseError as exc:
                logger.error("Initial guestbook load failed (%s): %s", exc.code, exc.message)
                if exc.permission_denied:
                    guestbook.notice = messages.text("permission_denied", settings.locale)

            bootstrap = settings.admin_bootstrap
            if bootstrap.enabled and bootstrap.password:
                await auth.ensure_default_admin(bootstrap.email, bootstrap.password)
            await auth.refresh_admin_exists()

            if start_listener:
                listener = asyncio.create_task(
                    guestbook.run_listener(reconnect_delay=settings.startup.reconnect_delay)
                )
        try:
            yield
        finally:
            if listener is not None:
                listener.cancel()
                with suppress(asyncio.CancelledError):
                    await listener
            for client in owned:
                await client.aclose()

    app = FastAPI(
        title="Guestbook",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="guestbook_flash",
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=60 * 60 * 24,
    )

    app.state.settings = settings
    app.state.guestbook = guestbook
    app.state.auth = auth
    app.state.sessions = sessions
    app.state.broadcaster = broadcaster

    register_api_routes(app, guestbook=guestbook, broadcaster=broadcaster, locale=settings.locale)
    register_ui_routes(
        app,
        guestbook=guestbook,
        auth=auth,
        sessions=sessions,
        settings=settings,
    )
    return app


__all__ = ["create_app"]
