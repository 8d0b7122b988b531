"""HTML interface for the guestbook and its authentication panel."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from . import messages
from .auth import PASSWORD_MIN_LENGTH, AuthFlowError, AuthManager
from .config import Settings
from .formatting import format_relative_time, initial, is_owner, should_truncate, truncate_message
from .guestbook import GuestbookError, GuestbookManager
from .models import AuthSession, GuestbookEntry
from .realtime import DatabaseError
from .sessions import SessionStore

logger = logging.getLogger("guestbook.web")

SESSION_COOKIE_NAME = "guestbook_session"

BASE_DIR = Path(__file__).resolve().parent


def _template_environment(locale: str) -> Jinja2Templates:
    templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
    templates.env.globals["t"] = lambda key, **params: messages.text(key, locale, **params)
    templates.env.globals["locale"] = locale
    return templates


def register_ui_routes(
    app: FastAPI,
    *,
    guestbook: GuestbookManager,
    auth: AuthManager,
    sessions: SessionStore,
    settings: Settings,
) -> None:
    """Expose the guestbook pages on the provided FastAPI app."""

    locale = settings.locale
    templates = _template_environment(locale)
    static_dir = BASE_DIR / "static"
    if static_dir.exists():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

    router = APIRouter(include_in_schema=False)

    def _text(key: str, **params: object) -> str:
        return messages.text(key, locale, **params)

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        flashes = request.session.get("flash_messages")
        if not isinstance(flashes, list):
            flashes = []
        flashes.append({"message": message, "category": category})
        request.session["flash_messages"] = flashes

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        flashes = request.session.pop("flash_messages", [])
        if isinstance(flashes, list):
            return flashes
        return []

    def _load_session(request: Request) -> Tuple[Optional[AuthSession], Optional[str]]:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not token:
            return None, None
        return sessions.get(token), token

    def _issue_session_cookie(response, token: str) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=sessions.cookie_max_age,
            secure=settings.secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )

    def _clear_session_cookie(response, token: Optional[str]) -> None:
        sessions.close(token)
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")

    async def _writable_session(request: Request) -> Optional[AuthSession]:
        session, token = _load_session(request)
        if session is None or token is None:
            return None
        try:
            fresh = await auth.ensure_fresh(session)
        except AuthFlowError as exc:
            sessions.close_user(session.uid)
            _flash(request, exc.message, category="error")
            return None
        if fresh is not session:
            sessions.update(token, fresh)
        return fresh

    def _redirect(request: Request, name: str, *, query: str = "", **params: str) -> RedirectResponse:
        url = str(request.url_for(name, **params))
        if query:
            url = f"{url}?{query}"
        return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)

    def _entry_to_view(
        request: Request,
        entry: GuestbookEntry,
        session: Optional[AuthSession],
        now: datetime,
        editing: Optional[str],
    ) -> Dict[str, object]:
        owner = is_owner(entry, session)
        return {
            "id": entry.id,
            "author_name": entry.author_name,
            "initial": initial(entry.author_name),
            "is_admin": entry.is_admin,
            "date": format_relative_time(entry.date, now=now, locale=locale),
            "message": entry.message,
            "preview": truncate_message(entry.message),
            "truncated": should_truncate(entry.message),
            "is_owner": owner,
            "editing": owner and editing == entry.id,
            "detail_url": request.url_for("show_entry", entry_id=entry.id),
            "edit_url": request.url_for("edit_entry", entry_id=entry.id),
            "delete_url": request.url_for("delete_entry", entry_id=entry.id),
        }

    async def _entries_context(
        request: Request,
        session: Optional[AuthSession],
        *,
        term: str,
        editing: Optional[str] = None,
    ) -> Dict[str, object]:
        matches = guestbook.search(term)
        resolved = await guestbook.resolve_authors(matches)
        now = datetime.now(timezone.utc)
        return {
            "entries": [_entry_to_view(request, entry, session, now, editing) for entry in resolved],
            "search_term": term,
            "empty_message": _text("empty_search") if term.strip() else _text("empty_list"),
        }

    def _base_context(request: Request, session: Optional[AuthSession], **extra) -> Dict[str, object]:
        context: Dict[str, object] = {
            "request": request,
            "session": session,
            "welcome": auth.welcome_text(session) if session else "",
            "messages": _consume_flash(request),
            "backend_notice": guestbook.notice,
            "show_first_admin": session is None and auth.admin_exists_cached is False,
            "refresh_interval": settings.refresh_interval,
        }
        context.update(extra)
        return context

    def _render(
        request: Request,
        template: str,
        context: Dict[str, object],
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return templates.TemplateResponse(request, template, context, status_code=status_code)

    @router.get("/", response_class=HTMLResponse, name="index")
    async def index(request: Request):
        session, token = _load_session(request)
        term = request.query_params.get("q", "")
        editing = request.query_params.get("edit")
        context = _base_context(
            request,
            session,
            login_required=request.query_params.get("login") == "required" and session is None,
            **await _entries_context(request, session, term=term, editing=editing),
        )
        response = _render(request, "index.html", context)
        if token and session is None:
            _clear_session_cookie(response, token)
        return response

    @router.get("/fragments/entries", response_class=HTMLResponse, name="entries_fragment")
    async def entries_fragment(request: Request):
        session, _ = _load_session(request)
        term = request.query_params.get("q", "")
        context = {"request": request, **await _entries_context(request, session, term=term)}
        return _render(request, "_entries.html", context)

    @router.post("/entries", name="create_entry")
    async def create_entry(request: Request, author_name: str = Form(""), message: str = Form("")):
        session = await _writable_session(request)
        if session is None:
            _flash(request, _text("login_required"), category="warning")
            return _redirect(request, "index", query="login=required")
        try:
            await guestbook.add_entry(author_name, message, session)
        except GuestbookError as exc:
            _flash(request, exc.message, category=exc.category)
        else:
            _flash(request, _text("entry_added"), category="success")
        return _redirect(request, "index")

    @router.get("/entries/{entry_id}", response_class=HTMLResponse, name="show_entry")
    async def show_entry(request: Request, entry_id: str):
        session, _ = _load_session(request)
        entry = guestbook.find(entry_id)
        if entry is None:
            _flash(request, _text("entry_not_found"), category="error")
            return _redirect(request, "index")
        resolved = (await guestbook.resolve_authors([entry]))[0]
        now = datetime.now(timezone.utc)
        context = _base_context(request, session, entry=_entry_to_view(request, resolved, session, now, None))
        return _render(request, "entry.html", context)

    @router.post("/entries/{entry_id}/edit", name="edit_entry")
    async def edit_entry(
        request: Request,
        entry_id: str,
        author_name: str = Form(""),
        message: str = Form(""),
    ):
        session = await _writable_session(request)
        try:
            await guestbook.update_entry(entry_id, author_name, message, session)
        except GuestbookError as exc:
            _flash(request, exc.message, category=exc.category)
            return _redirect(request, "index", query=f"edit={entry_id}")
        _flash(request, _text("entry_updated"), category="success")
        return _redirect(request, "index")

    @router.post("/entries/{entry_id}/delete", name="delete_entry")
    async def delete_entry(request: Request, entry_id: str):
        session = await _writable_session(request)
        try:
            await guestbook.delete_entry(entry_id, session)
        except GuestbookError as exc:
            _flash(request, exc.message, category=exc.category)
        else:
            _flash(request, _text("entry_deleted"), category="success")
        return _redirect(request, "index")

    def _auth_page(
        request: Request,
        tab: str,
        *,
        error: Optional[str] = None,
        email: str = "",
        name: str = "",
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        context = _base_context(
            request,
            None,
            tab=tab,
            error=error,
            email=email,
            name=name,
            password_min_length=PASSWORD_MIN_LENGTH,
        )
        return _render(request, "auth.html", context, status_code=status_code)

    def _signed_in_response(request: Request, session: AuthSession) -> RedirectResponse:
        sessions.close(request.cookies.get(SESSION_COOKIE_NAME))
        token = sessions.open(session)
        response = _redirect(request, "index")
        _issue_session_cookie(response, token)
        return response

    @router.get("/login", response_class=HTMLResponse, name="show_login")
    async def show_login(request: Request):
        session, _ = _load_session(request)
        if session is not None:
            return _redirect(request, "index")
        return _auth_page(request, "login")

    @router.post("/login", name="process_login")
    async def process_login(request: Request, email: str = Form(""), password: str = Form("")):
        try:
            session = await auth.sign_in(email, password)
        except AuthFlowError as exc:
            return _auth_page(
                request,
                "login",
                error=exc.message,
                email=email.strip(),
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return _signed_in_response(request, session)

    @router.get("/signup", response_class=HTMLResponse, name="show_signup")
    async def show_signup(request: Request):
        session, _ = _load_session(request)
        if session is not None:
            return _redirect(request, "index")
        return _auth_page(request, "signup")

    @router.post("/signup", name="process_signup")
    async def process_signup(
        request: Request,
        name: str = Form(""),
        email: str = Form(""),
        password: str = Form(""),
        password_confirm: str = Form(""),
    ):
        try:
            outcome = await auth.sign_up(name, email, password, password_confirm)
        except AuthFlowError as exc:
            return _auth_page(
                request,
                "signup",
                error=exc.message,
                email=email.strip(),
                name=name.strip(),
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        for warning in outcome.warnings:
            _flash(request, warning, category="warning")
        assert outcome.session is not None
        return _signed_in_response(request, outcome.session)

    @router.get("/logout", name="logout")
    async def logout(request: Request):
        session, token = _load_session(request)
        await auth.sign_out(session)
        _flash(request, _text("signed_out"), category="info")
        response = _redirect(request, "index")
        _clear_session_cookie(response, token)
        return response

    async def _first_admin_allowed(request: Request) -> bool:
        session, _ = _load_session(request)
        if session is not None:
            return False
        exists = await auth.refresh_admin_exists()
        return exists is not True

    @router.get("/first-admin", response_class=HTMLResponse, name="show_first_admin")
    async def show_first_admin(request: Request):
        if not await _first_admin_allowed(request):
            _flash(request, _text("admin_already_exists"), category="info")
            return _redirect(request, "index")
        context = _base_context(request, None, error=None, email="", password_min_length=PASSWORD_MIN_LENGTH)
        return _render(request, "first_admin.html", context)

    @router.post("/first-admin", name="process_first_admin")
    async def process_first_admin(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        password_confirm: str = Form(""),
    ):
        if not await _first_admin_allowed(request):
            _flash(request, _text("admin_already_exists"), category="info")
            return _redirect(request, "index")
        try:
            outcome = await auth.create_first_admin(email, password, password_confirm)
        except AuthFlowError as exc:
            context = _base_context(
                request,
                None,
                error=exc.message,
                email=email.strip(),
                password_min_length=PASSWORD_MIN_LENGTH,
            )
            return _render(request, "first_admin.html", context, status_code=status.HTTP_400_BAD_REQUEST)

        for warning in outcome.warnings:
            _flash(request, warning, category="warning")
        for notice in outcome.notices:
            _flash(request, notice, category="success")
        if outcome.session is None:
            return _redirect(request, "show_login")
        return _signed_in_response(request, outcome.session)

    @router.get("/admin", response_class=HTMLResponse, name="admin")
    async def admin(request: Request):
        session, _ = _load_session(request)
        if session is None or not session.is_admin:
            _flash(request, _text("admin_only"), category="error")
            return _redirect(request, "index")
        try:
            profiles = await auth.list_profiles()
        except DatabaseError as exc:
            logger.error("Failed to list user profiles: %s", exc.message)
            _flash(request, _text("generic_error_detail", detail=exc.message), category="error")
            profiles = []
        context = _base_context(
            request,
            session,
            profiles=profiles,
            entry_count=len(guestbook.entries),
            backend_ready=guestbook.ready,
        )
        return _render(request, "admin.html", context)

    app.include_router(router)


__all__ = ["SESSION_COOKIE_NAME", "register_ui_routes"]
