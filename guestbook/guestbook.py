"""Guestbook list manager mirroring entries from the realtime database."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from . import messages
from .formatting import filter_entries, is_owner, sort_entries
from .models import AuthSession, GuestbookEntry, format_timestamp, utc_now
from .realtime import LISTEN_CANCELLED, PERMISSION_DENIED, ChangeEvent, DatabaseError

logger = logging.getLogger("guestbook.entries")

ChangeCallback = Callable[[], Awaitable[None] | None]


class GuestbookError(Exception):
    """Base class for failures surfaced to visitors as a notice."""

    category = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BackendUnavailable(GuestbookError):
    """The realtime database has not become reachable."""


class LoginRequired(GuestbookError):
    """The visitor must sign in before writing."""

    category = "warning"


class EntryNotFound(GuestbookError):
    """No mirrored entry has the requested identifier."""


class NotOwner(GuestbookError):
    """The active session does not own the entry."""


class InvalidEntry(GuestbookError):
    """Submitted fields failed validation."""

    category = "warning"


async def wait_for_ready(
    probe: Callable[[], Awaitable[bool]],
    *,
    attempts: int,
    interval: float,
) -> bool:
    """Poll ``probe`` up to ``attempts`` times, sleeping ``interval`` seconds between tries."""

    for attempt in range(1, attempts + 1):
        if await probe():
            logger.debug("Backend became ready after %d attempt(s)", attempt)
            return True
        if attempt < attempts:
            await asyncio.sleep(interval)
    return False


def _split_path(path: str) -> List[str]:
    return [part for part in path.strip("/").split("/") if part]


def _set_path(tree: Dict[str, Any], parts: Sequence[str], value: Any) -> Dict[str, Any]:
    if not parts:
        return dict(value) if isinstance(value, dict) else {}
    head, rest = parts[0], parts[1:]
    if not rest:
        if value is None:
            tree.pop(head, None)
        else:
            tree[head] = value
        return tree
    child = tree.get(head)
    if not isinstance(child, dict):
        if value is None:
            return tree
        child = {}
    tree[head] = _set_path(dict(child), rest, value)
    if not tree[head]:
        tree.pop(head)
    return tree


class GuestbookManager:
    """Keep a sorted mirror of guestbook entries and proxy writes to the store."""

    def __init__(
        self,
        store: Any,
        *,
        entries_path: str = "guestbooks",
        users_path: str = "users",
        locale: str = messages.DEFAULT_LOCALE,
    ) -> None:
        self._store = store
        self._entries_path = entries_path.strip("/")
        self._users_path = users_path.strip("/")
        self._locale = locale
        self._tree: Dict[str, Any] = {}
        self._entries: List[GuestbookEntry] = []
        self._ready = False
        self._subscribers: List[ChangeCallback] = []
        self.notice: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def entries(self) -> List[GuestbookEntry]:
        return list(self._entries)

    def _text(self, key: str, **params: object) -> str:
        return messages.text(key, self._locale, **params)

    async def wait_until_ready(self, *, attempts: int, interval: float) -> bool:
        async def probe() -> bool:
            return await self._store.ping(self._entries_path)

        ready = await wait_for_ready(probe, attempts=attempts, interval=interval)
        if ready:
            self._ready = True
            self.notice = None
            logger.info("Realtime database connection established")
        else:
            logger.error(
                "Realtime database did not become reachable after %d attempts; starting degraded",
                attempts,
            )
            self.notice = self._text("backend_failed")
        return ready

    async def refresh(self) -> None:
        """Load a full snapshot of the entries collection."""

        data = await self._store.get(self._entries_path)
        await self._replace_tree(data if isinstance(data, dict) else {})

    async def _replace_tree(self, tree: Dict[str, Any]) -> None:
        self._tree = tree
        self._rebuild()
        await self._notify()

    def _rebuild(self) -> None:
        entries = [
            GuestbookEntry.from_record(key, record)
            for key, record in self._tree.items()
            if isinstance(record, dict)
        ]
        self._entries = sort_entries(entries)
        logger.debug("Guestbook now holds %d entries", len(self._entries))

    async def apply_change(self, change: ChangeEvent) -> None:
        parts = _split_path(change.path)
        if change.event == "put":
            self._tree = _set_path(self._tree, parts, change.data)
        elif change.event == "patch" and isinstance(change.data, dict):
            for key, value in change.data.items():
                self._tree = _set_path(self._tree, [*parts, *_split_path(key)], value)
        else:
            return
        self._rebuild()
        await self._notify()

    async def run_listener(self, *, reconnect_delay: float = 5.0) -> None:
        """Consume the change feed, reconnecting after transport failures."""

        while True:
            try:
                async for change in self._store.listen(self._entries_path):
                    await self.apply_change(change)
            except DatabaseError as exc:
                if exc.code in {PERMISSION_DENIED, LISTEN_CANCELLED}:
                    logger.error("Change feed stopped (%s): %s", exc.code, exc.message)
                    if exc.code == PERMISSION_DENIED:
                        self.notice = self._text("permission_denied")
                    return
                logger.warning("Change feed interrupted: %s", exc.message)
            await asyncio.sleep(reconnect_delay)

    def subscribe(self, callback: ChangeCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Guestbook change subscriber failed")

    def find(self, entry_id: str) -> Optional[GuestbookEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def search(self, term: Optional[str]) -> List[GuestbookEntry]:
        return filter_entries(self._entries, term)

    async def resolve_authors(self, entries: Sequence[GuestbookEntry]) -> List[GuestbookEntry]:
        """Refresh author names and admin badges from the stored user profiles."""

        user_ids = sorted({entry.user_id for entry in entries if entry.user_id})
        if not user_ids:
            return list(entries)

        results = await asyncio.gather(
            *(self._store.get(f"{self._users_path}/{uid}") for uid in user_ids),
            return_exceptions=True,
        )
        profiles: Dict[str, Dict[str, Any]] = {}
        for uid, result in zip(user_ids, results):
            if isinstance(result, Exception):
                logger.warning("Failed to load profile for %s: %s", uid, result)
                continue
            if isinstance(result, dict):
                profiles[uid] = result

        resolved: List[GuestbookEntry] = []
        for entry in entries:
            profile = profiles.get(entry.user_id or "")
            if profile is None:
                resolved.append(entry)
                continue
            name = profile.get("displayName") or entry.author_name
            admin = entry.is_admin or profile.get("isAdmin") is True
            resolved.append(entry.with_author(str(name), admin))
        return resolved

    def _require_ready(self) -> None:
        if not self._ready:
            logger.warning("Rejected write while the realtime database is not ready")
            raise BackendUnavailable(self._text("backend_connecting"))

    def _require_owned(self, entry_id: str, session: Optional[AuthSession], *, denied_key: str) -> GuestbookEntry:
        entry = self.find(entry_id)
        if entry is None:
            raise EntryNotFound(self._text("entry_not_found"))
        if not is_owner(entry, session):
            raise NotOwner(self._text(denied_key))
        return entry

    def _clean_fields(self, author_name: str, message: str) -> tuple[str, str]:
        cleaned_name = (author_name or "").strip()
        cleaned_message = (message or "").replace("\r\n", "\n").replace("\r", "\n").strip()
        if not cleaned_name or not cleaned_message:
            raise InvalidEntry(self._text("name_and_message_required"))
        return cleaned_name, cleaned_message

    def _write_error(self, exc: DatabaseError, key: str) -> GuestbookError:
        logger.error("Realtime database write failed (%s): %s", exc.code, exc.message)
        if exc.permission_denied:
            return GuestbookError(self._text("permission_denied"))
        return GuestbookError(self._text(key, detail=exc.message))

    async def _author_is_admin(self, session: AuthSession) -> bool:
        try:
            profile = await self._store.get(f"{self._users_path}/{session.uid}", auth=session.id_token)
        except DatabaseError as exc:
            logger.warning("Admin lookup failed for %s: %s", session.uid, exc.message)
            return False
        return isinstance(profile, dict) and profile.get("isAdmin") is True

    async def add_entry(self, author_name: str, message: str, session: Optional[AuthSession]) -> GuestbookEntry:
        if session is None:
            raise LoginRequired(self._text("login_required"))
        self._require_ready()
        cleaned_name, cleaned_message = self._clean_fields(author_name, message)

        is_admin = await self._author_is_admin(session)
        record = {
            "authorName": cleaned_name,
            "message": cleaned_message,
            "date": format_timestamp(utc_now()),
            "userId": session.uid,
            "isAdmin": is_admin,
        }
        try:
            key = await self._store.push(self._entries_path, record, auth=session.id_token)
        except DatabaseError as exc:
            raise self._write_error(exc, "add_failed") from exc

        logger.info("Entry %s added by %s", key, session.uid)
        await self.apply_change(ChangeEvent(event="put", path=f"/{key}", data=record))
        return GuestbookEntry.from_record(key, record)

    async def update_entry(
        self,
        entry_id: str,
        author_name: str,
        message: str,
        session: Optional[AuthSession],
    ) -> None:
        self._require_ready()
        self._require_owned(entry_id, session, denied_key="edit_own_only")
        cleaned_name, cleaned_message = self._clean_fields(author_name, message)
        assert session is not None

        fields = {
            "authorName": cleaned_name,
            "message": cleaned_message,
            "date": format_timestamp(utc_now()),
        }
        try:
            await self._store.update(f"{self._entries_path}/{entry_id}", fields, auth=session.id_token)
        except DatabaseError as exc:
            raise self._write_error(exc, "update_failed") from exc

        logger.info("Entry %s updated by %s", entry_id, session.uid)
        await self.apply_change(ChangeEvent(event="patch", path=f"/{entry_id}", data=fields))

    async def delete_entry(self, entry_id: str, session: Optional[AuthSession]) -> None:
        self._require_ready()
        self._require_owned(entry_id, session, denied_key="delete_own_only")
        assert session is not None

        try:
            await self._store.remove(f"{self._entries_path}/{entry_id}", auth=session.id_token)
        except DatabaseError as exc:
            raise self._write_error(exc, "delete_failed") from exc

        logger.info("Entry %s deleted by %s", entry_id, session.uid)
        await self.apply_change(ChangeEvent(event="put", path=f"/{entry_id}", data=None))


__all__ = [
    "BackendUnavailable",
    "EntryNotFound",
    "GuestbookError",
    "GuestbookManager",
    "InvalidEntry",
    "LoginRequired",
    "NotOwner",
    "wait_for_ready",
]
