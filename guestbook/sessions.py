"""Server-side storage for the credentials of signed-in visitors."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .models import AuthSession, utc_now

DEFAULT_IDLE_TIMEOUT = timedelta(hours=8)


@dataclass
class _StoredSession:
    auth: AuthSession
    last_seen: datetime


class SessionStore:
    """Map opaque cookie tokens to :class:`AuthSession` objects.

    A session ends after ``idle_timeout`` without a request. Refreshed
    provider tokens are swapped into the stored session so the cookie value
    never changes while the visitor stays signed in.
    """

    def __init__(
        self,
        *,
        idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._items: Dict[str, _StoredSession] = {}
        self._lock = threading.Lock()

    @property
    def cookie_max_age(self) -> int:
        return int(self._idle_timeout.total_seconds())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _stale(self, item: _StoredSession, now: datetime) -> bool:
        return now - item.last_seen >= self._idle_timeout

    def open(self, auth: AuthSession) -> str:
        token = secrets.token_urlsafe(32)
        self.prune()
        with self._lock:
            self._items[token] = _StoredSession(auth=auth, last_seen=self._clock())
        return token

    def get(self, token: Optional[str]) -> Optional[AuthSession]:
        if not token:
            return None
        now = self._clock()
        with self._lock:
            item = self._items.get(token)
            if item is None:
                return None
            if self._stale(item, now):
                del self._items[token]
                return None
            item.last_seen = now
            return item.auth

    def update(self, token: str, auth: AuthSession) -> bool:
        with self._lock:
            item = self._items.get(token)
            if item is None:
                return False
            item.auth = auth
            return True

    def close(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._items.pop(token, None)

    def close_user(self, uid: str) -> int:
        """End every session that belongs to ``uid`` and return how many ended."""

        with self._lock:
            tokens: List[str] = [token for token, item in self._items.items() if item.auth.uid == uid]
            for token in tokens:
                del self._items[token]
        return len(tokens)

    def prune(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [token for token, item in self._items.items() if self._stale(item, now)]
            for token in stale:
                del self._items[token]
        return len(stale)


__all__ = ["DEFAULT_IDLE_TIMEOUT", "SessionStore"]
