"""Shared in-memory stand-ins for the realtime database and identity provider."""

from __future__ import annotations

import copy
import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("GUESTBOOK_SESSION_SECRET", "tests-secret-key")

from guestbook.identity import AuthError, Credential
from guestbook.models import utc_now


def _parts(path: str) -> List[str]:
    return [part for part in path.strip("/").split("/") if part]


class FakeStore:
    """Dictionary-backed realtime database recording every call."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = copy.deepcopy(data or {})
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.reachable = True
        self.events: List[Any] = []
        self.listen_error: Optional[Exception] = None
        self._counter = 0

    def _check(self, method: str) -> None:
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def _node(self, path: str) -> Any:
        node: Any = self.data
        for part in _parts(path):
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        return node

    def _put(self, path: str, value: Any) -> None:
        parts = _parts(path)
        node = self.data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    async def get(self, path: str, *, auth: Any = None, shallow: bool = False) -> Any:
        self.calls.append(("get", path, auth))
        self._check("get")
        return copy.deepcopy(self._node(path))

    async def set(self, path: str, value: Any, *, auth: Any = None) -> None:
        self.calls.append(("set", path, auth))
        self._check("set")
        self._put(path, value)

    async def update(self, path: str, values: Dict[str, Any], *, auth: Any = None) -> None:
        self.calls.append(("update", path, auth))
        self._check("update")
        for key, value in values.items():
            self._put(f"{path}/{key}", value)

    async def push(self, path: str, value: Any, *, auth: Any = None) -> str:
        self.calls.append(("push", path, auth))
        self._check("push")
        self._counter += 1
        key = f"-entry{self._counter:03d}"
        self._put(f"{path}/{key}", value)
        return key

    async def remove(self, path: str, *, auth: Any = None) -> None:
        self.calls.append(("remove", path, auth))
        self._check("remove")
        self._put(path, None)

    async def ping(self, path: str = "") -> bool:
        self.calls.append(("ping", path, None))
        return self.reachable

    async def listen(self, path: str, *, auth: Any = None):
        self.calls.append(("listen", path, auth))
        for event in self.events:
            yield event
        if self.listen_error is not None:
            raise self.listen_error

    async def aclose(self) -> None:
        return None


class FakeIdentity:
    """Email/password accounts held in memory."""

    def __init__(self) -> None:
        self.accounts: Dict[str, Dict[str, str]] = {}
        self.fail: Dict[str, Exception] = {}
        self.refreshed: List[str] = []

    def _credential(self, uid: str, email: str, *, expires_in: int = 3600) -> Credential:
        return Credential(
            uid=uid,
            email=email,
            id_token=f"id-{uid}",
            refresh_token=f"refresh-{uid}",
            expires_at=utc_now() + timedelta(seconds=expires_in),
        )

    def register(self, email: str, password: str, uid: Optional[str] = None) -> str:
        uid = uid or f"uid-{len(self.accounts) + 1}"
        self.accounts[email] = {"uid": uid, "password": password}
        return uid

    async def create_account(self, email: str, password: str) -> Credential:
        exc = self.fail.get("create_account")
        if exc is not None:
            raise exc
        if email in self.accounts:
            raise AuthError("auth/email-already-in-use", "EMAIL_EXISTS")
        uid = self.register(email, password)
        return self._credential(uid, email)

    async def sign_in(self, email: str, password: str) -> Credential:
        exc = self.fail.get("sign_in")
        if exc is not None:
            raise exc
        account = self.accounts.get(email)
        if account is None:
            raise AuthError("auth/user-not-found", "EMAIL_NOT_FOUND")
        if account["password"] != password:
            raise AuthError("auth/wrong-password", "INVALID_PASSWORD")
        return self._credential(account["uid"], email)

    async def refresh(self, refresh_token: str) -> Credential:
        self.refreshed.append(refresh_token)
        exc = self.fail.get("refresh")
        if exc is not None:
            raise exc
        uid = refresh_token.replace("refresh-", "", 1)
        credential = self._credential(uid, "")
        return Credential(
            uid=uid,
            email=None,
            id_token=f"id-{uid}-renewed",
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
        )

    async def aclose(self) -> None:
        return None


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def identity() -> FakeIdentity:
    return FakeIdentity()
