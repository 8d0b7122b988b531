"""Domain models mirrored from the hosted realtime database."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialise ``value`` as an ISO-8601 UTC string with millisecond precision."""

    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse a stored timestamp, returning ``None`` when it is missing or invalid."""

    if not isinstance(value, str) or not value.strip():
        return None
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_bool(value: object) -> bool:
    return value is True


def _as_optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


@dataclass(frozen=True)
class GuestbookEntry:
    """A single guestbook message stored under the entries collection."""

    id: str
    author_name: str
    message: str
    date: Optional[str]
    user_id: Optional[str] = None
    is_admin: bool = False

    @property
    def timestamp(self) -> Optional[datetime]:
        return parse_timestamp(self.date)

    @classmethod
    def from_record(cls, key: str, record: Mapping[str, Any]) -> "GuestbookEntry":
        return cls(
            id=str(key),
            author_name=str(record.get("authorName") or ""),
            message=str(record.get("message") or ""),
            date=record.get("date") if isinstance(record.get("date"), str) else None,
            user_id=_as_optional_str(record.get("userId")),
            is_admin=_as_bool(record.get("isAdmin")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "authorName": self.author_name,
            "message": self.message,
            "date": self.date,
            "userId": self.user_id,
            "isAdmin": self.is_admin,
        }

    def with_author(self, author_name: str, is_admin: bool) -> "GuestbookEntry":
        return replace(self, author_name=author_name, is_admin=is_admin)


@dataclass(frozen=True)
class UserProfile:
    """Profile record kept alongside the identity provider account."""

    uid: str
    email: Optional[str]
    display_name: Optional[str]
    is_admin: bool
    created_at: Optional[str]

    @classmethod
    def from_record(cls, uid: str, record: Mapping[str, Any]) -> "UserProfile":
        return cls(
            uid=str(record.get("uid") or uid),
            email=_as_optional_str(record.get("email")),
            display_name=_as_optional_str(record.get("displayName")),
            is_admin=_as_bool(record.get("isAdmin")),
            created_at=_as_optional_str(record.get("createdAt")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "isAdmin": self.is_admin,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class AuthSession:
    """Identity provider credentials bound to a signed-in browser session."""

    uid: str
    email: Optional[str]
    id_token: str
    refresh_token: str
    expires_at: datetime
    display_name: Optional[str] = None
    is_admin: bool = False

    @property
    def welcome_name(self) -> str:
        return self.display_name or self.email or ""

    def token_expired(self, *, now: Optional[datetime] = None, leeway: int = 60) -> bool:
        current = now or utc_now()
        return (self.expires_at - current).total_seconds() <= leeway


__all__ = [
    "AuthSession",
    "GuestbookEntry",
    "UserProfile",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
