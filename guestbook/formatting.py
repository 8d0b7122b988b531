"""Pure presentation helpers for guestbook entries."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from . import messages
from .models import AuthSession, GuestbookEntry, parse_timestamp

TRUNCATE_MAX_LINES = 3
TRUNCATE_MAX_CHARS = 150

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def format_relative_time(
    value: object,
    *,
    now: Optional[datetime] = None,
    locale: str = messages.DEFAULT_LOCALE,
) -> str:
    """Describe how long ago ``value`` was, e.g. ``"3 hours ago"``."""

    moment = value if isinstance(value, datetime) else parse_timestamp(value)
    if moment is None:
        return messages.text("no_date", locale)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    current = now or datetime.now(timezone.utc)
    elapsed = (current - moment).total_seconds()
    seconds = int(elapsed // 1)
    minutes = seconds // 60
    hours = seconds // 3600
    days = seconds // 86400
    weeks = days // 7
    months = days // 30
    years = days // 365

    if seconds < 60:
        return messages.text("just_now", locale)
    if minutes < 60:
        return messages.text("minutes_ago", locale, n=minutes)
    if hours < 24:
        return messages.text("hours_ago", locale, n=hours)
    if days < 7:
        return messages.text("days_ago", locale, n=days)
    if weeks < 4 or months < 1:
        return messages.text("weeks_ago", locale, n=weeks)
    if months < 12:
        return messages.text("months_ago", locale, n=months)
    if years >= 1:
        return messages.text("years_ago", locale, n=years)
    return moment.strftime(messages.text("absolute_date", locale))


def initial(name: str) -> str:
    return name[:1].upper()


def should_truncate(message: str) -> bool:
    if not message:
        return False
    return message.count("\n") >= TRUNCATE_MAX_LINES or len(message) > TRUNCATE_MAX_CHARS


def truncate_message(message: str) -> str:
    """Shorten long messages to their first three lines or 150 characters."""

    if not should_truncate(message):
        return message or ""
    lines = message.split("\n")
    if len(lines) > TRUNCATE_MAX_LINES:
        return "\n".join(lines[:TRUNCATE_MAX_LINES])
    return message[:TRUNCATE_MAX_CHARS]


def sort_entries(entries: Iterable[GuestbookEntry]) -> List[GuestbookEntry]:
    """Newest first; entries without a usable date keep their order at the end."""

    return sorted(entries, key=lambda entry: entry.timestamp or _OLDEST, reverse=True)


def filter_entries(entries: Sequence[GuestbookEntry], term: Optional[str]) -> List[GuestbookEntry]:
    if not term or not term.strip():
        return list(entries)
    needle = term.lower()
    return [
        entry
        for entry in entries
        if needle in entry.author_name.lower() or needle in entry.message.lower()
    ]


def is_owner(entry: GuestbookEntry, session: Optional[AuthSession]) -> bool:
    if session is None:
        return False
    if not entry.user_id:
        return False
    return entry.user_id == session.uid


__all__ = [
    "TRUNCATE_MAX_CHARS",
    "TRUNCATE_MAX_LINES",
    "filter_entries",
    "format_relative_time",
    "initial",
    "is_owner",
    "should_truncate",
    "sort_entries",
    "truncate_message",
]
