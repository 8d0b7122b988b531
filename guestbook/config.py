"""Configuration management for the guestbook service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .messages import DEFAULT_LOCALE, available_locales


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _section(raw: Mapping[str, object], name: str) -> Dict[str, object]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    return value


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


@dataclass(frozen=True)
class FirebaseConfig:
    """Connection details for the hosted realtime database and identity provider."""

    api_key: Optional[str] = None
    database_url: Optional[str] = None
    database_auth: Optional[str] = None
    entries_path: str = "guestbooks"
    users_path: str = "users"

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.database_url)

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "FirebaseConfig":
        database_url = _optional_str(data.get("database_url"))
        return FirebaseConfig(
            api_key=_optional_str(data.get("api_key")),
            database_url=database_url.rstrip("/") if database_url else None,
            database_auth=_optional_str(data.get("database_auth")),
            entries_path=str(data.get("entries_path") or "guestbooks").strip("/"),
            users_path=str(data.get("users_path") or "users").strip("/"),
        )


@dataclass(frozen=True)
class StartupConfig:
    """Bounded readiness probe performed before the service accepts writes."""

    attempts: int = 100
    interval: float = 0.1
    reconnect_delay: float = 5.0

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "StartupConfig":
        attempts = int(data.get("attempts", 100))
        interval = float(data.get("interval", 0.1))
        if attempts < 1:
            raise ValueError("startup.attempts must be at least 1")
        if interval < 0:
            raise ValueError("startup.interval must not be negative")
        return StartupConfig(
            attempts=attempts,
            interval=interval,
            reconnect_delay=float(data.get("reconnect_delay", 5.0)),
        )


@dataclass(frozen=True)
class AdminBootstrapConfig:
    """Optional default administrator created when none exists."""

    enabled: bool = False
    email: str = "admin@admin.com"
    password: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "AdminBootstrapConfig":
        return AdminBootstrapConfig(
            enabled=bool(data.get("enabled", False)),
            email=str(data.get("email") or "admin@admin.com").strip(),
            password=_optional_str(data.get("password")),
        )


@dataclass(frozen=True)
class Settings:
    """Top-level settings for the guestbook web service."""

    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    startup: StartupConfig = field(default_factory=StartupConfig)
    admin_bootstrap: AdminBootstrapConfig = field(default_factory=AdminBootstrapConfig)
    locale: str = DEFAULT_LOCALE
    session_secret: Optional[str] = None
    secure_cookies: bool = False
    refresh_interval: int = 30

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        locale = str(data.get("locale") or DEFAULT_LOCALE)
        if locale not in available_locales():
            raise ValueError(
                f"Unsupported locale '{locale}'. Choose one of: {', '.join(available_locales())}"
            )
        return Settings(
            firebase=FirebaseConfig.from_dict(_section(data, "firebase")),
            startup=StartupConfig.from_dict(_section(data, "startup")),
            admin_bootstrap=AdminBootstrapConfig.from_dict(_section(data, "admin_bootstrap")),
            locale=locale,
            session_secret=_optional_str(data.get("session_secret")),
            secure_cookies=bool(data.get("secure_cookies", False)),
            refresh_interval=int(data.get("refresh_interval", 30)),
        )


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "guestbook.yaml").resolve(
            strict=False
        )
    return candidate


def _apply_environment(settings: Settings, environ: Mapping[str, str]) -> Settings:
    firebase = settings.firebase
    overrides = {
        "api_key": environ.get("GUESTBOOK_FIREBASE_API_KEY"),
        "database_url": environ.get("GUESTBOOK_DATABASE_URL"),
        "database_auth": environ.get("GUESTBOOK_DATABASE_AUTH"),
    }
    merged = {key: value for key, value in overrides.items() if value}
    if merged:
        data = {
            "api_key": firebase.api_key,
            "database_url": firebase.database_url,
            "database_auth": firebase.database_auth,
            "entries_path": firebase.entries_path,
            "users_path": firebase.users_path,
        }
        data.update(merged)
        firebase = FirebaseConfig.from_dict(data)

    locale = environ.get("GUESTBOOK_LOCALE") or settings.locale
    if locale not in available_locales():
        raise ValueError(f"Unsupported locale '{locale}' in GUESTBOOK_LOCALE")

    return replace(
        settings,
        firebase=firebase,
        locale=locale,
        session_secret=environ.get("GUESTBOOK_SESSION_SECRET") or settings.session_secret,
        secure_cookies=_env_flag(environ.get("GUESTBOOK_SESSION_SECURE"), settings.secure_cookies),
    )


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from YAML (when present) and overlay environment variables."""
    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("GUESTBOOK_CONFIG"))

    raw: Mapping[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw = loaded

    return _apply_environment(Settings.from_dict(raw), env)


__all__ = [
    "AdminBootstrapConfig",
    "FirebaseConfig",
    "Settings",
    "StartupConfig",
    "load_settings",
    "resolve_config_path",
]
