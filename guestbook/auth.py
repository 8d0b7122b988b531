"""Sign-in, sign-up and administrator bootstrap flows."""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import messages
from .identity import AuthError, Credential
from .models import AuthSession, UserProfile, format_timestamp, utc_now
from .realtime import DatabaseError

logger = logging.getLogger("guestbook.auth")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MIN_LENGTH = 6

AuthListener = Callable[[Optional[AuthSession]], Awaitable[None] | None]


class AuthFlowError(Exception):
    """A sign-in or sign-up attempt failed with a visitor-facing message."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class AuthOutcome:
    """Result of a successful auth flow plus any non-fatal notices."""

    session: Optional[AuthSession]
    notices: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


class AuthManager:
    """Drive the identity provider and keep user profiles in the realtime database."""

    def __init__(
        self,
        identity: Any,
        store: Any,
        *,
        users_path: str = "users",
        locale: str = messages.DEFAULT_LOCALE,
    ) -> None:
        self._identity = identity
        self._store = store
        self._users_path = users_path.strip("/")
        self._locale = locale
        self._listeners: List[AuthListener] = []
        self._admin_exists: Optional[bool] = None

    @property
    def admin_exists_cached(self) -> Optional[bool]:
        return self._admin_exists

    def _text(self, key: str, **params: object) -> str:
        return messages.text(key, self._locale, **params)

    def error_message(self, code: Optional[str]) -> str:
        return messages.error_message(code, self._locale)

    def welcome_text(self, session: AuthSession) -> str:
        return self._text("welcome", name=session.welcome_name or self._text("default_user"))

    def add_listener(self, listener: AuthListener) -> None:
        self._listeners.append(listener)

    async def _notify(self, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed")
        await self.refresh_admin_exists()

    def _user_path(self, uid: str) -> str:
        return f"{self._users_path}/{uid}"

    async def _list_profiles(self) -> Dict[str, Dict[str, Any]]:
        data = await self._store.get(self._users_path)
        if not isinstance(data, dict):
            return {}
        return {str(uid): record for uid, record in data.items() if isinstance(record, dict)}

    async def list_profiles(self) -> List[UserProfile]:
        profiles = await self._list_profiles()
        return sorted(
            (UserProfile.from_record(uid, record) for uid, record in profiles.items()),
            key=lambda profile: profile.created_at or "",
        )

    async def admin_exists(self) -> bool:
        profiles = await self._list_profiles()
        return any(record.get("isAdmin") is True for record in profiles.values())

    async def refresh_admin_exists(self) -> Optional[bool]:
        try:
            self._admin_exists = await self.admin_exists()
        except DatabaseError as exc:
            logger.error("Administrator lookup failed: %s", exc.message)
        return self._admin_exists

    async def _email_registered(self, email: str) -> bool:
        profiles = await self._list_profiles()
        return any(record.get("email") == email for record in profiles.values())

    async def load_profile(self, uid: str, *, token: Optional[str] = None) -> Optional[UserProfile]:
        kwargs = {"auth": token} if token else {}
        record = await self._store.get(self._user_path(uid), **kwargs)
        if not isinstance(record, dict):
            return None
        return UserProfile.from_record(uid, record)

    async def _build_session(self, credential: Credential) -> AuthSession:
        session = AuthSession(
            uid=credential.uid,
            email=credential.email,
            id_token=credential.id_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
        )
        try:
            profile = await self.load_profile(credential.uid, token=credential.id_token)
        except DatabaseError as exc:
            logger.error("Failed to load profile for %s: %s", credential.uid, exc.message)
            return session
        if profile is None:
            return session
        return replace(session, display_name=profile.display_name, is_admin=profile.is_admin)

    async def _write_profile(self, credential: Credential, *, display_name: str, is_admin: bool) -> None:
        profile = UserProfile(
            uid=credential.uid,
            email=credential.email,
            display_name=display_name,
            is_admin=is_admin,
            created_at=format_timestamp(utc_now()),
        )
        await self._store.set(self._user_path(credential.uid), profile.to_record(), auth=credential.id_token)

    def _validate_new_password(self, password: str, confirm: str) -> None:
        if not password:
            raise AuthFlowError(self._text("password_required"))
        if password != confirm:
            raise AuthFlowError(self._text("password_mismatch"))
        if len(password) < PASSWORD_MIN_LENGTH:
            raise AuthFlowError(self._text("password_too_short", n=PASSWORD_MIN_LENGTH))

    def _validate_email(self, email: str) -> None:
        if not email:
            raise AuthFlowError(self._text("email_required"))
        if not EMAIL_PATTERN.match(email):
            raise AuthFlowError(self._text("email_invalid"))

    def _provider_failure(self, exc: AuthError) -> AuthFlowError:
        return AuthFlowError(self.error_message(exc.code), code=exc.code)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        email = (email or "").strip()
        if not email:
            raise AuthFlowError(self._text("email_required"))
        if not password:
            raise AuthFlowError(self._text("password_required"))

        try:
            credential = await self._identity.sign_in(email, password)
        except AuthError as exc:
            logger.warning("Sign-in failed for %s (%s)", email, exc.code)
            raise self._provider_failure(exc) from exc

        session = await self._build_session(credential)
        logger.info("User %s signed in", session.uid)
        await self._notify(session)
        return session

    async def sign_up(self, name: str, email: str, password: str, confirm: str) -> AuthOutcome:
        name = (name or "").strip()
        email = (email or "").strip()
        if not name:
            raise AuthFlowError(self._text("name_required"))
        self._validate_email(email)
        self._validate_new_password(password, confirm)

        try:
            credential = await self._identity.create_account(email, password)
        except AuthError as exc:
            logger.warning("Sign-up failed for %s (%s)", email, exc.code)
            raise self._provider_failure(exc) from exc

        warnings: List[str] = []
        try:
            await self._write_profile(credential, display_name=name, is_admin=False)
        except DatabaseError as exc:
            logger.error("Failed to save profile for %s: %s", credential.uid, exc.message)
            warnings.append(self._text("profile_save_failed"))

        session = await self._build_session(credential)
        if session.display_name is None:
            session = replace(session, display_name=name)
        await self._notify(session)
        return AuthOutcome(session=session, warnings=tuple(warnings))

    async def sign_out(self, session: Optional[AuthSession]) -> None:
        if session is not None:
            logger.info("User %s signed out", session.uid)
        await self._notify(None)

    async def create_first_admin(self, email: str, password: str, confirm: str) -> AuthOutcome:
        """Create the first administrator account and sign it in."""

        email = (email or "").strip()
        self._validate_email(email)
        self._validate_new_password(password, confirm)

        try:
            if await self.admin_exists():
                raise AuthFlowError(self._text("admin_already_exists"))
        except DatabaseError as exc:
            logger.warning("Could not verify existing administrators: %s", exc.message)

        try:
            duplicate = await self._email_registered(email)
        except DatabaseError as exc:
            logger.warning("Duplicate email check failed, continuing: %s", exc.message)
            duplicate = False
        if duplicate:
            raise AuthFlowError(self.error_message("auth/email-already-in-use"), code="auth/email-already-in-use")

        try:
            credential = await self._identity.create_account(email, password)
        except AuthError as exc:
            logger.error("First administrator creation failed (%s): %s", exc.code, exc.message)
            if messages.is_known_error(exc.code):
                raise self._provider_failure(exc) from exc
            detail = exc.message or exc.code or self._text("unknown")
            raise AuthFlowError(self._text("generic_error_detail", detail=detail), code=exc.code) from exc

        warnings: List[str] = []
        try:
            await self._write_profile(credential, display_name=self._text("admin_name"), is_admin=True)
        except DatabaseError as exc:
            logger.error("Failed to save administrator profile: %s", exc.message)
            warnings.append(self._text("admin_profile_save_failed"))

        notices = (self._text("first_admin_created", email=email),)

        session: Optional[AuthSession] = None
        try:
            session = await self.sign_in(email, password)
        except AuthFlowError as exc:
            logger.warning("Automatic sign-in after administrator creation failed: %s", exc.message)
            await self.refresh_admin_exists()

        return AuthOutcome(session=session, notices=notices, warnings=tuple(warnings))

    async def ensure_default_admin(self, email: str, password: str) -> bool:
        """Create ``email`` as administrator when no administrator exists yet."""

        try:
            profiles = await self._list_profiles()
            if any(record.get("isAdmin") is True for record in profiles.values()):
                logger.info("An administrator already exists; skipping bootstrap")
                return False
            if any(record.get("email") == email for record in profiles.values()):
                logger.info("Default administrator account is already registered")
                return False

            credential = await self._identity.create_account(email, password)
            await self._write_profile(credential, display_name=self._text("admin_name"), is_admin=True)
        except AuthError as exc:
            if exc.code != "auth/email-already-in-use":
                logger.error("Default administrator creation failed (%s): %s", exc.code, exc.message)
            return False
        except DatabaseError as exc:
            logger.error("Default administrator creation failed: %s", exc.message)
            return False

        logger.info("Default administrator account %s created", email)
        self._admin_exists = True
        return True

    async def ensure_fresh(self, session: AuthSession) -> AuthSession:
        """Return ``session`` with a valid ID token, refreshing it when expired."""

        if not session.token_expired():
            return session
        try:
            credential = await self._identity.refresh(session.refresh_token)
        except AuthError as exc:
            logger.warning("Token refresh failed for %s (%s)", session.uid, exc.code)
            raise self._provider_failure(exc) from exc
        return replace(
            session,
            id_token=credential.id_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
        )


__all__ = [
    "AuthFlowError",
    "AuthManager",
    "AuthOutcome",
    "EMAIL_PATTERN",
    "PASSWORD_MIN_LENGTH",
]
