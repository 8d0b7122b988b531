"""REST client for the hosted identity provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx

from .models import utc_now

logger = logging.getLogger("guestbook.identity")

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1"

NETWORK_REQUEST_FAILED = "auth/network-request-failed"

_PROVIDER_CODES = {
    "EMAIL_EXISTS": "auth/email-already-in-use",
    "EMAIL_NOT_FOUND": "auth/user-not-found",
    "INVALID_PASSWORD": "auth/wrong-password",
    "INVALID_LOGIN_CREDENTIALS": "auth/invalid-credential",
    "INVALID_EMAIL": "auth/invalid-email",
    "MISSING_EMAIL": "auth/invalid-email",
    "WEAK_PASSWORD": "auth/weak-password",
    "USER_DISABLED": "auth/user-disabled",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "auth/too-many-requests",
    "OPERATION_NOT_ALLOWED": "auth/operation-not-allowed",
    "PASSWORD_LOGIN_DISABLED": "auth/operation-not-allowed",
    "CONFIGURATION_NOT_FOUND": "auth/configuration-not-found",
    "TOKEN_EXPIRED": "auth/requires-recent-login",
    "INVALID_REFRESH_TOKEN": "auth/requires-recent-login",
    "USER_NOT_FOUND": "auth/user-not-found",
}


class AuthError(RuntimeError):
    """Raised when the identity provider rejects a request."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class Credential:
    """Tokens returned by the identity provider for a signed-in account."""

    uid: str
    email: Optional[str]
    id_token: str
    refresh_token: str
    expires_at: datetime


def normalize_error_code(provider_message: str) -> str:
    """Translate a provider error such as ``WEAK_PASSWORD : ...`` to an ``auth/`` code."""

    reason = provider_message.split(":", 1)[0].strip().upper()
    if reason in _PROVIDER_CODES:
        return _PROVIDER_CODES[reason]
    return "auth/" + reason.lower().replace("_", "-") if reason else "auth/internal-error"


def _error_from_response(response: httpx.Response) -> AuthError:
    try:
        payload: Any = response.json()
    except ValueError:
        payload = None
    message = ""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or "")
        elif isinstance(error, str):
            message = error
    if not message:
        message = f"Identity provider request failed with status {response.status_code}"
        return AuthError(f"auth/http-{response.status_code}", message)
    return AuthError(normalize_error_code(message), message)


def _expiry(expires_in: object) -> datetime:
    try:
        seconds = int(str(expires_in))
    except (TypeError, ValueError):
        seconds = 3600
    return utc_now() + timedelta(seconds=seconds)


class IdentityProvider:
    """Create accounts, sign in and refresh tokens against the hosted provider."""

    def __init__(
        self,
        api_key: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        identity_url: str = IDENTITY_TOOLKIT_URL,
        token_url: str = SECURE_TOKEN_URL,
    ) -> None:
        cleaned = (api_key or "").strip()
        if not cleaned:
            raise ValueError("Identity provider API key must not be empty")
        self._api_key = cleaned
        self._identity_url = identity_url.rstrip("/")
        self._token_url = token_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, url: str, *, json: Optional[Dict[str, Any]] = None, data: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.post(url, params={"key": self._api_key}, json=json, data=data)
        except httpx.RequestError as exc:
            raise AuthError(NETWORK_REQUEST_FAILED, f"Failed to contact the identity provider: {exc}") from exc

        if response.status_code >= 400:
            raise _error_from_response(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("auth/internal-error", "Identity provider returned an invalid response") from exc
        if not isinstance(payload, dict):
            raise AuthError("auth/internal-error", "Identity provider returned an unexpected payload")
        return payload

    def _credential(self, payload: Dict[str, Any]) -> Credential:
        try:
            return Credential(
                uid=str(payload["localId"]),
                email=payload.get("email"),
                id_token=str(payload["idToken"]),
                refresh_token=str(payload["refreshToken"]),
                expires_at=_expiry(payload.get("expiresIn")),
            )
        except KeyError as exc:
            raise AuthError("auth/internal-error", f"Identity provider response missing {exc}") from exc

    async def create_account(self, email: str, password: str) -> Credential:
        payload = await self._post(
            f"{self._identity_url}/accounts:signUp",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        credential = self._credential(payload)
        logger.info("Created identity provider account %s", credential.uid)
        return credential

    async def sign_in(self, email: str, password: str) -> Credential:
        payload = await self._post(
            f"{self._identity_url}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        return self._credential(payload)

    async def refresh(self, refresh_token: str) -> Credential:
        payload = await self._post(
            f"{self._token_url}/token",
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        id_token = payload.get("id_token") or payload.get("idToken")
        if not id_token:
            raise AuthError("auth/internal-error", "Identity provider response missing id_token")
        return Credential(
            uid=str(payload.get("user_id") or payload.get("localId") or ""),
            email=payload.get("email"),
            id_token=str(id_token),
            refresh_token=str(payload.get("refresh_token") or refresh_token),
            expires_at=_expiry(payload.get("expires_in")),
        )


__all__ = [
    "AuthError",
    "Credential",
    "IDENTITY_TOOLKIT_URL",
    "IdentityProvider",
    "NETWORK_REQUEST_FAILED",
    "SECURE_TOKEN_URL",
    "normalize_error_code",
]
