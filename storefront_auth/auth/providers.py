"""Identity provider client abstractions.

Defines the IdentityProviderClient ABC consumed by the session, OAuth and
MFA controllers, and GoTrueProvider, an httpx implementation for
GoTrue-compatible REST APIs (``<url>/auth/v1``).
"""

# pylint: disable=logging-too-many-args,too-many-public-methods

from __future__ import annotations

import logging
import time

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import ConfigurationError, ProviderError
from ..log import redact_sensitive_data
from ..state.types import (
    AuthorizationRequest,
    AuthSession,
    AuthUser,
    FactorStatus,
    MfaChallenge,
    MfaEnrollment,
    MfaFactor,
)
from .pkce import PKCEChallenge
from .provider_errors import ProviderErrorPayload, decode_provider_error


if TYPE_CHECKING:
    from ..config import ProviderSettings


logger = logging.getLogger("storefront_auth.auth")


class IdentityProviderClient(ABC):
    """Contract of the external identity provider.

    Implementations raise ``ProviderError`` for every rejected or failed
    request and return provider objects already wrapped into this
    package's types.
    """

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Authenticate with email and password.

        Parameters
        ----------
        email : str
            Account email.
        password : str
            Account password.

        Returns
        -------
        AuthSession
            The new session.
        """

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> tuple[AuthUser, AuthSession | None]:
        """Register a new account.

        Returns
        -------
        tuple[AuthUser, AuthSession or None]
            The created user, and a session unless email confirmation
            is required first.
        """

    @abstractmethod
    async def get_authorization_url(
        self,
        provider: str,
        redirect_to: str | None = None,
        scopes: str | None = None,
    ) -> AuthorizationRequest:
        """Build a social sign-in URL and the PKCE verifier bound to it."""

    @abstractmethod
    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthSession:
        """Exchange an authorization code plus PKCE verifier for a session."""

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Obtain a new session from a refresh token."""

    @abstractmethod
    async def get_session(self) -> AuthSession | None:
        """Return the session the provider client currently holds, if any."""

    @abstractmethod
    async def get_user(self, access_token: str) -> AuthUser:
        """Fetch the user for an access token."""

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        """Send a password recovery email."""

    @abstractmethod
    async def update_user(
        self,
        access_token: str,
        *,
        password: str | None = None,
        email: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthUser:
        """Update password, email or metadata of the signed-in user."""

    @abstractmethod
    async def verify_otp(self, email: str, token: str, otp_type: str) -> AuthSession | None:
        """Verify an emailed one-time token (signup, recovery, email change)."""

    @abstractmethod
    async def resend(self, email: str, otp_type: str = "signup") -> None:
        """Resend a confirmation email."""

    @abstractmethod
    async def mfa_enroll(
        self,
        access_token: str,
        factor_type: str,
        friendly_name: str | None = None,
        issuer: str | None = None,
    ) -> MfaEnrollment:
        """Enroll a new (unverified) factor."""

    @abstractmethod
    async def mfa_challenge(self, access_token: str, factor_id: str) -> MfaChallenge:
        """Create a challenge for a factor."""

    @abstractmethod
    async def mfa_verify(
        self,
        access_token: str,
        factor_id: str,
        challenge_id: str,
        code: str,
    ) -> AuthSession | None:
        """Verify a code against a challenge; returns upgraded tokens if issued."""

    @abstractmethod
    async def mfa_unenroll(self, access_token: str, factor_id: str) -> None:
        """Remove a factor."""

    @abstractmethod
    async def mfa_list_factors(self, access_token: str) -> list[MfaFactor]:
        """List factors of the signed-in user."""

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        """Revoke the session at the provider."""

    async def close(self) -> None:
        """Release network resources. Default is a no-op."""


def _parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _parse_factor(raw: dict[str, Any]) -> MfaFactor:
    """Wrap a provider factor object."""
    try:
        status = FactorStatus(raw.get("status", "unverified"))
    except ValueError:
        status = FactorStatus.UNVERIFIED
    return MfaFactor(
        id=raw["id"],
        factor_type=raw.get("factor_type", "totp"),
        status=status,
        friendly_name=raw.get("friendly_name"),
        created_at=_parse_datetime(raw.get("created_at")),
        updated_at=_parse_datetime(raw.get("updated_at")),
    )


def _parse_user(raw: dict[str, Any]) -> AuthUser:
    """Wrap a provider user object."""
    return AuthUser(
        id=raw["id"],
        email=raw.get("email") or None,
        email_confirmed=bool(raw.get("email_confirmed_at") or raw.get("confirmed_at")),
        metadata=dict(raw.get("user_metadata") or {}),
        factors=[
            _parse_factor(f) for f in raw.get("factors") or [] if isinstance(f, dict) and f.get("id")
        ],
    )


def _parse_session(raw: Any) -> AuthSession | None:
    """Wrap a provider session object, or None when tokens are missing."""
    if not isinstance(raw, dict):
        return None
    access_token = raw.get("access_token")
    refresh_token = raw.get("refresh_token")
    if not access_token or not refresh_token:
        return None

    expires_at = _parse_datetime(raw.get("expires_at"))
    if expires_at is None and isinstance(raw.get("expires_in"), (int, float)):
        expires_at = datetime.fromtimestamp(time.time() + raw["expires_in"], tz=timezone.utc)

    user_raw = raw.get("user")
    return AuthSession(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        user=_parse_user(user_raw) if isinstance(user_raw, dict) and user_raw.get("id") else None,
    )


class GoTrueProvider(IdentityProviderClient):
    """GoTrue-compatible identity provider over HTTP.

    Parameters
    ----------
    url : str
        Project base URL; requests go to ``<url>/auth/v1``.
    anon_key : str
        Public API key sent as the ``apikey`` header.
    timeout : float
        Request timeout in seconds (default ``30``).
    """

    def __init__(self, url: str, anon_key: str = "", timeout: float = 30.0) -> None:
        """Initialize the GoTrue provider."""
        if not url:
            msg = "GoTrue provider requires a base url"
            raise ConfigurationError(msg)
        self.url = url.rstrip("/")
        self.auth_url = f"{self.url}/auth/v1"
        self.anon_key = anon_key
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None
        self._session: AuthSession | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        """Build request headers."""
        headers = {"Accept": "application/json", "apikey": self.anon_key}
        bearer = access_token or self.anon_key
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> Any:
        """Send a request and decode the JSON body.

        Raises
        ------
        ProviderError
            On transport failures and non-2xx responses.
        """
        try:
            client = await self._get_client()
            resp = await client.request(
                method,
                f"{self.auth_url}{path}",
                json=json,
                params=params,
                headers=self._headers(access_token),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            try:
                body: Any = exc.response.json()
            except ValueError:
                body = exc.response.text
            payload = decode_provider_error(body, status=exc.response.status_code)
            logger.debug(
                "Provider rejected %s %s: %s",
                method,
                path,
                redact_sensitive_data(body),
            )
            msg = f"{method} {path} failed: {payload.message}"
            raise ProviderError(msg, payload=payload) from exc
        except httpx.HTTPError as exc:
            payload = ProviderErrorPayload("structured", "network_error", str(exc), raw=exc)
            msg = f"{method} {path} request failed: {exc}"
            raise ProviderError(msg, payload=payload) from exc

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            payload = decode_provider_error(resp.text, status=resp.status_code)
            msg = f"{method} {path} returned a non-JSON body"
            raise ProviderError(msg, payload=payload) from exc

    @staticmethod
    def _expect_object(raw: Any, action: str, key: str = "id") -> dict[str, Any]:
        """Return ``raw`` if it is an object carrying ``key``, else raise ProviderError."""
        if isinstance(raw, dict) and raw.get(key):
            return raw
        msg = f"{action} response is missing '{key}'"
        payload = ProviderErrorPayload("unknown", None, msg, raw=raw)
        raise ProviderError(msg, payload=payload)

    def _remember(self, session: AuthSession | None) -> AuthSession | None:
        """Track the most recent session established through this client."""
        if session is not None:
            self._session = session
        return session

    def _require_session(self, raw: Any, action: str) -> AuthSession:
        """Parse a session or raise when the provider returned none."""
        session = _parse_session(raw) if isinstance(raw, dict) else None
        if session is None:
            payload = decode_provider_error(raw if raw else f"{action} returned no session")
            msg = f"{action} returned no session"
            raise ProviderError(msg, payload=payload)
        self._remember(session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Authenticate with the password grant."""
        raw = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._require_session(raw, "Password sign-in")

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> tuple[AuthUser, AuthSession | None]:
        """Register via ``/signup``.

        GoTrue returns a full session when auto-confirm is on, and only
        the user object when email confirmation is pending.
        """
        raw = await self._request(
            "POST",
            "/signup",
            params={"redirect_to": redirect_to} if redirect_to else None,
            json={"email": email, "password": password, "data": metadata or {}},
        )
        session = self._remember(_parse_session(raw))
        if session is not None and session.user is not None:
            return session.user, session
        user_raw = raw.get("user") if isinstance(raw, dict) and isinstance(raw.get("user"), dict) else raw
        return _parse_user(self._expect_object(user_raw, "Sign-up")), session

    async def get_authorization_url(
        self,
        provider: str,
        redirect_to: str | None = None,
        scopes: str | None = None,
    ) -> AuthorizationRequest:
        """Build the ``/authorize`` URL with a fresh S256 PKCE challenge."""
        pkce = PKCEChallenge.generate()
        params: dict[str, str] = {
            "provider": provider,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method.lower(),
        }
        if redirect_to:
            params["redirect_to"] = redirect_to
        if scopes:
            params["scopes"] = scopes
        return AuthorizationRequest(
            url=f"{self.auth_url}/authorize?{urlencode(params)}",
            verifier=pkce.verifier,
            provider=provider,
        )

    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthSession:
        """Exchange a code with the ``pkce`` grant."""
        raw = await self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        return self._require_session(raw, "Code exchange")

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Refresh with the ``refresh_token`` grant."""
        raw = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return self._require_session(raw, "Token refresh")

    async def get_session(self) -> AuthSession | None:
        """Return the last session established through this client."""
        return self._session

    async def get_user(self, access_token: str) -> AuthUser:
        """Fetch ``/user``."""
        raw = await self._request("GET", "/user", access_token=access_token)
        return _parse_user(self._expect_object(raw, "User lookup"))

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        """Send a recovery email via ``/recover``."""
        await self._request(
            "POST",
            "/recover",
            params={"redirect_to": redirect_to} if redirect_to else None,
            json={"email": email},
        )

    async def update_user(
        self,
        access_token: str,
        *,
        password: str | None = None,
        email: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthUser:
        """Update the signed-in user via ``PUT /user``."""
        body: dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if email is not None:
            body["email"] = email
        if data is not None:
            body["data"] = data
        raw = await self._request("PUT", "/user", json=body, access_token=access_token)
        user = _parse_user(self._expect_object(raw, "User update"))
        if self._session is not None and self._session.access_token == access_token:
            self._session.user = user
        return user

    async def verify_otp(self, email: str, token: str, otp_type: str) -> AuthSession | None:
        """Verify an emailed token via ``/verify``."""
        raw = await self._request(
            "POST",
            "/verify",
            json={"type": otp_type, "email": email, "token": token},
        )
        return self._remember(_parse_session(raw)) if isinstance(raw, dict) else None

    async def resend(self, email: str, otp_type: str = "signup") -> None:
        """Resend a confirmation email via ``/resend``."""
        await self._request("POST", "/resend", json={"type": otp_type, "email": email})

    async def mfa_enroll(
        self,
        access_token: str,
        factor_type: str,
        friendly_name: str | None = None,
        issuer: str | None = None,
    ) -> MfaEnrollment:
        """Enroll a factor via ``POST /factors``.

        The returned ``otpauth_uri`` is whatever the provider sent: the
        ``uri`` field when present, otherwise its ``qr_code`` (often an
        SVG data URI), otherwise empty.
        """
        body: dict[str, Any] = {"factor_type": factor_type}
        if friendly_name:
            body["friendly_name"] = friendly_name
        if issuer:
            body["issuer"] = issuer
        raw = self._expect_object(
            await self._request("POST", "/factors", json=body, access_token=access_token),
            "Factor enrollment",
        )
        totp = raw.get(factor_type) or raw.get("totp")
        if not isinstance(totp, dict):
            totp = {}
        return MfaEnrollment(
            factor_id=raw["id"],
            factor_type=raw.get("type", factor_type),
            secret=totp.get("secret", ""),
            otpauth_uri=totp.get("uri") or totp.get("qr_code") or "",
        )

    async def mfa_challenge(self, access_token: str, factor_id: str) -> MfaChallenge:
        """Create a challenge via ``POST /factors/{id}/challenge``."""
        raw = self._expect_object(
            await self._request(
                "POST", f"/factors/{factor_id}/challenge", json={}, access_token=access_token
            ),
            "Factor challenge",
        )
        return MfaChallenge(
            id=raw["id"],
            factor_id=factor_id,
            expires_at=_parse_datetime(raw.get("expires_at")),
        )

    async def mfa_verify(
        self,
        access_token: str,
        factor_id: str,
        challenge_id: str,
        code: str,
    ) -> AuthSession | None:
        """Verify via ``POST /factors/{id}/verify``."""
        raw = await self._request(
            "POST",
            f"/factors/{factor_id}/verify",
            json={"challenge_id": challenge_id, "code": code},
            access_token=access_token,
        )
        return self._remember(_parse_session(raw)) if isinstance(raw, dict) else None

    async def mfa_unenroll(self, access_token: str, factor_id: str) -> None:
        """Remove a factor via ``DELETE /factors/{id}``."""
        await self._request("DELETE", f"/factors/{factor_id}", access_token=access_token)

    async def mfa_list_factors(self, access_token: str) -> list[MfaFactor]:
        """List factors from the ``/user`` payload."""
        user = await self.get_user(access_token)
        return user.factors

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session via ``POST /logout``."""
        self._session = None
        await self._request("POST", "/logout", access_token=access_token)


def create_provider_from_settings(settings: ProviderSettings) -> IdentityProviderClient:
    """Create the identity provider client from ProviderSettings.

    Parameters
    ----------
    settings : ProviderSettings
        The provider configuration section.

    Returns
    -------
    IdentityProviderClient
        A configured provider client.

    Raises
    ------
    ConfigurationError
        If no provider URL is configured.
    """
    if not settings.url:
        msg = "STOREFRONT_AUTH_PROVIDER__URL is not set"
        raise ConfigurationError(msg)
    return GoTrueProvider(
        url=settings.url,
        anon_key=settings.anon_key,
        timeout=settings.timeout_seconds,
    )
