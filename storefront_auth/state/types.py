"""Type definitions for storefront-auth session state.

Shared types used by the credential stores, the session layer and the
OAuth/MFA controllers.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class OAuthFlowState(str, Enum):
    """State of an OAuth redirect flow."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class FactorStatus(str, Enum):
    """Verification status of an MFA factor."""

    UNVERIFIED = "unverified"
    VERIFIED = "verified"


class AssuranceLevel(str, Enum):
    """Authenticator assurance level carried in the ``aal`` claim."""

    AAL1 = "aal1"
    AAL2 = "aal2"


class AuthChangeEvent(str, Enum):
    """What changed when auth state listeners are notified."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    SESSION_EXPIRED = "session_expired"
    TOKEN_REFRESHED = "token_refreshed"
    MFA_VERIFIED = "mfa_verified"
    MFA_FACTOR_REMOVED = "mfa_factor_removed"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class StoredSession:
    """Tokens persisted in the credential store.

    Attributes
    ----------
    access_token : str
        The provider access token (JWT).
    refresh_token : str
        The refresh token used to obtain a new access token.
    expires_at : datetime or None
        Access token expiry (aware UTC), when known.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime | None = None

    @classmethod
    def from_values(
        cls,
        access_token: str | None,
        refresh_token: str | None,
        expires_at: datetime | None = None,
    ) -> StoredSession | None:
        """Build a session, or None when either token is empty."""
        if not access_token or not refresh_token:
            return None
        return cls(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)


@dataclass
class MfaFactor:
    """An MFA factor registered with the provider.

    Attributes
    ----------
    id : str
        Provider factor identifier.
    factor_type : str
        Factor type, e.g. ``"totp"``.
    status : FactorStatus
        ``unverified`` until the first successful verify.
    friendly_name : str or None
        Display name chosen at enrollment.
    created_at : datetime or None
        When the factor was enrolled.
    updated_at : datetime or None
        When the factor last changed status.
    """

    id: str
    factor_type: str = "totp"
    status: FactorStatus = FactorStatus.UNVERIFIED
    friendly_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_verified(self) -> bool:
        """Whether the factor completed its first verification."""
        return self.status == FactorStatus.VERIFIED


@dataclass
class MfaChallenge:
    """An ephemeral challenge issued for a factor."""

    id: str
    factor_id: str
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None


@dataclass(frozen=True)
class MfaEnrollment:
    """Result of enrolling a TOTP factor.

    Attributes
    ----------
    factor_id : str
        The new (unverified) factor.
    factor_type : str
        Factor type, e.g. ``"totp"``.
    secret : str
        Base32 shared secret for manual entry.
    otpauth_uri : str
        Compact ``otpauth://`` provisioning URI.
    """

    factor_id: str
    factor_type: str
    secret: str
    otpauth_uri: str

    @property
    def qr_payload(self) -> str:
        """Text to encode in a QR code (the otpauth URI, never an image)."""
        return self.otpauth_uri


@dataclass
class AuthUser:
    """Provider user object wrapped for this library.

    Attributes
    ----------
    id : str
        Provider user identifier.
    email : str or None
        Primary email address.
    email_confirmed : bool
        Whether the email address has been verified.
    metadata : dict[str, Any]
        User metadata (first_name, last_name, avatar_url, ...).
    factors : list[MfaFactor]
        MFA factors attached to the user.
    """

    id: str
    email: str | None = None
    email_confirmed: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    factors: list[MfaFactor] = field(default_factory=list)


@dataclass(frozen=True)
class SessionInfo:
    """Read-only projection of the current session."""

    access_token: str
    refresh_token: str
    expires_at: datetime | None
    user_id: str | None
    user_email: str | None
    assurance_level: AssuranceLevel | None = None


@dataclass
class AuthSession:
    """Provider session object wrapped for this library.

    Attributes
    ----------
    access_token : str
        The access token (JWT).
    refresh_token : str
        The refresh token.
    expires_at : datetime or None
        Access token expiry (aware UTC).
    user : AuthUser or None
        The signed-in user, when the provider returned one.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime | None = None
    user: AuthUser | None = None

    def to_stored(self) -> StoredSession:
        """Project onto the persisted token triple."""
        return StoredSession(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
        )

    def to_info(self, assurance_level: AssuranceLevel | None = None) -> SessionInfo:
        """Project onto the read-only session view."""
        return SessionInfo(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
            user_id=self.user.id if self.user else None,
            user_email=self.user.email if self.user else None,
            assurance_level=assurance_level,
        )


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization URL plus the PKCE verifier it was built with."""

    url: str
    verifier: str
    provider: str = "google"


@dataclass
class PkceState:
    """A PKCE verifier held in the in-process fallback."""

    verifier: str
    written_at: float = field(default_factory=time.time)
