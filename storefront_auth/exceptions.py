"""storefront-auth exception hierarchy.

All library exceptions inherit from StorefrontAuthException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .auth.provider_errors import ProviderErrorPayload


class StorefrontAuthException(Exception):
    """Base exception for all storefront-auth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize the exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (code, factor_id, key, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(StorefrontAuthException):
    """Settings are missing or inconsistent."""


class StorageError(StorefrontAuthException):
    """Credential storage operation failed.

    Raised by credential store backends. Always caught by the session
    and PKCE layers, which degrade instead of propagating it.
    """

    def __init__(self, message: str, key: str | None = None, **context: Any) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The storage key involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, **context)
        self.key = key


class ProviderError(StorefrontAuthException):
    """The identity provider rejected a request or could not be reached.

    Carries the decoded provider payload so callers can translate it
    into a friendly message without re-parsing the response.
    """

    def __init__(
        self,
        message: str,
        payload: ProviderErrorPayload | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        payload : ProviderErrorPayload, optional
            The decoded provider error body.
        **context : Any
            Additional context.
        """
        code = payload.code if payload is not None else None
        status = payload.status if payload is not None else None
        super().__init__(message, code=code, status=status, **context)
        self.payload = payload

    @property
    def code(self) -> str | None:
        """Machine-readable provider error code, if one was decoded."""
        return self.payload.code if self.payload is not None else None


class AuthError(StorefrontAuthException):
    """Credential based authentication failed.

    Raised for bad credentials, failed sign-up, unconfirmed email and
    other password/OTP account operations.
    """

    def __init__(self, message: str, code: str | None = None, **context: Any) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable (friendly) error message.
        code : str, optional
            Machine-readable error code, e.g. ``"invalid_credentials"``.
        **context : Any
            Additional context.
        """
        super().__init__(message, code=code, **context)
        self.code = code


class SessionError(StorefrontAuthException):
    """Session refresh or restore failed."""

    def __init__(self, message: str, code: str | None = None, **context: Any) -> None:
        """Initialize session error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        code : str, optional
            Provider error code that caused the failure.
        **context : Any
            Additional context.
        """
        super().__init__(message, code=code, **context)
        self.code = code


class OAuthError(StorefrontAuthException):
    """Base exception for OAuth redirect flow failures."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize OAuth error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The social provider name (e.g. ``"google"``).
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class InitiationError(OAuthError):
    """The provider could not produce an authorization URL or PKCE challenge."""


class MissingCodeError(OAuthError):
    """The callback URI carries no ``code`` query parameter."""


class LostStateError(OAuthError):
    """No PKCE verifier survived the redirect and no provider session exists."""


class ExchangeError(OAuthError):
    """Exchanging the authorization code for a session failed.

    Authorization codes are single-use, so this is never retried.
    """


class MfaError(StorefrontAuthException):
    """Base exception for multi-factor authentication failures."""

    def __init__(
        self,
        message: str,
        factor_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize MFA error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        factor_id : str, optional
            The factor involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, factor_id=factor_id, **context)
        self.factor_id = factor_id


class EnrollError(MfaError):
    """Factor enrollment failed."""


class ChallengeError(MfaError):
    """Creating a challenge for a factor failed."""


class InvalidCodeError(MfaError):
    """The provider rejected the one-time code."""


class UnenrollError(MfaError):
    """Removing a factor failed."""
