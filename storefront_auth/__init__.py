"""storefront-auth - authentication and session lifecycle for the storefront.

Social sign-in with PKCE across a browser redirect, durable token storage
that tolerates eventually consistent backends, single-flight refresh and
TOTP two-factor authentication, behind one ``AuthFacade``.
"""

from __future__ import annotations

from .auth import (
    AuthFacade,
    GoTrueProvider,
    IdentityProviderClient,
    create_auth_facade,
    decode_provider_error,
    friendly_message,
)
from .config import AuthSettings, get_settings
from .exceptions import (
    AuthError,
    ChallengeError,
    ConfigurationError,
    EnrollError,
    ExchangeError,
    InitiationError,
    InvalidCodeError,
    LostStateError,
    MfaError,
    MissingCodeError,
    OAuthError,
    ProviderError,
    SessionError,
    StorageError,
    StorefrontAuthException,
    UnenrollError,
)
from .log import enable_debug, get_logger
from .state import (
    AssuranceLevel,
    AuthChangeEvent,
    AuthorizationRequest,
    AuthSession,
    AuthUser,
    CredentialStore,
    MemoryCredentialStore,
    MemoryUserProfileRepository,
    MfaChallenge,
    MfaEnrollment,
    MfaFactor,
    OAuthFlowState,
    SessionInfo,
    StoredSession,
    UserProfileRepository,
)


__version__ = "0.1.0"

__all__ = [
    "AssuranceLevel",
    "AuthChangeEvent",
    "AuthError",
    "AuthFacade",
    "AuthSession",
    "AuthSettings",
    "AuthUser",
    "AuthorizationRequest",
    "ChallengeError",
    "ConfigurationError",
    "CredentialStore",
    "EnrollError",
    "ExchangeError",
    "GoTrueProvider",
    "IdentityProviderClient",
    "InitiationError",
    "InvalidCodeError",
    "LostStateError",
    "MemoryCredentialStore",
    "MemoryUserProfileRepository",
    "MfaChallenge",
    "MfaEnrollment",
    "MfaError",
    "MfaFactor",
    "MissingCodeError",
    "OAuthError",
    "OAuthFlowState",
    "ProviderError",
    "SessionError",
    "SessionInfo",
    "StorageError",
    "StoredSession",
    "StorefrontAuthException",
    "UnenrollError",
    "UserProfileRepository",
    "create_auth_facade",
    "decode_provider_error",
    "enable_debug",
    "friendly_message",
    "get_logger",
    "get_settings",
]
