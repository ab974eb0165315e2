"""Authentication and session lifecycle for the storefront.

Provides the identity provider abstraction, PKCE verifier storage,
session persistence with single-flight refresh, the OAuth redirect flow,
TOTP multi-factor management, and the AuthFacade tying them together.
"""

from __future__ import annotations

from .facade import AuthFacade, create_auth_facade
from .events import AuthStateListeners
from .flow import OAuthFlowController
from .mfa import MfaController
from .pkce import (
    PKCEChallenge,
    PkceVerifierVault,
    VerifierCache,
    get_verifier_cache,
    reset_verifier_cache,
)
from .provider_errors import (
    ProviderErrorPayload,
    decode_provider_error,
    friendly_message,
)
from .providers import (
    GoTrueProvider,
    IdentityProviderClient,
    create_provider_from_settings,
)
from .refresh import RefreshCoordinator
from .session import SessionContext, SessionStore


__all__ = [
    "AuthFacade",
    "AuthStateListeners",
    "GoTrueProvider",
    "IdentityProviderClient",
    "MfaController",
    "OAuthFlowController",
    "PKCEChallenge",
    "PkceVerifierVault",
    "ProviderErrorPayload",
    "RefreshCoordinator",
    "SessionContext",
    "SessionStore",
    "VerifierCache",
    "create_auth_facade",
    "create_provider_from_settings",
    "decode_provider_error",
    "friendly_message",
    "get_verifier_cache",
    "reset_verifier_cache",
]
