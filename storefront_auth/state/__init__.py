"""Session state types and storage backends."""

from __future__ import annotations

from .credential_store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    RedisCredentialStore,
    get_credential_store,
    reset_credential_store,
)
from .profiles import MemoryUserProfileRepository, UserProfileRepository
from .types import (
    AssuranceLevel,
    AuthChangeEvent,
    AuthorizationRequest,
    AuthSession,
    AuthUser,
    FactorStatus,
    MfaChallenge,
    MfaEnrollment,
    MfaFactor,
    OAuthFlowState,
    PkceState,
    SessionInfo,
    StoredSession,
)


__all__ = [
    "AssuranceLevel",
    "AuthChangeEvent",
    "AuthSession",
    "AuthUser",
    "AuthorizationRequest",
    "CredentialStore",
    "FactorStatus",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "MemoryUserProfileRepository",
    "MfaChallenge",
    "MfaEnrollment",
    "MfaFactor",
    "OAuthFlowState",
    "PkceState",
    "RedisCredentialStore",
    "SessionInfo",
    "StoredSession",
    "UserProfileRepository",
    "get_credential_store",
    "reset_credential_store",
]
