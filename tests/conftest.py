"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from storefront_auth.auth.facade import AuthFacade
from storefront_auth.auth.flow import OAuthFlowController
from storefront_auth.auth.mfa import MfaController
from storefront_auth.auth.pkce import PkceVerifierVault, VerifierCache, reset_verifier_cache
from storefront_auth.auth.refresh import RefreshCoordinator
from storefront_auth.auth.session import SessionContext, SessionStore
from storefront_auth.config import clear_settings
from storefront_auth.state.credential_store import MemoryCredentialStore, reset_credential_store
from storefront_auth.state.profiles import MemoryUserProfileRepository
from tests.fakes import FakeIdentityProvider


if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def _reset_singletons() -> Generator[None, None, None]:
    """Clear cached settings, store and verifier cache around each test."""
    clear_settings()
    reset_credential_store()
    reset_verifier_cache()
    yield
    clear_settings()
    reset_credential_store()
    reset_verifier_cache()


@pytest.fixture()
def provider() -> FakeIdentityProvider:
    """In-memory identity provider with one user (user@x.com / goodpass)."""
    return FakeIdentityProvider()


@pytest.fixture()
def store() -> MemoryCredentialStore:
    """Create a memory credential store."""
    return MemoryCredentialStore()


@pytest.fixture()
def session_store(store: MemoryCredentialStore) -> SessionStore:
    """Session store over the memory credential store."""
    return SessionStore(store)


@pytest.fixture()
def session_context(session_store: SessionStore) -> SessionContext:
    """Empty live-session context."""
    return SessionContext(session_store)


@pytest.fixture()
def coordinator(session_store: SessionStore) -> RefreshCoordinator:
    """Refresh coordinator with the default 10s cooldown."""
    return RefreshCoordinator(session_store)


@pytest.fixture()
def verifier_cache() -> VerifierCache:
    """Private verifier cache, isolated from the process singleton."""
    return VerifierCache()


@pytest.fixture()
def vault(store: MemoryCredentialStore, verifier_cache: VerifierCache) -> PkceVerifierVault:
    """PKCE vault without read-back delays."""
    return PkceVerifierVault(store, verifier_cache, verify_delay=0, backoff=0)


@pytest.fixture()
def profiles() -> MemoryUserProfileRepository:
    """In-memory profile repository."""
    return MemoryUserProfileRepository()


@pytest.fixture()
def flow(
    provider: FakeIdentityProvider,
    vault: PkceVerifierVault,
    session_context: SessionContext,
    store: MemoryCredentialStore,
    profiles: MemoryUserProfileRepository,
) -> OAuthFlowController:
    """OAuth flow controller wired to the fakes."""
    return OAuthFlowController(
        provider,
        vault,
        session_context,
        store,
        profiles=profiles,
        redirect_url="https://app/callback",
    )


@pytest.fixture()
def mfa(
    provider: FakeIdentityProvider,
    session_context: SessionContext,
    coordinator: RefreshCoordinator,
) -> MfaController:
    """MFA controller wired to the fakes."""
    return MfaController(provider, session_context, coordinator)


@pytest.fixture()
def facade(
    provider: FakeIdentityProvider,
    session_store: SessionStore,
    session_context: SessionContext,
    coordinator: RefreshCoordinator,
    vault: PkceVerifierVault,
    flow: OAuthFlowController,
    mfa: MfaController,
    profiles: MemoryUserProfileRepository,
) -> AuthFacade:
    """Facade over the fake provider and memory storage."""
    return AuthFacade(
        provider,
        session_store,
        session_context,
        coordinator,
        vault,
        flow,
        mfa,
        profiles=profiles,
        redirect_url="https://app/callback",
    )
