"""Application-facing authentication facade.

AuthFacade is the single entry point the storefront UI talks to. It
translates provider failures into ``AuthError``/``SessionError`` with
friendly messages and routes every session change through the live
SessionContext so storage and memory stay in step.
"""

# pylint: disable=logging-too-many-args,too-many-public-methods,too-many-instance-attributes

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

from ..config import get_settings
from ..exceptions import AuthError, ProviderError, SessionError
from ..log import configure_from_settings
from ..state.credential_store import get_credential_store
from ..state.types import AuthChangeEvent
from .claims import assurance_level_from_token
from .flow import OAuthFlowController
from .mfa import MfaController
from .pkce import PkceVerifierVault, get_verifier_cache
from .provider_errors import UNRECOVERABLE_SESSION_CODES, friendly_message
from .providers import create_provider_from_settings
from .refresh import RefreshCoordinator
from .session import SessionContext, SessionStore


if TYPE_CHECKING:
    from ..config import AuthSettings
    from ..state.credential_store import CredentialStore
    from ..state.profiles import UserProfileRepository
    from ..state.types import (
        AssuranceLevel,
        AuthorizationRequest,
        AuthSession,
        AuthUser,
        MfaChallenge,
        MfaEnrollment,
        MfaFactor,
        SessionInfo,
    )
    from collections.abc import Callable

    from .events import AuthStateListener
    from .pkce import VerifierCache
    from .providers import IdentityProviderClient


logger = logging.getLogger("storefront_auth.auth")


def _auth_error(exc: ProviderError) -> AuthError:
    return AuthError(friendly_message(exc.code), code=exc.code)


class AuthFacade:
    """Sign-in, session and MFA operations for the storefront.

    Parameters
    ----------
    provider : IdentityProviderClient
        The identity provider.
    session_store : SessionStore
        Persisted session triple.
    session_context : SessionContext
        The live session.
    coordinator : RefreshCoordinator
        Single-flight refresh gate.
    vault : PkceVerifierVault
        PKCE verifier storage, cleared on sign-out.
    flow : OAuthFlowController
        Social sign-in redirect flow.
    mfa : MfaController
        TOTP factor management.
    profiles : UserProfileRepository, optional
        Local profile projection.
    redirect_url : str
        Where confirmation and recovery emails send the user back to.
    """

    def __init__(
        self,
        provider: IdentityProviderClient,
        session_store: SessionStore,
        session_context: SessionContext,
        coordinator: RefreshCoordinator,
        vault: PkceVerifierVault,
        flow: OAuthFlowController,
        mfa: MfaController,
        profiles: UserProfileRepository | None = None,
        redirect_url: str = "",
    ) -> None:
        """Initialize the facade."""
        self.provider = provider
        self.session_store = session_store
        self.session_context = session_context
        self.coordinator = coordinator
        self.vault = vault
        self.flow = flow
        self.mfa = mfa
        self.profiles = profiles
        self.redirect_url = redirect_url
        # Forced refreshes after unenrolling must also drop a dead session
        self.mfa.refresh = self._refresh_with_provider

    # ── Session plumbing ────────────────────────────────────────────

    async def _notify(self, event: AuthChangeEvent, session: SessionInfo | None) -> None:
        await self.session_context.listeners.notify(event, session)

    async def _refresh_with_provider(self, refresh_token: str) -> AuthSession:
        try:
            return await self.provider.refresh_session(refresh_token)
        except ProviderError as exc:
            if exc.code in UNRECOVERABLE_SESSION_CODES:
                logger.warning("Refresh token rejected (%s); clearing stored session", exc.code)
                await self.session_store.clear()
                self.session_context.forget()
                await self._notify(AuthChangeEvent.SESSION_EXPIRED, None)
                raise SessionError(friendly_message(exc.code), code=exc.code) from exc
            raise

    async def _refresh_from_token(self, refresh_token: str, force: bool = False) -> AuthSession | None:
        async def _refresh() -> AuthSession:
            return await self._refresh_with_provider(refresh_token)

        return await self.coordinator.run(_refresh, force=force)

    async def _ensure_session(self) -> AuthSession | None:
        """Return the live session, warm-restoring it from storage if needed."""
        session = self.session_context.current
        if session is not None:
            return session
        return await self.session_context.restore(self._refresh_from_token)

    async def _establish(self, session: AuthSession) -> SessionInfo:
        """Adopt a freshly issued session and sync the profile projection."""
        session = await self.session_context.adopt(session)
        self.coordinator.reset()
        await self._upsert_profile(session.user)
        info = session.to_info(assurance_level_from_token(session.access_token))
        await self._notify(AuthChangeEvent.SIGNED_IN, info)
        return info

    async def _upsert_profile(self, user: AuthUser | None) -> None:
        if self.profiles is None or user is None:
            return
        try:
            await self.profiles.upsert(user.id, email=user.email, metadata=user.metadata)
        except Exception as exc:
            logger.warning("Profile upsert failed for %s: %s", user.id, exc)

    async def _require_session(self) -> AuthSession:
        session = await self._ensure_session()
        if session is None:
            msg = "You must be signed in to do that"
            raise AuthError(msg, code="not_authenticated")
        return session

    # ── Password sign-in ────────────────────────────────────────────

    async def sign_in(self, email: str, password: str) -> SessionInfo:
        """Sign in with email and password.

        Raises
        ------
        AuthError
            With the provider error code, e.g. ``invalid_credentials``.
        """
        if not email or not password:
            raise AuthError(friendly_message("validation_failed"), code="validation_failed")
        try:
            session = await self.provider.sign_in_with_password(email.strip(), password)
        except ProviderError as exc:
            logger.info("Sign-in rejected: %s", exc.code)
            raise _auth_error(exc) from exc
        logger.info("User signed in")
        return await self._establish(session)

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
    ) -> SessionInfo | None:
        """Create an account.

        Returns
        -------
        SessionInfo or None
            The new session, or None while email confirmation is pending.
        """
        if not email or not password:
            raise AuthError(friendly_message("validation_failed"), code="validation_failed")
        try:
            user, session = await self.provider.sign_up(
                email.strip(),
                password,
                metadata=metadata,
                redirect_to=self.redirect_url or None,
            )
        except ProviderError as exc:
            raise _auth_error(exc) from exc

        if session is None:
            logger.info("Sign-up pending email confirmation")
            await self._upsert_profile(user)
            return None
        return await self._establish(session)

    # ── OAuth ───────────────────────────────────────────────────────

    async def sign_in_with_oauth(
        self,
        return_url: str | None = None,
        provider: str | None = None,
    ) -> AuthorizationRequest:
        """Start a social sign-in; navigate to the returned URL."""
        return await self.flow.initiate_sign_in(return_url=return_url, provider=provider)

    async def handle_oauth_callback(self, current_uri: str) -> SessionInfo:
        """Finish a social sign-in from the callback URI."""
        info = await self.flow.handle_callback(current_uri)
        self.coordinator.reset()
        await self._notify(AuthChangeEvent.SIGNED_IN, info)
        return info

    async def pop_oauth_return_url(self) -> str | None:
        """Return and forget the URL to continue to after social sign-in."""
        return await self.flow.pop_return_url()

    # ── Session ─────────────────────────────────────────────────────

    async def sign_out(self) -> None:
        """Sign out locally, revoking the session at the provider if possible."""
        session = self.session_context.current
        access_token = session.access_token if session is not None else None
        if access_token is None:
            stored = await self.session_store.load()
            access_token = stored.access_token if stored is not None else None

        if access_token:
            try:
                await self.provider.sign_out(access_token)
            except Exception as exc:
                logger.warning("Provider sign-out failed: %s", exc)

        await self.session_store.clear()
        await self.vault.clear()
        self.session_context.forget()
        self.coordinator.reset()
        logger.info("User signed out")
        await self._notify(AuthChangeEvent.SIGNED_OUT, None)

    def on_auth_state_change(self, callback: AuthStateListener) -> Callable[[], None]:
        """Call ``callback(event, session)`` whenever the signed-in state changes.

        Fired on sign-in (password, sign-up, email verification, social),
        sign-out, token refresh, an unrecoverable refresh failure, MFA
        verification and factor removal. ``session`` is None once signed
        out. Listener exceptions are logged and ignored.

        Parameters
        ----------
        callback : callable
            Plain or coroutine function taking an ``AuthChangeEvent`` and
            a ``SessionInfo`` or None.

        Returns
        -------
        callable
            Call it to unsubscribe.
        """
        return self.session_context.listeners.subscribe(callback)

    async def get_current_session(self) -> SessionInfo | None:
        """The current session, restored from storage when needed."""
        session = await self._ensure_session()
        if session is None:
            return None
        return session.to_info(assurance_level_from_token(session.access_token))

    async def get_current_user(self, fetch: bool = False) -> AuthUser | None:
        """The signed-in user.

        Parameters
        ----------
        fetch : bool
            Ask the provider for the full user record even if one is known.
        """
        session = await self._ensure_session()
        if session is None:
            return None
        if session.user is not None and not fetch:
            return session.user
        try:
            session.user = await self.provider.get_user(session.access_token)
        except ProviderError as exc:
            logger.warning("Could not fetch current user: %s", exc)
        return session.user

    async def is_authenticated(self) -> bool:
        """Whether a usable session exists."""
        return await self._ensure_session() is not None

    async def refresh_session(self, force: bool = False) -> SessionInfo | None:
        """Refresh the session now.

        Returns
        -------
        SessionInfo or None
            The new session, or None when skipped by the cooldown, when
            nothing is stored, or when the refresh failed.
        """
        session = self.session_context.current
        refresh_token = session.refresh_token if session is not None else None
        if refresh_token is None:
            stored = await self.session_store.load()
            if stored is None:
                return None
            refresh_token = stored.refresh_token

        refreshed = await self._refresh_from_token(refresh_token, force=force)
        if refreshed is None:
            return None
        refreshed = await self.session_context.adopt(refreshed, persist=False)
        info = refreshed.to_info(assurance_level_from_token(refreshed.access_token))
        await self._notify(AuthChangeEvent.TOKEN_REFRESHED, info)
        return info

    # ── Account ─────────────────────────────────────────────────────

    async def send_password_reset(self, email: str) -> None:
        """Email a password recovery link."""
        try:
            await self.provider.reset_password_for_email(
                email.strip(), redirect_to=self.redirect_url or None
            )
        except ProviderError as exc:
            raise _auth_error(exc) from exc

    async def update_password(self, new_password: str) -> None:
        """Change the signed-in user's password."""
        session = await self._require_session()
        try:
            session.user = await self.provider.update_user(
                session.access_token, password=new_password
            )
        except ProviderError as exc:
            raise _auth_error(exc) from exc
        logger.info("Password updated")

    async def verify_email(
        self,
        email: str,
        token: str,
        otp_type: str = "signup",
    ) -> SessionInfo | None:
        """Confirm an email address with the emailed token."""
        try:
            session = await self.provider.verify_otp(email.strip(), token.strip(), otp_type)
        except ProviderError as exc:
            raise _auth_error(exc) from exc
        if session is None:
            return None
        return await self._establish(session)

    async def resend_verification_email(self, email: str) -> None:
        """Send the sign-up confirmation email again."""
        try:
            await self.provider.resend(email.strip(), "signup")
        except ProviderError as exc:
            raise _auth_error(exc) from exc

    async def update_profile(
        self,
        metadata: dict[str, Any],
        email: str | None = None,
    ) -> AuthUser:
        """Update user metadata (and optionally email) at the provider."""
        session = await self._require_session()
        try:
            user = await self.provider.update_user(session.access_token, email=email, data=metadata)
        except ProviderError as exc:
            raise _auth_error(exc) from exc
        session.user = user
        await self._upsert_profile(user)
        return user

    # ── MFA ─────────────────────────────────────────────────────────

    async def enroll_mfa(
        self,
        factor_type: str = "totp",
        friendly_name: str | None = None,
    ) -> MfaEnrollment:
        """Enroll a TOTP factor."""
        await self._ensure_session()
        return await self.mfa.enroll(factor_type, friendly_name)

    async def challenge_mfa(self, factor_id: str) -> MfaChallenge:
        """Create a challenge for a factor."""
        await self._ensure_session()
        return await self.mfa.challenge(factor_id)

    async def verify_mfa(self, factor_id: str, challenge_id: str, code: str) -> SessionInfo | None:
        """Verify a TOTP code against a challenge."""
        await self._ensure_session()
        return await self.mfa.verify(factor_id, challenge_id, code)

    async def challenge_and_verify_mfa(self, factor_id: str, code: str) -> SessionInfo | None:
        """Challenge and verify in one step."""
        await self._ensure_session()
        return await self.mfa.challenge_and_verify(factor_id, code)

    async def unenroll_mfa(self, factor_id: str) -> bool:
        """Remove a factor."""
        await self._ensure_session()
        return await self.mfa.unenroll(factor_id)

    async def list_mfa_factors(self, verified_only: bool = False) -> list[MfaFactor]:
        """List the user's factors."""
        await self._ensure_session()
        return await self.mfa.list_factors(verified_only=verified_only)

    async def get_assurance_level(self) -> AssuranceLevel | None:
        """The session's authenticator assurance level."""
        await self._ensure_session()
        return self.mfa.assurance_level()

    async def close(self) -> None:
        """Release provider resources."""
        await self.provider.close()


def create_auth_facade(
    settings: AuthSettings | None = None,
    *,
    provider: IdentityProviderClient | None = None,
    store: CredentialStore | None = None,
    profiles: UserProfileRepository | None = None,
    verifier_cache: VerifierCache | None = None,
) -> AuthFacade:
    """Wire an AuthFacade from settings.

    Parameters
    ----------
    settings : AuthSettings, optional
        Settings to use; defaults to ``get_settings()``.
    provider : IdentityProviderClient, optional
        Provider client; defaults to one built from ``settings.provider``.
    store : CredentialStore, optional
        Credential store; defaults to the configured backend.
    profiles : UserProfileRepository, optional
        Local profile projection.
    verifier_cache : VerifierCache, optional
        In-process verifier fallback; defaults to the process singleton.

    Returns
    -------
    AuthFacade
        A ready facade.
    """
    settings = settings or get_settings()
    configure_from_settings(settings.log)

    if provider is None:
        provider = create_provider_from_settings(settings.provider)
    if store is None:
        store = get_credential_store(
            settings.storage.backend,
            redis_url=settings.storage.redis_url,
            prefix=settings.storage.prefix,
            service_name=settings.storage.service_name,
        )

    session_store = SessionStore(
        store,
        key_prefix=settings.session.key_prefix,
        refresh_threshold_seconds=settings.session.refresh_threshold_seconds,
    )
    session_context = SessionContext(session_store)
    coordinator = RefreshCoordinator(
        session_store, cooldown_seconds=settings.session.refresh_cooldown_seconds
    )
    vault = PkceVerifierVault(
        store,
        verifier_cache or get_verifier_cache(),
        key=settings.pkce.verifier_key,
        verify_delay=settings.pkce.verify_delay_seconds,
        max_attempts=settings.pkce.max_attempts,
        backoff=settings.pkce.backoff_seconds,
    )
    flow = OAuthFlowController(
        provider,
        vault,
        session_context,
        store,
        profiles=profiles,
        default_provider=settings.provider.oauth_provider,
        redirect_url=settings.provider.redirect_url,
        scopes=settings.provider.scopes,
        return_url_key=settings.pkce.return_url_key,
    )
    mfa = MfaController(
        provider,
        session_context,
        coordinator,
        issuer=settings.mfa.issuer,
        default_friendly_name=settings.mfa.default_friendly_name,
    )
    return AuthFacade(
        provider,
        session_store,
        session_context,
        coordinator,
        vault,
        flow,
        mfa,
        profiles=profiles,
        redirect_url=settings.provider.redirect_url,
    )
