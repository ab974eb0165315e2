"""OAuth2 authorization-code flow with PKCE across a browser redirect.

Provides OAuthFlowController, which prepares the provider authorization
URL before the redirect and turns the callback URI into a persisted
session afterwards. The redirect unloads the page, so everything the
callback needs (verifier, return URL) lives in the credential store.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

from ..exceptions import (
    ExchangeError,
    InitiationError,
    LostStateError,
    MissingCodeError,
    ProviderError,
)
from ..state.types import OAuthFlowState
from .claims import assurance_level_from_token


if TYPE_CHECKING:
    from ..state.credential_store import CredentialStore
    from ..state.profiles import UserProfileRepository
    from ..state.types import AuthorizationRequest, AuthSession, SessionInfo
    from .pkce import PkceVerifierVault
    from .providers import IdentityProviderClient
    from .session import SessionContext


logger = logging.getLogger("storefront_auth.auth")


class OAuthFlowController:
    """Drive the social sign-in redirect flow.

    Parameters
    ----------
    provider : IdentityProviderClient
        The identity provider.
    vault : PkceVerifierVault
        Durable verifier storage.
    session_context : SessionContext
        Receives and persists the resulting session.
    store : CredentialStore
        Holds the post-sign-in return URL.
    profiles : UserProfileRepository, optional
        Local profile projection to upsert after sign-in.
    default_provider : str
        Social provider used when none is given (default ``"google"``).
    redirect_url : str
        Callback URL registered with the provider.
    scopes : str
        Extra OAuth scopes, space separated.
    return_url_key : str
        Storage key of the return URL (default ``"oauth_return_url"``).
    """

    def __init__(
        self,
        provider: IdentityProviderClient,
        vault: PkceVerifierVault,
        session_context: SessionContext,
        store: CredentialStore,
        profiles: UserProfileRepository | None = None,
        default_provider: str = "google",
        redirect_url: str = "",
        scopes: str = "",
        return_url_key: str = "oauth_return_url",
    ) -> None:
        """Initialize the flow controller."""
        self.provider = provider
        self.vault = vault
        self.session_context = session_context
        self.store = store
        self.profiles = profiles
        self.default_provider = default_provider
        self.redirect_url = redirect_url
        self.scopes = scopes
        self.return_url_key = return_url_key
        self._state = OAuthFlowState.IDLE

    @property
    def state(self) -> OAuthFlowState:
        """Current state of the redirect flow."""
        return self._state

    async def initiate_sign_in(
        self,
        return_url: str | None = None,
        provider: str | None = None,
    ) -> AuthorizationRequest:
        """Prepare the redirect to the provider.

        Parameters
        ----------
        return_url : str, optional
            Where the app should go once the callback completes.
        provider : str, optional
            Social provider name; defaults to the configured one.

        Returns
        -------
        AuthorizationRequest
            The URL to navigate to, and the verifier bound to it.

        Raises
        ------
        InitiationError
            If the provider cannot produce a URL and verifier.
        """
        provider_name = provider or self.default_provider

        if return_url:
            try:
                await self.store.set(self.return_url_key, return_url)
            except Exception as exc:
                logger.warning("Could not store OAuth return URL: %s", exc)

        try:
            request = await self.provider.get_authorization_url(
                provider_name,
                redirect_to=self.redirect_url or None,
                scopes=self.scopes or None,
            )
        except Exception as exc:
            self._state = OAuthFlowState.FAILED
            msg = f"Could not start {provider_name} sign-in"
            raise InitiationError(msg, provider=provider_name) from exc

        if request is None or not request.url or not request.verifier:
            self._state = OAuthFlowState.FAILED
            msg = f"Provider returned no authorization URL for {provider_name}"
            raise InitiationError(msg, provider=provider_name)

        if not await self.vault.store(request.verifier):
            logger.warning("Continuing %s sign-in with in-process verifier only", provider_name)

        self._state = OAuthFlowState.AWAITING_REDIRECT
        logger.info("OAuth sign-in started with %s", provider_name)
        return request

    async def handle_callback(self, current_uri: str) -> SessionInfo:
        """Complete the flow from the callback URI.

        Parameters
        ----------
        current_uri : str
            The full URI the provider redirected back to.

        Returns
        -------
        SessionInfo
            The new session.

        Raises
        ------
        MissingCodeError
            If the URI has no ``code`` parameter.
        LostStateError
            If the verifier was lost and the provider holds no session.
        ExchangeError
            If the provider rejected the code exchange.
        """
        self._state = OAuthFlowState.AWAITING_CALLBACK
        try:
            session = await self._complete(current_uri)
        except Exception:
            self._state = OAuthFlowState.FAILED
            raise
        finally:
            await self.vault.clear()

        await self._upsert_profile(session)
        self._state = OAuthFlowState.AUTHENTICATED
        logger.info("OAuth sign-in completed")
        return session.to_info(assurance_level_from_token(session.access_token))

    async def _complete(self, current_uri: str) -> AuthSession:
        query = parse_qs(urlsplit(current_uri).query)
        code = (query.get("code") or [""])[0]
        if not code:
            error = (query.get("error") or [None])[0]
            description = (query.get("error_description") or [None])[0]
            msg = description or "Authorization callback is missing the code parameter"
            raise MissingCodeError(msg, error=error, error_description=description)

        verifier = await self.vault.get()
        if not verifier:
            return await self._adopt_provider_session()

        self._state = OAuthFlowState.EXCHANGING
        try:
            session = await self.provider.exchange_code_for_session(code, verifier)
        except ProviderError as exc:
            msg = f"Code exchange failed: {exc.payload.friendly_message if exc.payload else exc}"
            raise ExchangeError(msg, code=exc.code) from exc
        except Exception as exc:
            msg = f"Code exchange failed: {exc}"
            raise ExchangeError(msg) from exc

        return await self.session_context.adopt(session)

    async def _adopt_provider_session(self) -> AuthSession:
        """Fall back to a session the provider client may already hold."""
        try:
            existing = await self.provider.get_session()
        except Exception as exc:
            logger.debug("Provider session lookup failed: %s", exc)
            existing = None

        if existing is None or not existing.access_token:
            msg = "Sign-in state was lost during the redirect. Please try again."
            raise LostStateError(msg)

        logger.warning("PKCE verifier missing on callback; adopting existing provider session")
        return await self.session_context.adopt(existing)

    async def _upsert_profile(self, session: AuthSession) -> None:
        if self.profiles is None or session.user is None:
            return
        try:
            await self.profiles.upsert(
                session.user.id,
                email=session.user.email,
                metadata=session.user.metadata,
            )
        except Exception as exc:
            logger.warning("Profile upsert failed for %s: %s", session.user.id, exc)

    async def pop_return_url(self) -> str | None:
        """Read and remove the stored return URL."""
        try:
            value = await self.store.get(self.return_url_key)
            if value is not None:
                await self.store.remove(self.return_url_key)
        except Exception as exc:
            logger.warning("Could not read OAuth return URL: %s", exc)
            return None
        return value or None
