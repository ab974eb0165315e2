"""TOTP multi-factor enrollment, challenge and verification.

A factor starts ``unverified`` after enrollment and becomes ``verified``
on its first successful challenge/verify round, which also upgrades the
session to ``aal2``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import re

from typing import TYPE_CHECKING

import pyotp

from ..exceptions import (
    ChallengeError,
    EnrollError,
    InvalidCodeError,
    MfaError,
    ProviderError,
    UnenrollError,
)
from ..state.types import AuthChangeEvent, MfaEnrollment
from .claims import assurance_level_from_token, email_from_token


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..state.types import AssuranceLevel, AuthSession, MfaChallenge, MfaFactor, SessionInfo
    from .providers import IdentityProviderClient
    from .refresh import RefreshCoordinator
    from .session import SessionContext


logger = logging.getLogger("storefront_auth.auth")

_TOTP_CODE = re.compile(r"^\d{6}$")


def _friendly(exc: ProviderError) -> str:
    return exc.payload.friendly_message if exc.payload is not None else str(exc)


class MfaController:
    """Manage TOTP factors of the signed-in user.

    Parameters
    ----------
    provider : IdentityProviderClient
        The identity provider.
    session_context : SessionContext
        Source of the live session; receives upgraded sessions.
    coordinator : RefreshCoordinator
        Used for the forced refresh after unenrolling.
    issuer : str
        Issuer label shown in authenticator apps (default ``"Storefront"``).
    default_friendly_name : str
        Factor name used when the caller gives none.
    refresh : callable, optional
        Coroutine function exchanging a refresh token for a new session.
        Defaults to ``provider.refresh_session``; AuthFacade replaces it
        with its own, which clears a session the provider rejected.
    """

    def __init__(
        self,
        provider: IdentityProviderClient,
        session_context: SessionContext,
        coordinator: RefreshCoordinator,
        issuer: str = "Storefront",
        default_friendly_name: str = "Authenticator app",
        refresh: Callable[[str], Awaitable[AuthSession]] | None = None,
    ) -> None:
        """Initialize the MFA controller."""
        self.provider = provider
        self.session_context = session_context
        self.coordinator = coordinator
        self.issuer = issuer
        self.default_friendly_name = default_friendly_name
        self.refresh = refresh or provider.refresh_session

    def _live_session(self, error_cls: type[MfaError], factor_id: str | None = None) -> AuthSession:
        session = self.session_context.current
        if session is None:
            msg = "You must be signed in to manage two-factor authentication"
            raise error_cls(msg, factor_id=factor_id)
        return session

    def _account_name(self, session: AuthSession) -> str:
        if session.user is not None and session.user.email:
            return session.user.email
        return (
            email_from_token(session.access_token)
            or (session.user.id if session.user is not None else None)
            or "account"
        )

    async def enroll(
        self,
        factor_type: str = "totp",
        friendly_name: str | None = None,
    ) -> MfaEnrollment:
        """Enroll a new factor for the signed-in user.

        Parameters
        ----------
        factor_type : str
            Factor type (default ``"totp"``).
        friendly_name : str, optional
            Display name for the factor.

        Returns
        -------
        MfaEnrollment
            Factor id, shared secret and the ``otpauth://`` URI to show
            as a QR code.

        Raises
        ------
        EnrollError
            If no session is live or the provider refuses.
        """
        session = self._live_session(EnrollError)
        try:
            enrollment = await self.provider.mfa_enroll(
                session.access_token,
                factor_type,
                friendly_name=friendly_name or self.default_friendly_name,
                issuer=self.issuer,
            )
        except ProviderError as exc:
            raise EnrollError(_friendly(exc), code=exc.code) from exc

        uri = enrollment.otpauth_uri
        if not uri.startswith("otpauth://"):
            # Providers may send an SVG/data URI image instead; QR codes need the compact URI
            if not enrollment.secret:
                msg = "Provider returned no secret for the new factor"
                raise EnrollError(msg, factor_id=enrollment.factor_id)
            uri = pyotp.TOTP(enrollment.secret).provisioning_uri(
                name=self._account_name(session),
                issuer_name=self.issuer,
            )

        logger.info("MFA factor %s enrolled", enrollment.factor_id)
        return MfaEnrollment(
            factor_id=enrollment.factor_id,
            factor_type=enrollment.factor_type,
            secret=enrollment.secret,
            otpauth_uri=uri,
        )

    async def challenge(self, factor_id: str) -> MfaChallenge:
        """Create a challenge for ``factor_id``.

        Raises
        ------
        ChallengeError
            If no session is live or the provider refuses.
        """
        session = self._live_session(ChallengeError, factor_id)
        try:
            return await self.provider.mfa_challenge(session.access_token, factor_id)
        except ProviderError as exc:
            raise ChallengeError(_friendly(exc), factor_id=factor_id, code=exc.code) from exc

    async def verify(self, factor_id: str, challenge_id: str, code: str) -> SessionInfo | None:
        """Verify a TOTP code against a challenge.

        Parameters
        ----------
        factor_id : str
            The factor being verified.
        challenge_id : str
            Challenge returned by ``challenge``.
        code : str
            Six-digit code from the authenticator app.

        Returns
        -------
        SessionInfo or None
            The upgraded session, or None if the provider issued no tokens.

        Raises
        ------
        InvalidCodeError
            If the code is malformed or rejected.
        """
        session = self._live_session(InvalidCodeError, factor_id)
        code = code.strip().replace(" ", "")
        if not _TOTP_CODE.match(code):
            msg = "Please enter the 6-digit code from your authenticator app"
            raise InvalidCodeError(msg, factor_id=factor_id)

        try:
            upgraded = await self.provider.mfa_verify(
                session.access_token, factor_id, challenge_id, code
            )
        except ProviderError as exc:
            raise InvalidCodeError(_friendly(exc), factor_id=factor_id, code=exc.code) from exc

        if upgraded is None:
            return None
        upgraded = await self.session_context.adopt(upgraded)
        logger.info("MFA factor %s verified", factor_id)
        info = upgraded.to_info(assurance_level_from_token(upgraded.access_token))
        await self.session_context.listeners.notify(AuthChangeEvent.MFA_VERIFIED, info)
        return info

    async def challenge_and_verify(self, factor_id: str, code: str) -> SessionInfo | None:
        """Create a challenge and verify ``code`` against it in one step."""
        challenge = await self.challenge(factor_id)
        return await self.verify(factor_id, challenge.id, code)

    async def unenroll(self, factor_id: str) -> bool:
        """Remove a factor, then force a session refresh.

        The refresh drops the ``aal2`` claim tied to the removed factor.
        Its failure is logged and does not change the result.

        Raises
        ------
        UnenrollError
            If no session is live or the provider refuses the removal.
        """
        session = self._live_session(UnenrollError, factor_id)
        try:
            await self.provider.mfa_unenroll(session.access_token, factor_id)
        except ProviderError as exc:
            raise UnenrollError(_friendly(exc), factor_id=factor_id, code=exc.code) from exc
        logger.info("MFA factor %s removed", factor_id)

        refresh_token = session.refresh_token

        async def _refresh() -> AuthSession | None:
            return await self.refresh(refresh_token)

        refreshed = await self.coordinator.run(_refresh, force=True)
        if refreshed is None:
            logger.warning("Session refresh after removing factor %s failed", factor_id)
        else:
            await self.session_context.adopt(refreshed, persist=False)

        current = self.session_context.current
        info = (
            current.to_info(assurance_level_from_token(current.access_token))
            if current is not None
            else None
        )
        await self.session_context.listeners.notify(AuthChangeEvent.MFA_FACTOR_REMOVED, info)
        return True

    async def list_factors(self, verified_only: bool = False) -> list[MfaFactor]:
        """List the user's factors.

        Raises
        ------
        MfaError
            If no session is live or the provider refuses.
        """
        session = self._live_session(MfaError)
        try:
            factors = await self.provider.mfa_list_factors(session.access_token)
        except ProviderError as exc:
            raise MfaError(_friendly(exc), code=exc.code) from exc
        if verified_only:
            return [f for f in factors if f.is_verified]
        return factors

    def assurance_level(self) -> AssuranceLevel | None:
        """Assurance level of the live session, from its ``aal`` claim."""
        session = self.session_context.current
        if session is None:
            return None
        return assurance_level_from_token(session.access_token)
