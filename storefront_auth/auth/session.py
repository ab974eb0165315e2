"""Session persistence and the live in-memory session.

SessionStore maps the access/refresh/expiry triple onto three keys of the
credential store. SessionContext holds the session the process is
currently using and knows how to warm-restore it from storage.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from ..state.types import AuthSession, AuthUser, StoredSession, utcnow
from .claims import email_from_token, expiry_from_token, user_id_from_token
from .events import AuthStateListeners


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..state.credential_store import CredentialStore


logger = logging.getLogger("storefront_auth.auth")


class SessionStore:
    """Persist the session token triple in a credential store.

    Storage failures never propagate: ``load`` degrades to None and
    ``save``/``clear`` log and return.

    Parameters
    ----------
    store : CredentialStore
        The durable credential store.
    key_prefix : str
        Prefix of the three storage keys (default ``"supabase_"``).
    refresh_threshold_seconds : float
        Refresh when less than this many seconds remain (default ``300``).
    """

    def __init__(
        self,
        store: CredentialStore,
        key_prefix: str = "supabase_",
        refresh_threshold_seconds: float = 300,
    ) -> None:
        """Initialize the session store."""
        self.store = store
        self.access_key = f"{key_prefix}access_token"
        self.refresh_key = f"{key_prefix}refresh_token"
        self.expiry_key = f"{key_prefix}session_expiry"
        self.refresh_threshold = timedelta(seconds=refresh_threshold_seconds)

    @staticmethod
    def _format_expiry(expires_at: datetime) -> str:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _parse_expiry(value: str | None) -> datetime | None:
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Ignoring unparseable session expiry: %r", value)
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    async def load(self) -> StoredSession | None:
        """Read the stored session.

        Returns
        -------
        StoredSession or None
            The session, or None when a token is missing or storage failed.
        """
        try:
            access_token = await self.store.get(self.access_key)
            refresh_token = await self.store.get(self.refresh_key)
            expiry = await self.store.get(self.expiry_key)
        except Exception as exc:
            logger.warning("Failed to load stored session: %s", exc)
            return None
        return StoredSession.from_values(access_token, refresh_token, self._parse_expiry(expiry))

    async def save(self, session: StoredSession) -> None:
        """Write the session triple. Last write wins."""
        try:
            await self.store.set(self.access_key, session.access_token)
            await self.store.set(self.refresh_key, session.refresh_token)
            if session.expires_at is not None:
                await self.store.set(self.expiry_key, self._format_expiry(session.expires_at))
            else:
                await self.store.remove(self.expiry_key)
        except Exception as exc:
            logger.warning("Failed to save session: %s", exc)
            return
        logger.debug("Session saved (expires %s)", session.expires_at)

    async def clear(self) -> None:
        """Remove the session triple. Safe to call when nothing is stored."""
        for key in (self.access_key, self.refresh_key, self.expiry_key):
            try:
                await self.store.remove(key)
            except Exception as exc:
                logger.warning("Failed to remove %s: %s", key, exc)

    def should_refresh(self, expires_at: datetime | None, now: datetime | None = None) -> bool:
        """Whether a session expiring at ``expires_at`` needs a refresh.

        Parameters
        ----------
        expires_at : datetime or None
            Access token expiry. Unknown expiry always needs a refresh.
        now : datetime, optional
            Reference time (defaults to the current UTC time).

        Returns
        -------
        bool
            True when expiry is unknown or closer than the threshold.
        """
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at - (now or utcnow()) < self.refresh_threshold


class SessionContext:
    """The live session of this process.

    Parameters
    ----------
    session_store : SessionStore
        Where adopted sessions are persisted.

    Attributes
    ----------
    listeners : AuthStateListeners
        Notified by whoever changes the signed-in state.
    """

    def __init__(self, session_store: SessionStore) -> None:
        """Initialize with no live session."""
        self.session_store = session_store
        self.listeners = AuthStateListeners()
        self._session: AuthSession | None = None
        self._restore_lock = asyncio.Lock()

    @property
    def current(self) -> AuthSession | None:
        """The live session, if one was adopted or restored."""
        return self._session

    async def adopt(self, session: AuthSession, persist: bool = True) -> AuthSession:
        """Make ``session`` the live session and optionally persist it."""
        if self._session is not None and session.user is None:
            session.user = self._session.user
        self._session = session
        if persist:
            await self.session_store.save(session.to_stored())
        return session

    def forget(self) -> None:
        """Drop the live session. Storage is left untouched."""
        self._session = None

    async def restore(
        self,
        refresh: Callable[[str], Awaitable[AuthSession | None]],
    ) -> AuthSession | None:
        """Warm-restore the live session from storage.

        Concurrent callers are serialized; a caller that waited returns
        the session the first one restored.

        Parameters
        ----------
        refresh : callable
            Coroutine function taking the stored refresh token and
            returning a new session, or None when no refresh happened.

        Returns
        -------
        AuthSession or None
            The restored session, or None when nothing usable is stored.
        """
        async with self._restore_lock:
            if self._session is not None:
                return self._session

            stored = await self.session_store.load()
            if stored is None:
                return None

            expires_at = stored.expires_at or expiry_from_token(stored.access_token)
            if self.session_store.should_refresh(expires_at):
                refreshed = await refresh(stored.refresh_token)
                if refreshed is not None:
                    return await self.adopt(refreshed, persist=False)
                if self._session is not None:
                    return self._session

                latest = await self.session_store.load()
                if latest is None:
                    logger.info("Stored session was revoked during refresh")
                    return None
                if latest != stored:
                    # Rotated by a concurrent refresh; the old refresh token is spent
                    stored = latest
                    expires_at = latest.expires_at or expiry_from_token(latest.access_token)
                if expires_at is None or expires_at <= utcnow():
                    logger.info("Stored session expired and could not be refreshed")
                    return None

            return await self.adopt(self._from_stored(stored, expires_at), persist=False)

    @staticmethod
    def _from_stored(stored: StoredSession, expires_at: datetime | None) -> AuthSession:
        """Rebuild a session from stored tokens, naming the user from the claims."""
        user_id = user_id_from_token(stored.access_token)
        user = None
        if user_id:
            user = AuthUser(id=user_id, email=email_from_token(stored.access_token))
        return AuthSession(
            access_token=stored.access_token,
            refresh_token=stored.refresh_token,
            expires_at=expires_at,
            user=user,
        )
