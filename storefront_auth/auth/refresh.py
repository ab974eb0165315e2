"""Single-flight token refresh.

Concurrent callers share one refresh: the first caller takes the lock and
runs the refresh function, the rest return None immediately (inside the
cooldown) or after the lock is released (re-checked cooldown).
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..state.types import AuthSession
    from .session import SessionStore


logger = logging.getLogger("storefront_auth.auth")


class RefreshCoordinator:
    """Serialize token refreshes behind a lock and a cooldown.

    Parameters
    ----------
    session_store : SessionStore
        Where a refreshed session is persisted.
    cooldown_seconds : float
        Minimum spacing between refresh attempts (default ``10``).
    """

    def __init__(self, session_store: SessionStore, cooldown_seconds: float = 10) -> None:
        """Initialize the coordinator."""
        self.session_store = session_store
        self.cooldown_seconds = cooldown_seconds
        self.last_attempt: float | None = None
        self._lock = asyncio.Lock()

    def _in_cooldown(self) -> bool:
        if self.last_attempt is None:
            return False
        return time.monotonic() - self.last_attempt < self.cooldown_seconds

    async def run(
        self,
        refresh_fn: Callable[[], Awaitable[AuthSession | None]],
        *,
        force: bool = False,
    ) -> AuthSession | None:
        """Run ``refresh_fn`` unless another refresh just happened.

        Parameters
        ----------
        refresh_fn : callable
            Coroutine function producing the new session.
        force : bool
            Skip the cooldown checks. Still serialized by the lock.

        Returns
        -------
        AuthSession or None
            The new session, or None when skipped or failed.
        """
        if not force and self._in_cooldown():
            logger.debug("Refresh skipped: within %.1fs cooldown", self.cooldown_seconds)
            return None

        async with self._lock:
            if not force and self._in_cooldown():
                logger.debug("Refresh skipped: completed by a concurrent caller")
                return None

            self.last_attempt = time.monotonic()
            try:
                session = await refresh_fn()
            except Exception as exc:
                logger.error("Session refresh failed: %s", exc)
                return None

            if session is not None:
                await self.session_store.save(session.to_stored())
                logger.info("Session refreshed (expires %s)", session.expires_at)
            return session

    def reset(self) -> None:
        """Forget the last attempt so the next refresh runs immediately."""
        self.last_attempt = None
