"""Auth state change listeners.

Listeners are plain or coroutine functions called with the event and
the session as it is after the change (None once signed out). A failing
listener is logged and skipped; it never breaks the operation that
triggered the notification.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import inspect
import logging

from collections.abc import Callable
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from ..state.types import AuthChangeEvent, SessionInfo


logger = logging.getLogger("storefront_auth.auth")

# Signature: (event: AuthChangeEvent, session: SessionInfo | None) -> Any
AuthStateListener = Callable[["AuthChangeEvent", "SessionInfo | None"], Any]


class AuthStateListeners:
    """Registry of auth state change listeners, notified in subscription order."""

    def __init__(self) -> None:
        """Initialize with no listeners."""
        self._listeners: list[AuthStateListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, callback: AuthStateListener) -> Callable[[], None]:
        """Register ``callback``.

        Parameters
        ----------
        callback : callable
            Called as ``callback(event, session)``; may be a coroutine function.

        Returns
        -------
        callable
            Removes the listener when called. Calling it again is a no-op.
        """
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    async def notify(self, event: AuthChangeEvent, session: SessionInfo | None) -> None:
        """Call every listener with ``event`` and ``session``."""
        # Snapshot so listeners may unsubscribe while being notified
        for callback in list(self._listeners):
            try:
                result = callback(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed for %s", event.value)
        logger.debug("Notified %d listener(s) of %s", len(self._listeners), event.value)
