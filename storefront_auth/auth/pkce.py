"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).

The verifier has to survive a full browser redirect, so it is written to
the durable credential store and read back to confirm the write landed.
A process-scoped ``VerifierCache`` keeps a copy for when the durable
store is slow or unavailable.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import threading
import time

from base64 import urlsafe_b64encode
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..state.types import PkceState


if TYPE_CHECKING:
    from ..state.credential_store import CredentialStore


logger = logging.getLogger("storefront_auth.auth")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes for the verifier (default 64).
            RFC 7636 requires 43-128 characters once encoded.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        verifier = secrets.token_urlsafe(length)[:128]
        return cls(verifier=verifier, challenge=cls.derive_challenge(verifier))

    @staticmethod
    def derive_challenge(verifier: str) -> str:
        """Compute the S256 challenge for a verifier."""
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class VerifierCache:
    """In-process holder for the most recent PKCE verifier.

    Only one OAuth flow is in flight per process, so a single slot is
    enough. A verifier only has to outlive one redirect round trip, so
    an entry older than ``max_age_seconds`` is dropped on read. Obtain
    the shared instance with ``get_verifier_cache()``.

    Parameters
    ----------
    max_age_seconds : float
        Lifetime of a cached verifier (default ``600``).
    """

    def __init__(self, max_age_seconds: float = 600) -> None:
        """Initialize an empty cache."""
        self.max_age_seconds = max_age_seconds
        self._state: PkceState | None = None
        self._lock = threading.Lock()

    def put(self, verifier: str) -> None:
        """Replace the cached verifier."""
        with self._lock:
            self._state = PkceState(verifier=verifier)

    def get(self) -> str | None:
        """Return the cached verifier, or None when absent or stale."""
        with self._lock:
            if self._state is None:
                return None
            if time.time() - self._state.written_at > self.max_age_seconds:
                logger.debug("Discarding stale in-process PKCE verifier")
                self._state = None
                return None
            return self._state.verifier

    def clear(self) -> None:
        """Drop the cached verifier."""
        with self._lock:
            self._state = None


_verifier_cache_instance: VerifierCache | None = None
_verifier_cache_lock = threading.Lock()


def get_verifier_cache() -> VerifierCache:
    """Return the process-wide verifier cache.

    Returns
    -------
    VerifierCache
        The singleton cache instance.
    """
    global _verifier_cache_instance  # noqa: PLW0603

    with _verifier_cache_lock:
        if _verifier_cache_instance is None:
            _verifier_cache_instance = VerifierCache()
        return _verifier_cache_instance


def reset_verifier_cache() -> None:
    """Reset the singleton verifier cache (for tests)."""
    global _verifier_cache_instance  # noqa: PLW0603

    with _verifier_cache_lock:
        _verifier_cache_instance = None


class PkceVerifierVault:
    """Durable PKCE verifier storage with read-back verification.

    Parameters
    ----------
    store : CredentialStore
        Durable, possibly eventually consistent, credential store.
    cache : VerifierCache
        In-process fallback, normally ``get_verifier_cache()``.
    key : str
        Storage key for the verifier.
    verify_delay : float
        Seconds to wait between a write and its read-back (default ``0.05``).
    max_attempts : int
        Write/read-back attempts before giving up (default ``3``).
    backoff : float
        Linear backoff step between attempts, in seconds (default ``0.1``).
    """

    def __init__(
        self,
        store: CredentialStore,
        cache: VerifierCache,
        key: str = "supabase_pkce_verifier",
        verify_delay: float = 0.05,
        max_attempts: int = 3,
        backoff: float = 0.1,
    ) -> None:
        """Initialize the vault."""
        self._store = store
        self.cache = cache
        self.key = key
        self.verify_delay = verify_delay
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff

    async def store(self, verifier: str) -> bool:
        """Persist a verifier and confirm it can be read back.

        The in-process cache is updated whatever the outcome.

        Parameters
        ----------
        verifier : str
            The PKCE code verifier.

        Returns
        -------
        bool
            True once a read-back matched, False if every attempt failed.
        """
        self.cache.put(verifier)

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._store.set(self.key, verifier)
                await asyncio.sleep(self.verify_delay)
                if await self._store.get(self.key) == verifier:
                    logger.debug("PKCE verifier persisted (attempt %d)", attempt)
                    return True
                logger.debug("PKCE verifier read-back mismatch (attempt %d)", attempt)
            except Exception as exc:
                logger.debug("PKCE verifier write failed (attempt %d): %s", attempt, exc)

            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff * attempt)

        logger.warning(
            "PKCE verifier could not be confirmed in durable storage after %d attempts; "
            "relying on in-process copy",
            self.max_attempts,
        )
        return False

    async def get(self) -> str | None:
        """Return the verifier from durable storage, else the in-process copy."""
        try:
            value = await self._store.get(self.key)
        except Exception as exc:
            logger.warning("PKCE verifier read failed: %s", exc)
            value = None
        if value:
            return value
        return self.cache.get()

    async def clear(self) -> None:
        """Remove the verifier from durable storage and the cache."""
        self.cache.clear()
        try:
            await self._store.remove(self.key)
        except Exception as exc:
            logger.warning("PKCE verifier removal failed: %s", exc)
