"""Pluggable credential storage backends.

Provides the CredentialStore ABC, a flat async string key-value contract,
and concrete implementations for in-memory, OS keyring, and Redis-backed
persistence. Backends report failures as ``StorageError``; callers in the
session and PKCE layers are expected to swallow them.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ConfigurationError, StorageError


logger = logging.getLogger("storefront_auth.state")


class CredentialStore(ABC):
    """Abstract base class for credential storage.

    All methods are async to support both local and network-backed stores.
    Stores are treated as eventually consistent: a ``get`` right after a
    ``set`` is not guaranteed to observe the write.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Read the value stored under ``key``.

        Parameters
        ----------
        key : str
            Storage key.

        Returns
        -------
        str or None
            The stored value, or None if not found.
        """

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Parameters
        ----------
        key : str
            Storage key.
        value : str
            Value to persist.
        """

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove ``key``. Removing a missing key is not an error.

        Parameters
        ----------
        key : str
            Storage key.
        """


class MemoryCredentialStore(CredentialStore):
    """In-memory credential store for development and single-process use.

    Thread-safe via asyncio.Lock.
    """

    def __init__(self) -> None:
        """Initialize the memory credential store."""
        self._values: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        """Read a value from memory."""
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        """Store a value in memory."""
        async with self._lock:
            self._values[key] = value

    async def remove(self, key: str) -> None:
        """Remove a value from memory."""
        async with self._lock:
            self._values.pop(key, None)

    def keys(self) -> list[str]:
        """Snapshot of the stored keys."""
        return list(self._values)


class KeyringCredentialStore(CredentialStore):
    """OS keyring-backed credential store for native deployments.

    Requires the ``keyring`` package: ``pip install storefront-auth[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "storefront-auth").
    """

    def __init__(self, service_name: str = "storefront-auth") -> None:
        """Initialize the keyring credential store."""
        try:
            import keyring as _keyring
            import keyring.errors as _keyring_errors
        except ImportError:
            msg = "Install keyring for persistent credential storage: pip install storefront-auth[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring
        self._errors = _keyring_errors

    async def get(self, key: str) -> str | None:
        """Read a value from the OS keyring."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, self._keyring.get_password, self._service_name, key
            )
        except self._errors.KeyringError as exc:
            msg = f"Keyring read failed: {exc}"
            raise StorageError(msg, key=key) from exc

    async def set(self, key: str, value: str) -> None:
        """Store a value in the OS keyring."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._keyring.set_password, self._service_name, key, value
            )
        except self._errors.KeyringError as exc:
            msg = f"Keyring write failed: {exc}"
            raise StorageError(msg, key=key) from exc

    async def remove(self, key: str) -> None:
        """Remove a value from the OS keyring."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._keyring.delete_password, self._service_name, key
            )
        except self._errors.PasswordDeleteError:
            # Entry did not exist
            return
        except self._errors.KeyringError as exc:
            msg = f"Keyring delete failed: {exc}"
            raise StorageError(msg, key=key) from exc


class RedisCredentialStore(CredentialStore):
    """Redis-backed credential store for multi-worker deployments.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "storefront").
    pool_size : int
        Connection pool size (default 10).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "storefront",
        pool_size: int = 10,
    ) -> None:
        """Initialize the Redis credential store."""
        try:
            from redis.asyncio import Redis as RedisClient
            from redis.exceptions import RedisError
        except ImportError:
            msg = "Redis backend requires the 'redis' package. Install with: pip install storefront-auth[redis]"
            raise ImportError(msg) from None

        self._prefix = prefix
        self._redis_error = RedisError
        self._redis: Any = RedisClient.from_url(
            redis_url,
            max_connections=pool_size,
            decode_responses=True,
        )

    def _key(self, key: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:auth:{key}"

    async def get(self, key: str) -> str | None:
        """Read a value from Redis."""
        try:
            return await self._redis.get(self._key(key))
        except self._redis_error as exc:
            msg = f"Redis read failed: {exc}"
            raise StorageError(msg, key=key) from exc

    async def set(self, key: str, value: str) -> None:
        """Store a value in Redis."""
        try:
            await self._redis.set(self._key(key), value)
        except self._redis_error as exc:
            msg = f"Redis write failed: {exc}"
            raise StorageError(msg, key=key) from exc

    async def remove(self, key: str) -> None:
        """Remove a value from Redis."""
        try:
            await self._redis.delete(self._key(key))
        except self._redis_error as exc:
            msg = f"Redis delete failed: {exc}"
            raise StorageError(msg, key=key) from exc

    async def close(self) -> None:
        """Close the connection pool."""
        await self._redis.aclose()


_credential_store_instance: CredentialStore | None = None
_credential_store_lock = threading.Lock()


def get_credential_store(backend: str = "memory", **kwargs: Any) -> CredentialStore:
    """Factory function for credential stores.

    Returns a singleton instance. Call ``reset_credential_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "keyring", or "redis".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    CredentialStore
        A configured credential store instance.
    """
    global _credential_store_instance  # noqa: PLW0603

    with _credential_store_lock:
        if _credential_store_instance is not None:
            return _credential_store_instance

        if backend == "memory":
            _credential_store_instance = MemoryCredentialStore()
        elif backend == "keyring":
            service_name = kwargs.get("service_name", "storefront-auth")
            _credential_store_instance = KeyringCredentialStore(service_name=service_name)
        elif backend == "redis":
            _credential_store_instance = RedisCredentialStore(
                redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
                prefix=kwargs.get("prefix", "storefront"),
                pool_size=kwargs.get("pool_size", 10),
            )
        else:
            msg = f"Unknown credential store backend: {backend}"
            raise ConfigurationError(msg, backend=backend)

        logger.debug("Credential store backend: %s", backend)
        return _credential_store_instance


def reset_credential_store() -> None:
    """Reset the singleton credential store instance.

    Useful for tests that need a fresh store between runs.
    """
    global _credential_store_instance  # noqa: PLW0603

    with _credential_store_lock:
        _credential_store_instance = None
