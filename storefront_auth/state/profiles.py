"""User profile projection repository.

The storefront keeps a local profile row per authenticated user. This
package only needs an idempotent upsert-by-id; the schema belongs to the
application.
"""

from __future__ import annotations

import asyncio

from abc import ABC, abstractmethod
from typing import Any


class UserProfileRepository(ABC):
    """Idempotent upsert of the local user-profile projection."""

    @abstractmethod
    async def upsert(
        self,
        user_id: str,
        email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Create the profile for ``user_id`` if missing, else merge fields.

        Parameters
        ----------
        user_id : str
            Provider user identifier.
        email : str, optional
            Email address to record.
        metadata : dict, optional
            Extra profile fields (first_name, last_name, avatar_url, ...).
        """


class MemoryUserProfileRepository(UserProfileRepository):
    """In-memory profile repository for development and tests."""

    def __init__(self) -> None:
        """Initialize the repository."""
        self._profiles: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def upsert(
        self,
        user_id: str,
        email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Insert or merge a profile row."""
        async with self._lock:
            profile = self._profiles.setdefault(user_id, {"id": user_id})
            if email:
                profile["email"] = email
            for key, value in (metadata or {}).items():
                # Never overwrite a value the user already edited with a blank one
                if value not in (None, "") or key not in profile:
                    profile[key] = value

    async def get(self, user_id: str) -> dict[str, Any] | None:
        """Return a copy of the stored profile."""
        async with self._lock:
            profile = self._profiles.get(user_id)
            return dict(profile) if profile is not None else None

    def __len__(self) -> int:
        return len(self._profiles)
