"""Tests for single-flight refresh."""

from __future__ import annotations

import asyncio
import time

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from storefront_auth.auth.refresh import RefreshCoordinator
from storefront_auth.auth.session import SessionStore
from storefront_auth.state.types import AuthSession


def _session(tag: str = "new") -> AuthSession:
    return AuthSession(
        access_token=f"at-{tag}",
        refresh_token=f"rt-{tag}",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


class TestSingleFlight:
    """Only one refresh runs at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_refresh_once(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        calls = 0

        async def refresh() -> AuthSession:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return _session()

        first, second = await asyncio.gather(coordinator.run(refresh), coordinator.run(refresh))

        assert calls == 1
        assert [first, second].count(None) == 1
        winner = first or second
        assert winner is not None
        assert winner.access_token == "at-new"

    @pytest.mark.asyncio
    async def test_losing_call_returns_promptly(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        release = asyncio.Event()

        async def slow_refresh() -> AuthSession:
            await release.wait()
            return _session()

        winner = asyncio.create_task(coordinator.run(slow_refresh))
        await asyncio.sleep(0)
        # The winner holds the lock; the loser must not wait for it
        loser = await asyncio.wait_for(coordinator.run(slow_refresh), timeout=0.5)
        release.set()

        assert loser is None
        assert await winner is not None

    @pytest.mark.asyncio
    async def test_waiter_rechecks_cooldown_under_lock(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        refresh = AsyncMock(return_value=_session())

        await coordinator._lock.acquire()  # pylint: disable=protected-access
        waiter = asyncio.create_task(coordinator.run(refresh))
        await asyncio.sleep(0)
        # Another caller completed a refresh while the waiter was queued
        coordinator.last_attempt = time.monotonic()
        coordinator._lock.release()  # pylint: disable=protected-access
        result = await waiter

        assert result is None
        refresh.assert_not_awaited()


class TestCooldown:
    """Refreshes inside the cooldown short-circuit."""

    @pytest.mark.asyncio
    async def test_second_call_short_circuits(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store, cooldown_seconds=10)
        refresh = AsyncMock(return_value=_session())

        assert await coordinator.run(refresh) is not None
        assert await coordinator.run(refresh) is None
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_runs_again_after_cooldown(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store, cooldown_seconds=10)
        refresh = AsyncMock(return_value=_session())

        with patch("storefront_auth.auth.refresh.time.monotonic", return_value=100.0):
            await coordinator.run(refresh)
        with patch("storefront_auth.auth.refresh.time.monotonic", return_value=111.0):
            await coordinator.run(refresh)

        assert refresh.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_attempt_still_starts_cooldown(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        refresh = AsyncMock(side_effect=RuntimeError("provider down"))

        assert await coordinator.run(refresh) is None
        assert await coordinator.run(refresh) is None
        refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_bypasses_cooldown(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        refresh = AsyncMock(return_value=_session())

        await coordinator.run(refresh)
        assert await coordinator.run(refresh, force=True) is not None
        assert refresh.await_count == 2

    @pytest.mark.asyncio
    async def test_reset_clears_gate(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        refresh = AsyncMock(return_value=_session())

        await coordinator.run(refresh)
        coordinator.reset()
        assert coordinator.last_attempt is None
        assert await coordinator.run(refresh) is not None


class TestPersistence:
    """Results are saved; failures are logged and swallowed."""

    @pytest.mark.asyncio
    async def test_result_is_saved(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        await coordinator.run(AsyncMock(return_value=_session("saved")))

        loaded = await session_store.load()
        assert loaded is not None
        assert loaded.access_token == "at-saved"
        assert loaded.refresh_token == "rt-saved"

    @pytest.mark.asyncio
    async def test_none_result_is_not_saved(self, session_store: SessionStore) -> None:
        session_store.save = AsyncMock()  # type: ignore[method-assign]
        await RefreshCoordinator(session_store).run(AsyncMock(return_value=None))
        session_store.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exception_is_logged(
        self, session_store: SessionStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        coordinator = RefreshCoordinator(session_store)
        result = await coordinator.run(AsyncMock(side_effect=RuntimeError("boom")))
        assert result is None
        assert "Session refresh failed: boom" in caplog.text

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, session_store: SessionStore) -> None:
        coordinator = RefreshCoordinator(session_store)
        await coordinator.run(AsyncMock(side_effect=RuntimeError("boom")))
        assert not coordinator._lock.locked()  # pylint: disable=protected-access
