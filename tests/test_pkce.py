"""Tests for PKCE generation and durable verifier storage."""

from __future__ import annotations

import hashlib
import random
import re
import time

from base64 import urlsafe_b64encode
from unittest.mock import AsyncMock, patch

import pytest

from storefront_auth.auth.pkce import (
    PKCEChallenge,
    PkceVerifierVault,
    VerifierCache,
    get_verifier_cache,
    reset_verifier_cache,
)
from storefront_auth.state.credential_store import MemoryCredentialStore
from tests.fakes import DroppingCredentialStore, FailingCredentialStore, LatencyCredentialStore


# ── PKCEChallenge ───────────────────────────────────────────────────


class TestPKCEChallenge:
    """Tests for PKCEChallenge generation."""

    def test_generate_returns_challenge(self) -> None:
        pkce = PKCEChallenge.generate()
        assert pkce.verifier
        assert pkce.challenge
        assert pkce.method == "S256"

    def test_verifier_is_url_safe_and_rfc_length(self) -> None:
        pkce = PKCEChallenge.generate()
        assert re.match(r"^[A-Za-z0-9_-]+$", pkce.verifier)
        assert 43 <= len(pkce.verifier) <= 128

    def test_long_verifier_is_truncated(self) -> None:
        assert len(PKCEChallenge.generate(length=200).verifier) == 128

    def test_challenge_matches_verifier_sha256(self) -> None:
        pkce = PKCEChallenge.generate()
        digest = hashlib.sha256(pkce.verifier.encode("ascii")).digest()
        assert pkce.challenge == urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def test_rfc7636_appendix_b_vector(self) -> None:
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert PKCEChallenge.derive_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_generate_uniqueness(self) -> None:
        assert PKCEChallenge.generate().verifier != PKCEChallenge.generate().verifier

    def test_frozen_dataclass(self) -> None:
        pkce = PKCEChallenge.generate()
        with pytest.raises(AttributeError):
            pkce.verifier = "new"  # type: ignore[misc]


# ── VerifierCache ───────────────────────────────────────────────────


class TestVerifierCache:
    """The in-process fallback holds one verifier."""

    def test_put_get_clear(self) -> None:
        cache = VerifierCache()
        assert cache.get() is None
        cache.put("v1")
        cache.put("v2")
        assert cache.get() == "v2"
        cache.clear()
        assert cache.get() is None

    def test_stale_verifier_dropped(self) -> None:
        cache = VerifierCache(max_age_seconds=600)
        cache.put("v1")
        written = time.time()
        with patch("storefront_auth.auth.pkce.time.time", return_value=written + 300):
            assert cache.get() == "v1"
        with patch("storefront_auth.auth.pkce.time.time", return_value=written + 601):
            assert cache.get() is None
        assert cache.get() is None

    @pytest.mark.asyncio
    async def test_vault_ignores_stale_fallback(self) -> None:
        cache = VerifierCache(max_age_seconds=600)
        vault = PkceVerifierVault(
            DroppingCredentialStore({"supabase_pkce_verifier"}), cache, verify_delay=0, backoff=0
        )
        await vault.store("verifier-1")
        assert await vault.get() == "verifier-1"
        with patch("storefront_auth.auth.pkce.time.time", return_value=time.time() + 3600):
            assert await vault.get() is None

    def test_process_singleton(self) -> None:
        assert get_verifier_cache() is get_verifier_cache()

    def test_reset(self) -> None:
        first = get_verifier_cache()
        first.put("v")
        reset_verifier_cache()
        assert get_verifier_cache() is not first
        assert get_verifier_cache().get() is None


# ── PkceVerifierVault ───────────────────────────────────────────────


class TestVaultStore:
    """store() writes, reads back, and retries with linear backoff."""

    @pytest.mark.asyncio
    async def test_store_and_get(self) -> None:
        store = MemoryCredentialStore()
        vault = PkceVerifierVault(store, VerifierCache(), verify_delay=0)

        assert await vault.store("verifier-1") is True
        assert await store.get("supabase_pkce_verifier") == "verifier-1"
        assert await vault.get() == "verifier-1"

    @pytest.mark.asyncio
    async def test_cache_mirrored_on_success(self) -> None:
        cache = VerifierCache()
        vault = PkceVerifierVault(MemoryCredentialStore(), cache, verify_delay=0)
        await vault.store("verifier-1")
        assert cache.get() == "verifier-1"

    @pytest.mark.asyncio
    async def test_retries_with_linear_backoff(self) -> None:
        store = DroppingCredentialStore({"supabase_pkce_verifier"})
        vault = PkceVerifierVault(store, VerifierCache(), verify_delay=0.05, max_attempts=3, backoff=0.1)

        with patch("storefront_auth.auth.pkce.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await vault.store("verifier-1") is False

        assert store.writes == ["supabase_pkce_verifier"] * 3
        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [0.05, 0.1, 0.05, 0.2, 0.05]

    @pytest.mark.asyncio
    async def test_total_failure_falls_back_to_cache(self, caplog: pytest.LogCaptureFixture) -> None:
        store = FailingCredentialStore()
        vault = PkceVerifierVault(store, VerifierCache(), verify_delay=0, backoff=0)

        assert await vault.store("verifier-1") is False
        assert await vault.get() == "verifier-1"
        assert "relying on in-process copy" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_shared_across_vaults_in_process(self) -> None:
        """A vault rebuilt after the redirect sees the same process cache."""
        cache = get_verifier_cache()
        await PkceVerifierVault(FailingCredentialStore(), cache, verify_delay=0, backoff=0).store("v")
        rebuilt = PkceVerifierVault(FailingCredentialStore(), get_verifier_cache())
        assert await rebuilt.get() == "v"

    @pytest.mark.asyncio
    async def test_latency_store_then_get_succeeds(self) -> None:
        """Verifier survives eventually consistent storage in at least 99% of trials."""
        rng = random.Random(7636)
        trials = 100
        successes = 0
        for _ in range(trials):
            store = LatencyCredentialStore(latency=rng.uniform(0.0, 0.03))
            vault = PkceVerifierVault(store, VerifierCache(), verify_delay=0.01, backoff=0.01)
            verifier = PKCEChallenge.generate().verifier
            await vault.store(verifier)

            # Fresh vault and cache: only the durable copy can answer
            after_redirect = PkceVerifierVault(store, VerifierCache())
            if await after_redirect.get() == verifier:
                successes += 1

        assert successes >= 0.99 * trials


class TestVaultGetClear:
    """get() prefers durable storage; clear() removes both copies."""

    @pytest.mark.asyncio
    async def test_get_prefers_durable(self) -> None:
        store = MemoryCredentialStore()
        cache = VerifierCache()
        cache.put("stale")
        await store.set("supabase_pkce_verifier", "durable")
        assert await PkceVerifierVault(store, cache).get() == "durable"

    @pytest.mark.asyncio
    async def test_get_nothing(self) -> None:
        assert await PkceVerifierVault(MemoryCredentialStore(), VerifierCache()).get() is None

    @pytest.mark.asyncio
    async def test_clear_removes_both(self) -> None:
        store = MemoryCredentialStore()
        cache = VerifierCache()
        vault = PkceVerifierVault(store, cache, verify_delay=0)
        await vault.store("verifier-1")

        await vault.clear()

        assert await store.get("supabase_pkce_verifier") is None
        assert cache.get() is None
        assert await vault.get() is None

    @pytest.mark.asyncio
    async def test_clear_swallows_storage_errors(self) -> None:
        cache = VerifierCache()
        cache.put("v")
        await PkceVerifierVault(FailingCredentialStore(), cache).clear()
        assert cache.get() is None

    @pytest.mark.asyncio
    async def test_custom_key(self) -> None:
        store = MemoryCredentialStore()
        await PkceVerifierVault(store, VerifierCache(), key="pkce", verify_delay=0).store("v")
        assert store.keys() == ["pkce"]
