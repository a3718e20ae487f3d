"""
Unit tests for services.common.profiles module.

Tests:
- Fetching only missing or stale profiles
- Negative caching of pubkeys without a profile
- Newest kind 0 wins, malformed content is skipped
- Batching and partial batch failures
"""

from unittest.mock import AsyncMock

import pytest

from zapstats.core.exceptions import NoRelaysReachableError
from zapstats.models.constants import ANONYMOUS_PUBKEY
from zapstats.services.common.configs import ProfileCacheConfig
from zapstats.services.common.profiles import ProfileCache

from fixtures.events import PAYER_A, PAYER_B, PAYER_C, make_profile_event


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _cache(fetcher: AsyncMock, clock: FakeClock, **config: float) -> ProfileCache:
    return ProfileCache(fetcher, ProfileCacheConfig(**config), clock=clock)


def _requested(fetcher: AsyncMock) -> list[list[str]]:
    return [call.args[0].authors for call in fetcher.fetch_events.await_args_list]


# ============================================================================
# Freshness
# ============================================================================


class TestEnsureProfiles:
    """Cache hits, misses and expiry."""

    async def test_fetches_and_returns_found_profiles(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.return_value = [make_profile_event(PAYER_A, name="alice")]
        cache = _cache(mock_fetcher, clock)

        profiles = await cache.ensure_profiles([PAYER_A, PAYER_B])

        assert list(profiles) == [PAYER_A]
        assert profiles[PAYER_A].name == "alice"
        assert cache.get(PAYER_A) is profiles[PAYER_A]
        assert cache.get(PAYER_B) is None
        assert len(cache) == 1
        assert _requested(mock_fetcher) == [[PAYER_A, PAYER_B]]

    async def test_fresh_profiles_not_refetched(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.return_value = [make_profile_event(PAYER_A)]
        cache = _cache(mock_fetcher, clock, ttl=60)

        await cache.ensure_profiles([PAYER_A])
        clock.now += 30
        await cache.ensure_profiles([PAYER_A])

        assert mock_fetcher.fetch_events.await_count == 1

    async def test_stale_profiles_refetched(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.return_value = [make_profile_event(PAYER_A)]
        cache = _cache(mock_fetcher, clock, ttl=60)

        await cache.ensure_profiles([PAYER_A])
        clock.now += 61
        await cache.ensure_profiles([PAYER_A])

        assert mock_fetcher.fetch_events.await_count == 2

    async def test_misses_remembered_for_miss_ttl(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        cache = _cache(mock_fetcher, clock, miss_ttl=10)

        await cache.ensure_profiles([PAYER_C])
        clock.now += 5
        await cache.ensure_profiles([PAYER_C])
        assert mock_fetcher.fetch_events.await_count == 1

        clock.now += 10
        await cache.ensure_profiles([PAYER_C])
        assert mock_fetcher.fetch_events.await_count == 2

    async def test_only_missing_pubkeys_requested(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.return_value = [make_profile_event(PAYER_A)]
        cache = _cache(mock_fetcher, clock)
        await cache.ensure_profiles([PAYER_A])

        mock_fetcher.fetch_events.return_value = [make_profile_event(PAYER_B, name="bob")]
        profiles = await cache.ensure_profiles([PAYER_A, PAYER_B])

        assert _requested(mock_fetcher) == [[PAYER_A], [PAYER_B]]
        assert set(profiles) == {PAYER_A, PAYER_B}

    async def test_anonymous_and_empty_keys_skipped(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        cache = _cache(mock_fetcher, clock)
        assert await cache.ensure_profiles([ANONYMOUS_PUBKEY, ""]) == {}
        mock_fetcher.fetch_events.assert_not_awaited()


# ============================================================================
# Parsing
# ============================================================================


class TestProfileSelection:
    """Which kind 0 is kept."""

    async def test_newest_profile_wins(self, mock_fetcher: AsyncMock, clock: FakeClock) -> None:
        mock_fetcher.fetch_events.return_value = [
            make_profile_event(PAYER_A, name="old", created_at=100, event_id="01" * 32),
            make_profile_event(PAYER_A, name="new", created_at=200, event_id="02" * 32),
        ]
        profiles = await _cache(mock_fetcher, clock).ensure_profiles([PAYER_A])
        assert profiles[PAYER_A].name == "new"

    async def test_older_refetch_does_not_replace(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        cache = _cache(mock_fetcher, clock, ttl=10)
        mock_fetcher.fetch_events.return_value = [
            make_profile_event(PAYER_A, name="new", created_at=200)
        ]
        await cache.ensure_profiles([PAYER_A])

        clock.now += 11
        mock_fetcher.fetch_events.return_value = [
            make_profile_event(PAYER_A, name="old", created_at=100)
        ]
        profiles = await cache.ensure_profiles([PAYER_A])

        assert profiles[PAYER_A].name == "new"

    async def test_malformed_content_skipped(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.return_value = [
            make_profile_event(PAYER_A, content="not json"),
            make_profile_event(PAYER_B, name="bob"),
        ]
        profiles = await _cache(mock_fetcher, clock).ensure_profiles([PAYER_A, PAYER_B])
        assert list(profiles) == [PAYER_B]

    async def test_unrequested_authors_ignored(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.return_value = [
            make_profile_event(PAYER_A),
            make_profile_event(PAYER_C, name="stranger"),
        ]
        cache = _cache(mock_fetcher, clock)
        await cache.ensure_profiles([PAYER_A])
        assert cache.get(PAYER_C) is None


# ============================================================================
# Batching
# ============================================================================


class TestBatching:
    """Batch splitting and failure handling."""

    async def test_split_by_batch_size(self, mock_fetcher: AsyncMock, clock: FakeClock) -> None:
        cache = _cache(mock_fetcher, clock, batch_size=2)
        await cache.ensure_profiles([PAYER_A, PAYER_B, PAYER_C])
        assert _requested(mock_fetcher) == [[PAYER_A, PAYER_B], [PAYER_C]]

    async def test_partial_failure_tolerated(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.side_effect = [
            NoRelaysReachableError("down"),
            [make_profile_event(PAYER_C, name="carol")],
        ]
        cache = _cache(mock_fetcher, clock, batch_size=2)

        profiles = await cache.ensure_profiles([PAYER_A, PAYER_B, PAYER_C])

        assert list(profiles) == [PAYER_C]

    async def test_failed_batch_retried_next_time(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.side_effect = [
            TimeoutError(),
            [make_profile_event(PAYER_B)],
            [make_profile_event(PAYER_A)],
        ]
        cache = _cache(mock_fetcher, clock, batch_size=1)

        await cache.ensure_profiles([PAYER_A, PAYER_B])
        profiles = await cache.ensure_profiles([PAYER_A, PAYER_B])

        assert set(profiles) == {PAYER_A, PAYER_B}
        assert _requested(mock_fetcher) == [[PAYER_A], [PAYER_B], [PAYER_A]]

    async def test_all_batches_failing_raises(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.side_effect = OSError("connection reset")
        cache = _cache(mock_fetcher, clock, batch_size=1)

        with pytest.raises(OSError, match="connection reset"):
            await cache.ensure_profiles([PAYER_A, PAYER_B])

    async def test_unexpected_errors_propagate(
        self, mock_fetcher: AsyncMock, clock: FakeClock
    ) -> None:
        mock_fetcher.fetch_events.side_effect = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            await _cache(mock_fetcher, clock).ensure_profiles([PAYER_A])
