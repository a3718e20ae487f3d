"""Unit tests for services.common.configs module."""

import pytest
from pydantic import ValidationError

from zapstats.services.common.configs import (
    DEFAULT_RELAYS,
    ProfileCacheConfig,
    RelaysConfig,
    RetryConfig,
)


class TestRelaysConfig:
    """Relay pool settings."""

    def test_defaults(self) -> None:
        config = RelaysConfig()
        assert config.urls == list(DEFAULT_RELAYS)
        assert config.connect_timeout == 10.0
        assert config.request_timeout == 15.0

    def test_default_pool_is_not_shared(self) -> None:
        first = RelaysConfig()
        first.urls.append("wss://extra.example.com")
        assert RelaysConfig().urls == list(DEFAULT_RELAYS)

    def test_urls_normalized_and_deduplicated(self) -> None:
        config = RelaysConfig(
            urls=[" wss://nos.lol/", "wss://relay.damus.io", "wss://nos.lol", "ws://localhost:7777"]
        )
        assert config.urls == ["wss://nos.lol", "wss://relay.damus.io", "ws://localhost:7777"]

    @pytest.mark.parametrize("url", ["https://nos.lol", "nos.lol", ""])
    def test_non_websocket_url_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError, match="ws://"):
            RelaysConfig(urls=[url])

    def test_empty_pool_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RelaysConfig(urls=[])

    def test_timeout_bounds(self) -> None:
        with pytest.raises(ValidationError):
            RelaysConfig(request_timeout=0.5)
        with pytest.raises(ValidationError):
            RelaysConfig(connect_timeout=500)


class TestProfileCacheConfig:
    """Profile cache TTLs."""

    def test_defaults(self) -> None:
        config = ProfileCacheConfig()
        assert config.ttl == 3600.0
        assert config.miss_ttl == 300.0
        assert config.batch_size == 200

    def test_zero_ttl_allowed(self) -> None:
        assert ProfileCacheConfig(ttl=0).ttl == 0

    def test_batch_size_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ProfileCacheConfig(batch_size=0)
        with pytest.raises(ValidationError):
            ProfileCacheConfig(batch_size=1001)


class TestRetryConfig:
    """Stage retry policy."""

    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_attempts == 2
        assert config.delay == 1.0

    def test_at_least_one_attempt(self) -> None:
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)
