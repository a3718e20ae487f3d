"""Shared configuration models for zapstats services.

Both services read from the same relay pool and share the profile cache and
stage-retry settings, so these models are embedded by
[LiveConfig][zapstats.services.live.LiveConfig] and
[StatsConfig][zapstats.services.stats.StatsConfig].

Examples:
    ```yaml
    relays:
      urls: [wss://nos.lol, wss://relay.damus.io]
      request_timeout: 20
    profiles:
      ttl: 1800
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://nostr.mom",
    "wss://nos.lol",
    "wss://relay.primal.net",
    "wss://nostr.bitcoiner.social",
    "wss://relay.snort.social",
    "wss://relay.damus.io",
    "wss://relay.nostr.band",
)


class RelaysConfig(BaseModel):
    """Relay pool and network timeouts."""

    urls: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RELAYS),
        min_length=1,
        description="WebSocket URLs of the relay pool",
    )
    connect_timeout: float = Field(default=10.0, ge=1.0, le=120.0)
    request_timeout: float = Field(
        default=15.0,
        ge=1.0,
        le=300.0,
        description="Seconds to wait for a one-shot fetch to reach EOSE",
    )

    @field_validator("urls", mode="after")
    @classmethod
    def validate_urls(cls, v: list[str]) -> list[str]:
        """Require ws:// or wss:// URLs and drop duplicates, keeping order."""
        seen: dict[str, None] = {}
        for url in v:
            normalized = url.strip().rstrip("/")
            if not normalized.startswith(("ws://", "wss://")):
                raise ValueError(f"relay URL must use ws:// or wss://: {url!r}")
            seen.setdefault(normalized, None)
        return list(seen)


class ProfileCacheConfig(BaseModel):
    """Freshness rules for [ProfileCache][zapstats.services.common.profiles.ProfileCache]."""

    ttl: float = Field(
        default=3600.0, ge=0.0, description="Seconds a fetched profile stays fresh"
    )
    miss_ttl: float = Field(
        default=300.0,
        ge=0.0,
        description="Seconds before a pubkey without a profile is asked for again",
    )
    batch_size: int = Field(default=200, ge=1, le=1000, description="Authors per request")


class RetryConfig(BaseModel):
    """Retry policy for one-shot fetch stages."""

    max_attempts: int = Field(default=2, ge=1, le=10)
    delay: float = Field(default=1.0, ge=0.0, le=60.0, description="Seconds between attempts")
