"""Stats service configuration models.

See Also:
    [StatsService][zapstats.services.stats.StatsService]: The service class
        that consumes these configurations.
    [BaseServiceConfig][zapstats.core.base_service.BaseServiceConfig]:
        Base class providing ``interval`` and ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import Field, field_validator

from zapstats.core.base_service import BaseServiceConfig
from zapstats.services.common.configs import ProfileCacheConfig, RelaysConfig, RetryConfig


class StatsConfig(BaseServiceConfig):
    """Configuration for periodic batch statistics.

    Examples:
        ```yaml
        interval: 300
        top_n: 10
        targets:
          - note1qqqq...
          - 30311:3bf0c63f...:live-2024
        retry:
          max_attempts: 3
        ```
    """

    interval: float = Field(default=300.0, ge=10.0, description="Seconds between recomputes")
    targets: list[str] = Field(
        default_factory=list, description="Target references recomputed every cycle"
    )
    top_n: int = Field(default=20, ge=1, le=500, description="Length of the ranked lists")
    fetch_profiles: bool = Field(
        default=True, description="Backfill author and payer profiles"
    )
    relays: RelaysConfig = Field(default_factory=RelaysConfig)
    profiles: ProfileCacheConfig = Field(default_factory=ProfileCacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("targets", mode="after")
    @classmethod
    def strip_targets(cls, v: list[str]) -> list[str]:
        """Drop blank entries so an empty YAML item does not count as a reference."""
        return [t.strip() for t in v if t.strip()]
