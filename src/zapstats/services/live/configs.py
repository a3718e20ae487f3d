"""Live session configuration models.

See Also:
    [LiveSession][zapstats.services.live.LiveSession]: The service class
        that consumes these configurations.
"""

from __future__ import annotations

from pydantic import Field

from zapstats.core.base_service import BaseServiceConfig
from zapstats.core.relays import ReconnectConfig
from zapstats.services.common.configs import ProfileCacheConfig, RelaysConfig


class LiveConfig(BaseServiceConfig):
    """Configuration for following one live event or note.

    Examples:
        ```yaml
        target: naddr1qqjrvv...
        top_n: 5
        debounce_seconds: 2
        reconnect:
          base_delay: 5
          max_attempts: 3
        ```
    """

    target: str = Field(default="", description="Reference of the event to follow")
    top_n: int = Field(default=5, ge=1, le=100, description="Length of the top-payer list")
    follow_chat: bool = Field(
        default=True, description="Also subscribe to kind 1311 chat (live events only)"
    )
    follow_activity: bool = Field(
        default=True, description="Also subscribe to the kind 30311 live event itself (live events only)"
    )
    chat_history: int = Field(
        default=500, ge=1, description="Chat messages kept for the feed"
    )
    fetch_profiles: bool = Field(default=True, description="Backfill payer and author profiles")
    debounce_seconds: float = Field(
        default=0.0,
        ge=0.0,
        le=60.0,
        description="Delay summary notifications after a burst (0 = immediate)",
    )
    verify_interval: float = Field(
        default=60.0, ge=1.0, description="Seconds between accounting checks"
    )
    relays: RelaysConfig = Field(default_factory=RelaysConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    profiles: ProfileCacheConfig = Field(default_factory=ProfileCacheConfig)
