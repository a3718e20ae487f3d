"""Shared infrastructure for the zapstats services.

Attributes:
    configs: Relay pool, profile cache and retry settings
        ([RelaysConfig][zapstats.services.common.configs.RelaysConfig],
        [ProfileCacheConfig][zapstats.services.common.configs.ProfileCacheConfig],
        [RetryConfig][zapstats.services.common.configs.RetryConfig]).
    filters: [SubscriptionFilter][zapstats.services.common.filters.SubscriptionFilter]
        and the builders for receipt, chat, target and profile filters.
    fetcher: The [EventFetcher][zapstats.services.common.fetcher.EventFetcher]
        protocol and its relay-pool implementation.
    profiles: [ProfileCache][zapstats.services.common.profiles.ProfileCache].
"""

from .configs import DEFAULT_RELAYS, ProfileCacheConfig, RelaysConfig, RetryConfig
from .fetcher import EventFetcher, RelayEventFetcher
from .filters import (
    SubscriptionFilter,
    live_chat_filter,
    live_zap_filter,
    profile_filter,
    target_event_filters,
    zap_receipt_filters,
)
from .profiles import ProfileCache


__all__ = [
    "DEFAULT_RELAYS",
    "EventFetcher",
    "ProfileCache",
    "ProfileCacheConfig",
    "RelayEventFetcher",
    "RelaysConfig",
    "RetryConfig",
    "SubscriptionFilter",
    "live_chat_filter",
    "live_zap_filter",
    "profile_filter",
    "target_event_filters",
    "zap_receipt_filters",
]
