"""One-shot event fetching.

The batch calculator and the profile cache depend on the
[EventFetcher][zapstats.services.common.fetcher.EventFetcher] protocol only,
so tests can hand them an ``AsyncMock``.
[RelayEventFetcher][zapstats.services.common.fetcher.RelayEventFetcher] is
the production implementation: it keeps one pooled ``nostr_sdk.Client``
open for its lifetime and waits for EOSE (or the request timeout) on every
fetch.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol, Self

from zapstats.core.exceptions import NoRelaysReachableError
from zapstats.core.logger import Logger
from zapstats.utils.protocol import PoolUnreachableError, connect_pool, shutdown_client

from .configs import RelaysConfig


if TYPE_CHECKING:
    from types import TracebackType

    from nostr_sdk import Client
    from nostr_sdk import Event as NostrEvent

    from .filters import SubscriptionFilter


class EventFetcher(Protocol):
    """Anything that can answer a filter with a list of events."""

    async def fetch_events(self, subscription_filter: SubscriptionFilter) -> list[NostrEvent]: ...


class RelayEventFetcher:
    """Fetch stored events from a relay pool.

    Use as an async context manager; the pool is connected on entry and shut
    down on exit.

    Examples:
        ```python
        async with RelayEventFetcher(RelaysConfig()) as fetcher:
            events = await fetcher.fetch_events(profile_filter([pubkey]))
        ```
    """

    def __init__(self, config: RelaysConfig | None = None) -> None:
        self._config = config or RelaysConfig()
        self._client: Client | None = None
        self._connect_lock = asyncio.Lock()
        self._logger = Logger("fetcher")

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Connect the pool. Concurrent callers share a single connection.

        Raises:
            NoRelaysReachableError: If no relay accepted a connection.
        """
        if self._client is not None:
            return
        async with self._connect_lock:
            if self._client is not None:
                return
            try:
                self._client = await connect_pool(
                    self._config.urls, timeout=self._config.connect_timeout
                )
            except PoolUnreachableError as e:
                raise NoRelaysReachableError(str(e)) from e
        self._logger.debug("fetcher_connected", relays=len(self._config.urls))

    async def close(self) -> None:
        if self._client is not None:
            await shutdown_client(self._client)
            self._client = None

    async def fetch_events(self, subscription_filter: SubscriptionFilter) -> list[NostrEvent]:
        """Return every stored event matching the filter, across the pool.

        Events stored on several relays are returned once.

        Raises:
            NoRelaysReachableError: If the pool cannot be connected.
        """
        await self.connect()
        assert self._client is not None  # noqa: S101
        events = await self._client.fetch_events(
            subscription_filter.to_nostr_filter(),
            timedelta(seconds=self._config.request_timeout),
        )
        result = events.to_vec()
        self._logger.debug("events_fetched", count=len(result), kinds=subscription_filter.kinds)
        return result

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
