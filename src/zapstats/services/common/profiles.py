"""Kind 0 profile cache.

Profiles decorate payers and authors; they never affect totals. The cache
fetches only what it does not hold fresh, remembers pubkeys that have no
profile for ``miss_ttl`` seconds, and keeps the newest kind 0 per pubkey.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from nostr_sdk import NostrSdkError

from zapstats.core.exceptions import RelayConnectionError
from zapstats.core.logger import Logger
from zapstats.models.constants import ANONYMOUS_PUBKEY
from zapstats.nips.nip01 import newest_profiles, parse_profile
from zapstats.utils.parsing import parse_events

from .configs import ProfileCacheConfig
from .filters import profile_filter


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from zapstats.models.profile import ProfileMetadata

    from .fetcher import EventFetcher


class ProfileCache:
    """Lazily filled pubkey -> [ProfileMetadata][zapstats.models.profile.ProfileMetadata] map.

    Args:
        fetcher: Source of kind 0 events.
        config: TTLs and batch size.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        fetcher: EventFetcher,
        config: ProfileCacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._config = config or ProfileCacheConfig()
        self._clock = clock
        self._profiles: dict[str, tuple[ProfileMetadata, float]] = {}
        self._misses: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._logger = Logger("profiles")

    def get(self, pubkey: str) -> ProfileMetadata | None:
        """Cached profile, fresh or not; never fetches."""
        entry = self._profiles.get(pubkey)
        return entry[0] if entry is not None else None

    def __len__(self) -> int:
        return len(self._profiles)

    def _is_fresh(self, pubkey: str, now: float) -> bool:
        entry = self._profiles.get(pubkey)
        if entry is not None and now - entry[1] < self._config.ttl:
            return True
        missed_at = self._misses.get(pubkey)
        return missed_at is not None and now - missed_at < self._config.miss_ttl

    async def ensure_profiles(self, pubkeys: Iterable[str]) -> dict[str, ProfileMetadata]:
        """Return known profiles for ``pubkeys``, fetching stale or missing ones.

        Pubkeys without a published profile are simply absent from the
        result. A failed batch is logged and skipped so the other batches
        still count; only when every batch fails is the error raised.
        """
        wanted = [pk for pk in dict.fromkeys(pubkeys) if pk and pk != ANONYMOUS_PUBKEY]
        async with self._lock:
            now = self._clock()
            missing = [pk for pk in wanted if not self._is_fresh(pk, now)]
            if missing:
                await self._fetch(missing)
        return {pk: entry for pk in wanted if (entry := self.get(pk)) is not None}

    async def _fetch(self, pubkeys: list[str]) -> None:
        size = self._config.batch_size
        batches = [pubkeys[i : i + size] for i in range(0, len(pubkeys), size)]
        errors: list[Exception] = []

        for batch in batches:
            try:
                events = await self._fetcher.fetch_events(profile_filter(batch))
            except (RelayConnectionError, NostrSdkError, OSError, TimeoutError) as e:
                errors.append(e)
                self._logger.warning(
                    "profile_batch_failed",
                    pubkeys=len(batch),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            profiles, failed = parse_events(events, parse_profile)
            fetched_at = self._clock()
            requested = set(batch)
            for pubkey, profile in newest_profiles(profiles).items():
                if pubkey not in requested:
                    continue
                current = self._profiles.get(pubkey)
                if current is None or profile.created_at >= current[0].created_at:
                    self._profiles[pubkey] = (profile, fetched_at)
                else:
                    self._profiles[pubkey] = (current[0], fetched_at)
                self._misses.pop(pubkey, None)
            for pubkey in requested.difference(p.pubkey for p in profiles):
                self._misses[pubkey] = fetched_at
            self._logger.debug(
                "profiles_fetched", requested=len(batch), found=len(profiles), malformed=failed
            )

        if errors and len(errors) == len(batches):
            raise errors[0]
