"""Live zap and chat ingestion for one target.

[LiveSession][zapstats.services.live.LiveSession] follows a single note or
live event and keeps its statistics current while relays come and go:

```text
RelayConnectionManager ──> EventDeduplicator ──> decode_zap_receipt ──> AggregationEngine
   (zaps, chat,         ("zaps:<id>",                                      │
     activity)           "chat:<id>",                   AccountingVerifier ┘ (every verify_interval)
                         "activity:<id>")
```

Every relay delivers its own copy of each event; the deduplicator lets one
through per stream before anything is decoded. Receipts that fail to decode
are logged and counted, never fatal. Payer and chat-author profiles are
backfilled in the background and attached to the engine as they arrive.
For a live event the kind 30311 event itself is followed as well, so
[summary()][zapstats.services.live.LiveSession.summary] carries its title
and status.

The session owns its engine, deduplicator and subscriptions; nothing is
shared with other sessions and everything is torn down on exit.

Examples:
    ```python
    config = LiveConfig(target="naddr1...")
    async with LiveSession(config, on_top_zappers_changed=render) as session:
        await session.run()
    ```
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import dataclasses
from typing import TYPE_CHECKING, Any, ClassVar

from nostr_sdk import NostrSdkError

from zapstats.core.base_service import BaseService
from zapstats.core.exceptions import (
    ConfigurationError,
    DecodeError,
    RelayConnectionError,
    SubscriptionFailedError,
)
from zapstats.core.relays import NostrSdkTransport, RelayConnectionManager
from zapstats.engine.aggregation import AggregationEngine
from zapstats.engine.dedup import EventDeduplicator
from zapstats.engine.verifier import AccountingVerifier
from zapstats.models.constants import ANONYMOUS_PUBKEY, EventKind, ServiceName, TargetType
from zapstats.nips.nip19 import parse_reference
from zapstats.nips.nip53 import parse_chat_message, parse_live_activity
from zapstats.nips.nip57 import decode_zap_receipt
from zapstats.services.common.fetcher import RelayEventFetcher
from zapstats.services.common.filters import (
    live_activity_filter,
    live_chat_filter,
    live_zap_filter,
)
from zapstats.services.common.profiles import ProfileCache
from zapstats.utils.events import event_id

from .configs import LiveConfig


if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from nostr_sdk import Event as NostrEvent

    from zapstats.core.relays import RelayTransport, SubscriptionHandle
    from zapstats.engine.verifier import VerificationReport
    from zapstats.models.aggregates import TargetBreakdown, ZapperAggregate
    from zapstats.models.chat import ChatMessage
    from zapstats.models.target import TargetRef
    from zapstats.models.zap import ZapReceipt
    from zapstats.nips.nip53 import LiveActivity
    from zapstats.services.common.fetcher import EventFetcher


_PROFILE_BATCH_DELAY = 0.25
_PROFILE_ERRORS = (RelayConnectionError, NostrSdkError, OSError, TimeoutError)


class LiveSession(BaseService[LiveConfig]):
    """Real-time statistics for one target.

    Args:
        config: Session configuration; ``config.target`` is followed by
            [run()][zapstats.services.live.LiveSession.run].
        transport: Relay transport (defaults to a
            [NostrSdkTransport][zapstats.core.relays.NostrSdkTransport] over
            ``config.relays``).
        fetcher: Event source for profile backfill (defaults to a
            [RelayEventFetcher][zapstats.services.common.fetcher.RelayEventFetcher]
            when ``config.fetch_profiles`` is set).
        on_aggregate_update: Forwarded engine listener, called after every
            applied receipt.
        on_top_zappers_changed: Forwarded engine listener.
        on_chat_message: Called with every new chat message.
        on_summary: Called with [summary()][zapstats.services.live.LiveSession.summary]
            after changes, debounced by ``config.debounce_seconds``.
        on_subscription_failed: Called with the handle of a subscription that
            exhausted its reconnects.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.LIVE
    CONFIG_CLASS: ClassVar[type[LiveConfig]] = LiveConfig

    def __init__(
        self,
        config: LiveConfig | None = None,
        *,
        transport: RelayTransport | None = None,
        fetcher: EventFetcher | None = None,
        on_aggregate_update: Callable[[str, TargetBreakdown], None] | None = None,
        on_top_zappers_changed: Callable[[list[ZapperAggregate]], None] | None = None,
        on_chat_message: Callable[[ChatMessage], None] | None = None,
        on_summary: Callable[[dict[str, Any]], None] | None = None,
        on_subscription_failed: Callable[[SubscriptionHandle], None] | None = None,
    ) -> None:
        super().__init__(config=config or LiveConfig())
        self._config: LiveConfig

        self._engine = AggregationEngine(
            top_n=self._config.top_n,
            on_aggregate_update=on_aggregate_update,
            on_top_zappers_changed=on_top_zappers_changed,
        )
        self._dedup = EventDeduplicator()
        self._manager = RelayConnectionManager(
            transport
            or NostrSdkTransport(
                self._config.relays.urls, connect_timeout=self._config.relays.connect_timeout
            ),
            config=self._config.reconnect,
            metrics_enabled=self._config.metrics.enabled,
            service_name=self.SERVICE_NAME,
        )
        self._verifier = AccountingVerifier(self._engine)

        self._owned_fetcher: RelayEventFetcher | None = None
        if fetcher is None and self._config.fetch_profiles:
            self._owned_fetcher = RelayEventFetcher(self._config.relays)
            fetcher = self._owned_fetcher
        self._profiles = (
            ProfileCache(fetcher, self._config.profiles)
            if fetcher is not None and self._config.fetch_profiles
            else None
        )

        self._on_chat_message = on_chat_message
        self._on_summary = on_summary
        self._on_subscription_failed = on_subscription_failed

        self._target: TargetRef | None = None
        self._activity: LiveActivity | None = None
        self._handles: dict[str, SubscriptionHandle] = {}
        self._chat: collections.deque[ChatMessage] = collections.deque(
            maxlen=self._config.chat_history
        )
        self._decode_failures = 0
        self._duplicates = 0
        self._pending_profiles: set[str] = set()
        self._requested_profiles: set[str] = set()
        self._profile_task: asyncio.Task[None] | None = None
        self._summary_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def engine(self) -> AggregationEngine:
        return self._engine

    @property
    def target(self) -> TargetRef | None:
        return self._target

    @property
    def activity(self) -> LiveActivity | None:
        """Newest kind 30311 metadata of a followed live event."""
        return self._activity

    @property
    def subscriptions(self) -> list[SubscriptionHandle]:
        return list(self._handles.values())

    @property
    def decode_failures(self) -> int:
        return self._decode_failures

    @property
    def duplicates(self) -> int:
        return self._duplicates

    def feed(self, limit: int | None = None) -> list[ZapReceipt]:
        """Receipts of the target, newest first."""
        if self._target is None:
            return []
        breakdown = self._engine.target_breakdown(self._target.target_id)
        if breakdown is None:
            return []
        receipts = sorted(breakdown.receipts, key=lambda r: r.timestamp, reverse=True)
        return receipts if limit is None else receipts[:limit]

    def chat_feed(self, limit: int | None = None) -> list[ChatMessage]:
        """Chat messages, newest first."""
        messages = sorted(self._chat, key=lambda m: m.timestamp, reverse=True)
        return messages if limit is None else messages[:limit]

    def top_zappers(self) -> list[ZapperAggregate]:
        return self._engine.top_zappers(self._config.top_n)

    def verify(self) -> VerificationReport:
        """Run the accounting check now."""
        report = self._verifier.verify_all()
        if not report.ok:
            self.inc_counter("accounting_mismatches", report.failed or 1)
        return report

    def summary(self) -> dict[str, Any]:
        """JSON-ready view of the current state."""
        return {
            "target_id": self._target.target_id if self._target else None,
            "reference": self._target.reference if self._target else None,
            "total_amount_msat": self._engine.grand_total(),
            "zap_count": self._engine.zap_count(),
            "unique_payers": self._engine.unique_payer_count(),
            "top_zappers": [z.to_dict() for z in self.top_zappers()],
            "activity": dataclasses.asdict(self._activity) if self._activity else None,
            "decode_failures": self._decode_failures,
            "subscriptions": {key: h.state.value for key, h in self._handles.items()},
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, reference: str | None = None) -> TargetRef:
        """Resolve the target and open its subscriptions.

        Subscriptions that already run are left alone; failed or closed
        ones are opened again.

        Raises:
            ConfigurationError: If no reference is given or configured.
            ReferenceResolutionError: If the reference cannot be resolved.
        """
        if self._target is None:
            raw = reference or self._config.target
            if not raw:
                raise ConfigurationError("live session has no target configured")
            self._target = parse_reference(raw)
            self._engine.track_target(self._target.target_id)
            self._logger = self._logger.bind(target=self._target.target_id)
        target = self._target

        zap_key = f"zaps:{target.target_id}"
        self._subscribe(zap_key, live_zap_filter(target).to_nostr_filter(), self._on_zap_event)

        if self._config.follow_chat and target.target_type is TargetType.ADDRESS:
            chat_key = f"chat:{target.target_id}"
            self._subscribe(
                chat_key, live_chat_filter(target).to_nostr_filter(), self._on_chat_event
            )

        if self._config.follow_activity and target.kind == EventKind.LIVE_EVENT:
            self._subscribe(
                f"activity:{target.target_id}",
                live_activity_filter(target).to_nostr_filter(),
                self._on_activity_event,
            )

        self._logger.info("session_started", subscriptions=len(self._handles))
        return target

    async def stop(self) -> None:
        """Unsubscribe everything and cancel background work."""
        for handle in list(self._handles.values()):
            await self._manager.unsubscribe(handle)
        for task in (self._profile_task, self._summary_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._profile_task = None
        self._summary_task = None
        if self._owned_fetcher is not None:
            await self._owned_fetcher.close()

    async def run(self) -> None:
        """Follow the target until shutdown or until every subscription failed.

        Accounting is verified every ``verify_interval`` seconds.

        Raises:
            SubscriptionFailedError: If every subscription exhausted its
                reconnects (``run_forever()`` will start them again after
                ``interval``).
        """
        await self.start()

        while self.is_running:
            if await self._wait_any_done(self._config.verify_interval):
                break
            self.verify()
            self.set_gauge("grand_total_msat", self._engine.grand_total())
            self.set_gauge("unique_payers", self._engine.unique_payer_count())

        self.verify()
        if self._handles and all(h.error is not None for h in self._handles.values()):
            raise SubscriptionFailedError(
                "every subscription failed",
                attempts=self._config.reconnect.max_attempts,
            )

    async def _wait_any_done(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Wait up to *timeout*; True on shutdown or when all subscriptions ended."""
        if await self.wait(timeout):
            return True
        return bool(self._handles) and all(h.is_done for h in self._handles.values())

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
        await super().__aexit__(exc_type, exc_val, exc_tb)

    # -------------------------------------------------------------------------
    # Event handling
    # -------------------------------------------------------------------------

    def _subscribe(
        self, key: str, subscription_filter: Any, on_event: Callable[[str, NostrEvent], None]
    ) -> None:
        existing = self._handles.get(key)
        if existing is not None and not existing.is_done:
            return
        self._handles[key] = self._manager.subscribe(
            key,
            subscription_filter,
            lambda relay_url, event: on_event(key, event),
            on_closed=self._handle_failed,
        )

    def _handle_failed(self, handle: SubscriptionHandle) -> None:
        self._logger.error(
            "live_subscription_failed",
            key=handle.key,
            error=str(handle.error),
        )
        if self._on_subscription_failed is not None:
            self._on_subscription_failed(handle)

    def _on_zap_event(self, stream_key: str, event: NostrEvent) -> None:
        self.inc_counter("events_received")
        eid = event_id(event)
        if self._dedup.seen(stream_key, eid):
            self._duplicates += 1
            self.inc_counter("duplicates_dropped")
            return

        assert self._target is not None  # noqa: S101
        try:
            receipt = decode_zap_receipt(event, target_id=self._target.target_id)
        except DecodeError as e:
            self._decode_failures += 1
            self.inc_counter("decode_failures")
            self._logger.warning("zap_decode_failed", event_id=eid, error=str(e))
            return

        if not self._engine.apply(receipt):
            return
        self._logger.debug(
            "zap_applied",
            event_id=eid,
            amount_msat=receipt.amount_msat,
            payer=receipt.payer_pubkey,
        )
        self._request_profile(receipt.payer_pubkey)
        self._schedule_summary()

    def _on_chat_event(self, stream_key: str, event: NostrEvent) -> None:
        self.inc_counter("events_received")
        eid = event_id(event)
        if self._dedup.seen(stream_key, eid):
            self._duplicates += 1
            self.inc_counter("duplicates_dropped")
            return

        try:
            message = parse_chat_message(event)
        except DecodeError as e:
            self._decode_failures += 1
            self.inc_counter("decode_failures")
            self._logger.warning("chat_decode_failed", event_id=eid, error=str(e))
            return

        self._chat.append(message)
        self._request_profile(message.author_pubkey)
        if self._on_chat_message is not None:
            try:
                self._on_chat_message(message)
            except Exception as e:  # Intentionally broad: listener code is caller code
                self._logger.error("chat_listener_failed", error=str(e))

    def _on_activity_event(self, stream_key: str, event: NostrEvent) -> None:
        self.inc_counter("events_received")
        eid = event_id(event)
        if self._dedup.seen(stream_key, eid):
            self._duplicates += 1
            self.inc_counter("duplicates_dropped")
            return

        try:
            activity = parse_live_activity(event)
        except DecodeError as e:
            self._decode_failures += 1
            self.inc_counter("decode_failures")
            self._logger.warning("activity_decode_failed", event_id=eid, error=str(e))
            return

        assert self._target is not None  # noqa: S101
        if activity.coordinate != self._target.target_id:
            return
        # replaceable: an older version delivered late must not win
        if self._activity is not None and activity.created_at < self._activity.created_at:
            return
        self._activity = activity
        self._logger.info("activity_updated", status=activity.status, title=activity.title)
        self._schedule_summary()

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _request_profile(self, pubkey: str) -> None:
        if self._profiles is None or pubkey == ANONYMOUS_PUBKEY:
            return
        if pubkey in self._requested_profiles:
            return
        self._requested_profiles.add(pubkey)
        self._pending_profiles.add(pubkey)
        if self._profile_task is None or self._profile_task.done():
            self._profile_task = asyncio.create_task(self._backfill_profiles())

    async def _backfill_profiles(self) -> None:
        assert self._profiles is not None  # noqa: S101
        await asyncio.sleep(_PROFILE_BATCH_DELAY)
        while self._pending_profiles:
            batch = list(self._pending_profiles)
            self._pending_profiles.clear()
            try:
                found = await self._profiles.ensure_profiles(batch)
            except _PROFILE_ERRORS as e:
                # allow a later event from the same pubkey to retry
                self._requested_profiles.difference_update(batch)
                self._logger.warning("profile_backfill_failed", pubkeys=len(batch), error=str(e))
                continue
            for pubkey, profile in found.items():
                self._engine.attach_profile(pubkey, profile)
            self._logger.debug("profiles_attached", requested=len(batch), found=len(found))

    def _schedule_summary(self) -> None:
        if self._on_summary is None:
            return
        delay = self._config.debounce_seconds
        if delay <= 0:
            self._emit_summary()
            return
        if self._summary_task is None or self._summary_task.done():
            self._summary_task = asyncio.create_task(self._debounced_summary(delay))

    async def _debounced_summary(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._emit_summary()

    def _emit_summary(self) -> None:
        assert self._on_summary is not None  # noqa: S101
        try:
            self._on_summary(self.summary())
        except Exception as e:  # Intentionally broad: listener code is caller code
            self._logger.error("summary_listener_failed", error=str(e))
