"""
Relay subscription lifecycle with bounded automatic reconnect.

Each logical subscription is an explicit state machine driven by a single
``asyncio.Task``:

```text
CONNECTING ──> ACTIVE ──(closed)──> RECONNECTING(attempt) ──> ACTIVE ...
                                         │
                                         └──(attempt > max_attempts)──> FAILED
any state ──(unsubscribe)──> CLOSED
```

After the n-th consecutive closure the loop waits ``n * base_delay`` seconds
before re-subscribing (5 s, 10 s, 15 s with the defaults). The counter is kept
per subscription and resets whenever an event is delivered. Exhausting
``max_attempts`` stops only that subscription; the process carries on.

The network side is a [RelayTransport][zapstats.core.relays.RelayTransport].
[NostrSdkTransport][zapstats.core.relays.NostrSdkTransport] talks to a relay
pool through ``nostr_sdk.Client``; tests plug in an in-memory transport.

Examples:
    ```python
    manager = RelayConnectionManager(NostrSdkTransport(relay_urls))
    handle = manager.subscribe("zaps:30311:ab..:live", zap_filter, on_event)
    ...
    await manager.unsubscribe(handle)
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from collections.abc import AsyncIterator, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from nostr_sdk import HandleNotification, NostrSdkError
from pydantic import BaseModel, Field

from zapstats.utils.protocol import PoolUnreachableError, connect_pool, shutdown_client

from .exceptions import NoRelaysReachableError, RelayConnectionError, SubscriptionFailedError
from .logger import Logger
from .metrics import SERVICE_COUNTER, SUBSCRIPTION_STATE


if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from nostr_sdk import Event, Filter, RelayMessage


# Errors from opening or reading a stream that count as a closure.
_CLOSURE_ERRORS = (RelayConnectionError, NostrSdkError, OSError, TimeoutError)


# ---------------------------------------------------------------------------
# Configuration and state
# ---------------------------------------------------------------------------


class ReconnectConfig(BaseModel):
    """Reconnect policy applied to every subscription of a manager."""

    max_attempts: int = Field(
        default=3,
        ge=0,
        description="Automatic reconnect attempts before a subscription fails",
    )
    base_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds; the n-th consecutive reconnect waits n * base_delay",
    )


class SubscriptionState(StrEnum):
    """Lifecycle state of one logical subscription."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({SubscriptionState.FAILED, SubscriptionState.CLOSED})


EventCallback = Callable[[str, "Event"], None]
ClosedCallback = Callable[["SubscriptionHandle"], None]
StateCallback = Callable[["SubscriptionHandle", SubscriptionState], None]


@dataclasses.dataclass(eq=False)
class SubscriptionHandle:
    """Caller-facing view of one subscription.

    Attributes:
        key: Caller-chosen name (e.g. ``"zaps:<target_id>"``), used in logs
            and metric labels.
        subscription_filter: Filter handed to the transport on every (re)open.
        state: Current [SubscriptionState][zapstats.core.relays.SubscriptionState].
        attempts: Consecutive closures since the last delivered event.
        reconnect_delays: Back-off delays actually scheduled, in order.
        events_received: Raw deliveries (duplicates across relays included).
        error: [SubscriptionFailedError][zapstats.core.exceptions.SubscriptionFailedError]
            once the subscription has failed.
    """

    key: str
    subscription_filter: Any
    state: SubscriptionState = SubscriptionState.CONNECTING
    attempts: int = 0
    reconnect_delays: list[float] = dataclasses.field(default_factory=list)
    events_received: int = 0
    error: SubscriptionFailedError | None = None
    _cancel: asyncio.Event = dataclasses.field(default_factory=asyncio.Event, repr=False)
    _task: asyncio.Task[None] | None = dataclasses.field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state is SubscriptionState.ACTIVE

    @property
    def is_done(self) -> bool:
        return self.state in TERMINAL_STATES

    async def wait_closed(self) -> None:
        """Wait until the reconnect loop has exited (failed or unsubscribed)."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(self._task)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class RelayTransport(Protocol):
    """Opens one subscription against a relay pool.

    Entering the context means the subscription is live. The yielded iterator
    produces ``(relay_url, event)`` pairs and ends, or raises
    [RelayConnectionError][zapstats.core.exceptions.RelayConnectionError] /
    ``OSError`` / ``TimeoutError``, when the pool closes the subscription.
    Leaving the context releases the connection.
    """

    def open(
        self, subscription_filter: Any
    ) -> AbstractAsyncContextManager[AsyncIterator[tuple[str, Event]]]: ...


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class RelayConnectionManager:
    """Own logical subscriptions and keep them alive within the configured retry limit.

    Args:
        transport: Network side, see
            [RelayTransport][zapstats.core.relays.RelayTransport].
        config: Reconnect policy.
        metrics_enabled: Record subscription state and reconnect counters.
        service_name: Label used for the reconnect counters.
    """

    def __init__(
        self,
        transport: RelayTransport,
        *,
        config: ReconnectConfig | None = None,
        metrics_enabled: bool = False,
        service_name: str = "live",
    ) -> None:
        self._transport = transport
        self._config = config or ReconnectConfig()
        self._metrics_enabled = metrics_enabled
        self._service_name = service_name
        self._logger = Logger("relays")
        self._handles: dict[str, SubscriptionHandle] = {}

    @property
    def config(self) -> ReconnectConfig:
        return self._config

    @property
    def handles(self) -> list[SubscriptionHandle]:
        return list(self._handles.values())

    def subscribe(
        self,
        key: str,
        subscription_filter: Any,
        on_event: EventCallback,
        *,
        on_closed: ClosedCallback | None = None,
        on_state_change: StateCallback | None = None,
    ) -> SubscriptionHandle:
        """Start a subscription and return its handle immediately.

        ``on_event(relay_url, event)`` is called for every delivery from every
        relay; duplicates are the caller's concern. ``on_closed(handle)`` is
        called once if the subscription permanently fails.

        Raises:
            ValueError: If a live subscription with the same key exists.
        """
        existing = self._handles.get(key)
        if existing is not None and not existing.is_done:
            raise ValueError(f"subscription {key!r} already exists")

        handle = SubscriptionHandle(key=key, subscription_filter=subscription_filter)
        self._handles[key] = handle
        self._record_state(handle)
        handle._task = asyncio.create_task(
            self._run(handle, on_event, on_closed, on_state_change),
            name=f"subscription:{key}",
        )
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop delivery and every future reconnect of ``handle``."""
        handle._cancel.set()
        task = handle._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if handle.state is not SubscriptionState.FAILED:
            self._set_state(handle, SubscriptionState.CLOSED, None)
        self._handles.pop(handle.key, None)
        self._logger.debug("subscription_closed", key=handle.key)

    async def close(self) -> None:
        """Unsubscribe everything."""
        for handle in list(self._handles.values()):
            await self.unsubscribe(handle)

    # -------------------------------------------------------------------------
    # Reconnect loop
    # -------------------------------------------------------------------------

    async def _run(
        self,
        handle: SubscriptionHandle,
        on_event: EventCallback,
        on_closed: ClosedCallback | None,
        on_state_change: StateCallback | None,
    ) -> None:
        max_attempts = self._config.max_attempts
        base_delay = self._config.base_delay

        while not handle._cancel.is_set():
            reason = "stream ended"
            try:
                async with self._transport.open(handle.subscription_filter) as stream:
                    self._set_state(handle, SubscriptionState.ACTIVE, on_state_change)
                    self._logger.info("subscription_active", key=handle.key)
                    async for relay_url, event in stream:
                        handle.attempts = 0
                        handle.events_received += 1
                        self._deliver(handle, on_event, relay_url, event)
            except _CLOSURE_ERRORS as e:
                reason = str(e) or type(e).__name__

            if handle._cancel.is_set():
                return

            handle.attempts += 1
            if handle.attempts > max_attempts:
                handle.error = SubscriptionFailedError(
                    f"subscription {handle.key!r} closed after {max_attempts} reconnect attempts",
                    attempts=max_attempts,
                )
                self._set_state(handle, SubscriptionState.FAILED, on_state_change)
                self._inc("subscriptions_failed")
                self._logger.error(
                    "subscription_failed",
                    key=handle.key,
                    attempts=max_attempts,
                    reason=reason,
                )
                if on_closed is not None:
                    try:
                        on_closed(handle)
                    except Exception as e:  # Intentionally broad: caller callback
                        self._logger.error("on_closed_callback_failed", key=handle.key, error=str(e))
                return

            delay = handle.attempts * base_delay
            handle.reconnect_delays.append(delay)
            self._set_state(handle, SubscriptionState.RECONNECTING, on_state_change)
            self._inc("reconnect_attempts")
            self._logger.warning(
                "subscription_reconnecting",
                key=handle.key,
                attempt=handle.attempts,
                delay_s=delay,
                reason=reason,
            )
            try:
                await asyncio.wait_for(handle._cancel.wait(), timeout=delay)
            except TimeoutError:
                continue

    def _deliver(
        self,
        handle: SubscriptionHandle,
        on_event: EventCallback,
        relay_url: str,
        event: Event,
    ) -> None:
        try:
            on_event(relay_url, event)
        except Exception as e:  # Intentionally broad: a bad event must not kill the stream
            self._logger.error(
                "on_event_callback_failed",
                key=handle.key,
                relay=relay_url,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _set_state(
        self,
        handle: SubscriptionHandle,
        state: SubscriptionState,
        on_state_change: StateCallback | None,
    ) -> None:
        if handle.state is state:
            return
        handle.state = state
        self._record_state(handle)
        if on_state_change is not None:
            try:
                on_state_change(handle, state)
            except Exception as e:  # Intentionally broad: caller callback
                self._logger.error("on_state_change_callback_failed", key=handle.key, error=str(e))

    def _record_state(self, handle: SubscriptionHandle) -> None:
        if not self._metrics_enabled:
            return
        for state in SubscriptionState:
            SUBSCRIPTION_STATE.labels(subscription=handle.key, state=state.value).set(
                1 if state is handle.state else 0
            )

    def _inc(self, name: str) -> None:
        if self._metrics_enabled:
            SERVICE_COUNTER.labels(service=self._service_name, name=name).inc()


# ---------------------------------------------------------------------------
# nostr-sdk transport
# ---------------------------------------------------------------------------


_CLOSED = object()


class _QueueBridge(HandleNotification):
    """Forward nostr-sdk notifications for one subscription into an asyncio queue.

    nostr-sdk invokes the handler from its own runtime; items are handed to
    the owning loop with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[Any],
        subscription_id: str,
        relay_count: int,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._queue = queue
        self._subscription_id = subscription_id
        self._open_relays = relay_count

    async def handle(self, relay_url: Any, subscription_id: str, event: Event) -> bool:
        if subscription_id == self._subscription_id:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, (str(relay_url), event))
        return False

    async def handle_msg(self, relay_url: Any, msg: RelayMessage) -> bool:
        # ["CLOSED", <sub_id>, <reason>] is sent once per relay
        if msg.as_json().startswith('["CLOSED"'):
            self._open_relays -= 1
            if self._open_relays <= 0:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
                return True
        return False


class NostrSdkTransport:
    """[RelayTransport][zapstats.core.relays.RelayTransport] over ``nostr_sdk.Client``.

    Each ``open()`` connects a fresh client to the pool, subscribes, and
    tears the client down on exit. The subscription is reported closed when
    every relay sent ``CLOSED`` or the notification loop ended.

    Args:
        relay_urls: WebSocket URLs of the pool.
        connect_timeout: Seconds to wait for the handshakes.
    """

    def __init__(self, relay_urls: list[str], *, connect_timeout: float = 10.0) -> None:
        if not relay_urls:
            raise ValueError("at least one relay URL is required")
        self._relay_urls = list(relay_urls)
        self._connect_timeout = connect_timeout

    @contextlib.asynccontextmanager
    async def open(self, subscription_filter: Filter) -> AsyncIterator[AsyncIterator[tuple[str, Event]]]:
        try:
            client = await connect_pool(self._relay_urls, timeout=self._connect_timeout)
        except PoolUnreachableError as e:
            raise NoRelaysReachableError(str(e)) from e
        except NostrSdkError as e:
            raise RelayConnectionError(f"relay pool setup failed: {e}") from e

        notifications: asyncio.Task[None] | None = None
        try:
            try:
                output = await client.subscribe(subscription_filter)
            except NostrSdkError as e:
                raise RelayConnectionError(f"subscription request failed: {e}") from e
            if not output.success:
                raise NoRelaysReachableError("no relay accepted the subscription")

            queue: asyncio.Queue[Any] = asyncio.Queue()
            bridge = _QueueBridge(
                asyncio.get_running_loop(), queue, output.id, len(output.success)
            )
            notifications = asyncio.create_task(client.handle_notifications(bridge))
            notifications.add_done_callback(lambda _t: queue.put_nowait(_CLOSED))
            yield self._drain(queue)
        finally:
            if notifications is not None and not notifications.done():
                notifications.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await notifications
            await shutdown_client(client)

    @staticmethod
    async def _drain(queue: asyncio.Queue[Any]) -> AsyncIterator[tuple[str, Event]]:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            yield item


