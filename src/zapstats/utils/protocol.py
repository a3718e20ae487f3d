"""Nostr client construction and pooled connection.

Thin helpers over ``nostr_sdk.Client`` shared by the one-shot fetcher
([RelayEventFetcher][zapstats.services.common.fetcher.RelayEventFetcher])
and the live subscription transport
([NostrSdkTransport][zapstats.core.relays.NostrSdkTransport]).

Examples:
    ```python
    from zapstats.utils.protocol import connect_pool

    client = await connect_pool(["wss://nos.lol", "wss://relay.damus.io"], timeout=10.0)
    ```
"""

from __future__ import annotations

import contextlib
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from nostr_sdk import Client, ClientBuilder, RelayUrl


if TYPE_CHECKING:
    from collections.abc import Iterable


logger = logging.getLogger(__name__)


class PoolUnreachableError(OSError):
    """No relay of the pool completed the WebSocket handshake."""


def create_client() -> Client:
    """Create a read-only Nostr client (no signer: zapstats never publishes)."""
    return ClientBuilder().build()


async def connect_pool(
    relay_urls: Iterable[str],
    *,
    timeout: float,  # noqa: ASYNC109
) -> Client:
    """Create a client, add every relay and wait for the handshakes.

    Relays that fail to connect are logged at DEBUG and skipped; the client
    keeps trying them in the background.

    Args:
        relay_urls: WebSocket URLs of the pool.
        timeout: Connection timeout in seconds.

    Returns:
        A connected client. The caller owns it and must ``shutdown()`` it
        (see [shutdown_client][zapstats.utils.protocol.shutdown_client]).

    Raises:
        PoolUnreachableError: If no relay connected within ``timeout``.
    """
    client = create_client()
    for url in relay_urls:
        await client.add_relay(RelayUrl.parse(url))

    output = await client.try_connect(timedelta(seconds=timeout))
    for relay_url, reason in output.failed.items():
        logger.debug("relay_connect_failed relay=%s reason=%s", relay_url, reason)

    if not output.success:
        await shutdown_client(client)
        raise PoolUnreachableError("no relay in the pool accepted a connection")

    logger.debug("pool_connected connected=%s failed=%s", len(output.success), len(output.failed))
    return client


async def shutdown_client(client: Client) -> None:
    """Shut a client down, ignoring errors from the FFI layer."""
    # nostr-sdk client.shutdown() can raise arbitrary errors from the
    # Rust FFI layer during cleanup.
    with contextlib.suppress(Exception):
        await client.shutdown()
