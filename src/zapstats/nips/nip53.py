"""
NIP-53 live activities: the live event itself (kind 30311) and its chat (kind 1311).

Chat messages and zap receipts for a live event reference it through an
``a`` tag holding its coordinate, ``30311:<host pubkey>:<d identifier>``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from zapstats.core.exceptions import DecodeError
from zapstats.models.chat import ChatMessage
from zapstats.models.constants import EventKind
from zapstats.utils.events import (
    event_author,
    event_created_at,
    event_id,
    event_kind,
    event_tags,
    tag_value,
)


if TYPE_CHECKING:
    from nostr_sdk import Event as NostrEvent


@dataclass(frozen=True, slots=True)
class LiveActivity:
    """Display fields of a kind 30311 live event."""

    coordinate: str
    host_pubkey: str
    title: str = ""
    summary: str = ""
    status: str = ""
    streaming_url: str = ""
    created_at: int = 0


def live_event_coordinate(pubkey: str, identifier: str) -> str:
    return f"{int(EventKind.LIVE_EVENT)}:{pubkey}:{identifier}"


def parse_live_activity(event: NostrEvent) -> LiveActivity:
    """Parse a kind 30311 event.

    Raises:
        DecodeError: If the event is not kind 30311 or lacks a ``d`` tag.
    """
    eid = event_id(event)
    kind = event_kind(event)
    if kind != EventKind.LIVE_EVENT:
        raise DecodeError(f"expected kind {EventKind.LIVE_EVENT}, got {kind}", event_id=eid)

    tags = event_tags(event)
    identifier = tag_value(tags, "d")
    if identifier is None:
        raise DecodeError("live event has no d tag", event_id=eid)

    host = event_author(event)
    return LiveActivity(
        coordinate=live_event_coordinate(host, identifier),
        host_pubkey=host,
        title=tag_value(tags, "title") or "",
        summary=tag_value(tags, "summary") or "",
        status=tag_value(tags, "status") or "",
        streaming_url=tag_value(tags, "streaming") or "",
        created_at=event_created_at(event),
    )


def parse_chat_message(event: NostrEvent) -> ChatMessage:
    """Parse a kind 1311 chat event.

    Raises:
        DecodeError: If the event is not kind 1311.
    """
    eid = event_id(event)
    kind = event_kind(event)
    if kind != EventKind.LIVE_CHAT:
        raise DecodeError(f"expected kind {EventKind.LIVE_CHAT}, got {kind}", event_id=eid)

    try:
        return ChatMessage(
            id=eid,
            author_pubkey=event_author(event),
            content=event.content(),
            timestamp=event_created_at(event),
            target_id=tag_value(event_tags(event), "a") or "",
        )
    except (TypeError, ValueError) as e:
        raise DecodeError(f"malformed chat message: {e}", event_id=eid) from e
