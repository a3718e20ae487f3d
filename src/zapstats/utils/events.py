"""Accessors over ``nostr_sdk.Event`` objects.

The decoders only need a handful of fields from an event. Reading them
through these helpers keeps the nostr-sdk call chains (``id().to_hex()``,
``tags().to_vec()``) in one place.
"""

from __future__ import annotations

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from nostr_sdk import Event as NostrEvent


def event_id(event: NostrEvent) -> str:
    return event.id().to_hex()


def event_author(event: NostrEvent) -> str:
    return event.author().to_hex()


def event_kind(event: NostrEvent) -> int:
    return event.kind().as_u16()


def event_created_at(event: NostrEvent) -> int:
    return event.created_at().as_secs()


def event_tags(event: NostrEvent) -> list[list[str]]:
    """Return every tag as a plain list of strings."""
    return [tag.as_vec() for tag in event.tags().to_vec()]


def tag_value(tags: list[list[str]], name: str) -> str | None:
    """Return the first value of the first tag called *name*, if any."""
    for tag in tags:
        if len(tag) >= 2 and tag[0] == name:  # noqa: PLR2004
            return tag[1]
    return None


def tag_values(tags: list[list[str]], name: str) -> list[str]:
    """Return the first value of every tag called *name*, in order."""
    return [tag[1] for tag in tags if len(tag) >= 2 and tag[0] == name]  # noqa: PLR2004


def has_tag(tags: list[list[str]], name: str) -> bool:
    return any(tag and tag[0] == name for tag in tags)
