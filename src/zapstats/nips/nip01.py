"""NIP-01 profile metadata (kind 0)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from zapstats.core.exceptions import DecodeError
from zapstats.models.constants import EventKind
from zapstats.models.profile import ProfileMetadata
from zapstats.utils.events import event_author, event_created_at, event_id, event_kind


if TYPE_CHECKING:
    from collections.abc import Iterable

    from nostr_sdk import Event as NostrEvent


def parse_profile(event: NostrEvent) -> ProfileMetadata:
    """Parse a kind 0 event into [ProfileMetadata][zapstats.models.profile.ProfileMetadata].

    Raises:
        DecodeError: If the event is not kind 0 or its content is not a JSON object.
    """
    kind = event_kind(event)
    if kind != EventKind.METADATA:
        raise DecodeError(f"expected kind {EventKind.METADATA}, got {kind}", event_id=event_id(event))
    try:
        return ProfileMetadata.from_content(
            event_author(event), event.content(), event_created_at(event)
        )
    except ValueError as e:
        raise DecodeError(f"malformed profile content: {e}", event_id=event_id(event)) from e


def newest_profiles(profiles: Iterable[ProfileMetadata]) -> dict[str, ProfileMetadata]:
    """Keep only the most recent profile per pubkey (kind 0 is replaceable)."""
    newest: dict[str, ProfileMetadata] = {}
    for profile in profiles:
        current = newest.get(profile.pubkey)
        if current is None or profile.created_at > current.created_at:
            newest[profile.pubkey] = profile
    return newest
