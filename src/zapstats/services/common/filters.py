"""Relay filters.

[SubscriptionFilter][zapstats.services.common.filters.SubscriptionFilter] is a
validated, comparable description of a REQ filter; ``to_nostr_filter()``
turns it into a ``nostr_sdk.Filter`` right before it goes on the wire. The
builders below produce the filters zapstats actually uses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nostr_sdk import Alphabet, EventId, Filter, Kind, PublicKey, SingleLetterTag, Timestamp
from pydantic import BaseModel, ConfigDict, Field, field_validator

from zapstats.models._validation import is_hex64
from zapstats.models.constants import EVENT_KIND_MAX, EventKind, TargetType


if TYPE_CHECKING:
    from collections.abc import Iterable

    from zapstats.models.target import TargetRef


logger = logging.getLogger(__name__)


class SubscriptionFilter(BaseModel):
    """Event selection sent to relays.

    ``tags`` maps a single-letter tag name to accepted values, e.g.
    ``{"a": ["30311:ab..:live"]}`` for receipts of a live event.
    """

    model_config = ConfigDict(frozen=True)

    kinds: list[int] | None = Field(default=None, description="Event kinds (None = all)")
    authors: list[str] | None = Field(default=None, description="Hex pubkeys (None = all)")
    ids: list[str] | None = Field(default=None, description="Hex event ids (None = all)")
    tags: dict[str, list[str]] | None = Field(default=None, description="Tag filters")
    since: int | None = Field(default=None, ge=0)
    until: int | None = Field(default=None, ge=0)
    limit: int | None = Field(default=None, ge=1)

    @field_validator("kinds", mode="after")
    @classmethod
    def validate_kinds(cls, v: list[int] | None) -> list[int] | None:
        """Validate that all event kinds are within the valid range (0-65535)."""
        if v is None:
            return v
        for kind in v:
            if not 0 <= kind <= EVENT_KIND_MAX:
                raise ValueError(f"Event kind {kind} out of valid range (0-{EVENT_KIND_MAX})")
        return v

    @field_validator("ids", "authors", mode="after")
    @classmethod
    def validate_hex_strings(cls, v: list[str] | None) -> list[str] | None:
        """Validate that all entries are 64-character hex strings."""
        if v is None:
            return v
        for hex_str in v:
            if not is_hex64(hex_str):
                raise ValueError(f"Invalid hex string: {hex_str!r}")
        return v

    @field_validator("tags", mode="after")
    @classmethod
    def validate_tags(cls, v: dict[str, list[str]] | None) -> dict[str, list[str]] | None:
        """Only single-letter tags can be filtered on."""
        if v is None:
            return v
        for name in v:
            if len(name) != 1 or not name.isalpha():
                raise ValueError(f"tag filter must be a single letter: {name!r}")
        return v

    def to_nostr_filter(self) -> Filter:
        """Build the ``nostr_sdk.Filter``."""
        f = Filter()
        if self.kinds:
            f = f.kinds([Kind(k) for k in self.kinds])
        if self.authors:
            f = f.authors([PublicKey.parse(a) for a in self.authors])
        if self.ids:
            f = f.ids([EventId.parse(i) for i in self.ids])
        if self.since is not None:
            f = f.since(Timestamp.from_secs(self.since))
        if self.until is not None:
            f = f.until(Timestamp.from_secs(self.until))
        if self.limit is not None:
            f = f.limit(self.limit)

        # Tag filters: {"tag_letter": ["value1", "value2"], ...}
        for tag_letter, values in (self.tags or {}).items():
            if not values:
                continue
            alphabet = getattr(Alphabet, tag_letter.upper())
            tag = (
                SingleLetterTag.lowercase(alphabet)
                if tag_letter.islower()
                else SingleLetterTag.uppercase(alphabet)
            )
            for value in values:
                f = f.custom_tag(tag, value)
        return f


# =============================================================================
# Builders
# =============================================================================


def _split_targets(targets: Iterable[TargetRef]) -> tuple[list[str], list[str]]:
    event_ids: list[str] = []
    coordinates: list[str] = []
    for target in targets:
        bucket = event_ids if target.target_type is TargetType.EVENT else coordinates
        if target.target_id not in bucket:
            bucket.append(target.target_id)
    return event_ids, coordinates


def zap_receipt_filters(targets: Iterable[TargetRef]) -> list[SubscriptionFilter]:
    """Receipt filters for the targets: one ``#e`` and/or one ``#a`` filter.

    Relays AND the tag conditions of a single filter, so event ids and
    coordinates need separate filters.
    """
    event_ids, coordinates = _split_targets(targets)
    filters: list[SubscriptionFilter] = []
    if event_ids:
        filters.append(
            SubscriptionFilter(kinds=[EventKind.ZAP_RECEIPT], tags={"e": event_ids})
        )
    if coordinates:
        filters.append(
            SubscriptionFilter(kinds=[EventKind.ZAP_RECEIPT], tags={"a": coordinates})
        )
    return filters


def live_zap_filter(target: TargetRef) -> SubscriptionFilter:
    """Receipts of one target, for a long-lived subscription."""
    return SubscriptionFilter(
        kinds=[EventKind.ZAP_RECEIPT], tags={target.tag_name: [target.target_id]}
    )


def live_chat_filter(target: TargetRef) -> SubscriptionFilter:
    """Kind 1311 chat tagged with the live event coordinate."""
    return SubscriptionFilter(kinds=[EventKind.LIVE_CHAT], tags={"a": [target.target_id]})


def live_activity_filter(target: TargetRef) -> SubscriptionFilter:
    """The kind 30311 live event behind a coordinate; hosts replace it as the stream changes.

    Raises:
        ValueError: If *target* is not an address.
    """
    author, identifier = target.author, target.identifier
    if author is None or identifier is None:
        raise ValueError(f"not an address target: {target.target_id!r}")
    return SubscriptionFilter(kinds=[EventKind.LIVE_EVENT], authors=[author], tags={"d": [identifier]})


def target_event_filters(targets: Iterable[TargetRef]) -> list[SubscriptionFilter]:
    """Filters fetching the target events themselves.

    Event targets are fetched by id in one filter; each coordinate needs its
    own ``kind``/``author``/``#d`` filter.
    """
    event_ids: list[str] = []
    filters: list[SubscriptionFilter] = []
    for target in targets:
        if target.target_type is TargetType.EVENT:
            if target.target_id not in event_ids:
                event_ids.append(target.target_id)
            continue
        kind, author, identifier = target.kind, target.author, target.identifier
        if kind is None or author is None or identifier is None:
            logger.debug("target_filter_skipped target=%s", target.target_id)
            continue
        filters.append(
            SubscriptionFilter(kinds=[kind], authors=[author], tags={"d": [identifier]}, limit=1)
        )
    if event_ids:
        filters.insert(0, SubscriptionFilter(ids=event_ids, limit=len(event_ids)))
    return filters


def profile_filter(pubkeys: Iterable[str]) -> SubscriptionFilter:
    """Kind 0 metadata for the given authors."""
    authors = sorted(set(pubkeys))
    return SubscriptionFilter(kinds=[EventKind.METADATA], authors=authors)
