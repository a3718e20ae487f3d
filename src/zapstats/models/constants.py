"""Shared constants for the models layer.

Enumerations and sentinels used by models, decoders and services alike.
Keeping them here avoids import cycles between ``models`` and ``nips``.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ServiceName(StrEnum):
    """Service identifiers used in logging and the ``service`` metrics label.

    Attributes:
        LIVE: Real-time ingestion for one live event or note
            ([LiveSession][zapstats.services.live.LiveSession]).
        STATS: Historical aggregation across many targets
            ([StatsService][zapstats.services.stats.StatsService]).
    """

    LIVE = "live"
    STATS = "stats"


class EventKind(IntEnum):
    """Nostr event kinds consumed by zapstats.

    Attributes:
        METADATA: Kind 0 -- profile metadata (NIP-01).
        TEXT_NOTE: Kind 1 -- short text note, a zappable target (NIP-01).
        LIVE_CHAT: Kind 1311 -- live activity chat message (NIP-53).
        ZAP_REQUEST: Kind 9734 -- zap request embedded in receipts (NIP-57).
        ZAP_RECEIPT: Kind 9735 -- zap receipt published by the LNURL server (NIP-57).
        LIVE_EVENT: Kind 30311 -- addressable live activity (NIP-53).
    """

    METADATA = 0
    TEXT_NOTE = 1
    LIVE_CHAT = 1311
    ZAP_REQUEST = 9734
    ZAP_RECEIPT = 9735
    LIVE_EVENT = 30_311


class TargetType(StrEnum):
    """How a target is addressed: by event id or by ``kind:pubkey:d`` coordinate."""

    EVENT = "event"
    ADDRESS = "address"


ANONYMOUS_PUBKEY = "anonymous"
"""Payer identity used when a zap request has no usable signer or is marked ``anon``."""

MSATS_PER_SAT = 1000

EVENT_KIND_MAX = 65_535
