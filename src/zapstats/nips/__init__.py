"""Nostr Implementation Possibilities -- protocol-specific parsing.

Pure functions that turn raw ``nostr_sdk.Event`` objects and user-supplied
references into [zapstats.models][zapstats.models] instances. Nothing in
this layer performs network I/O.

Attributes:
    nip01: Profile metadata (kind 0).
    nip19: Reference resolution (hex, note, nevent, naddr, coordinates).
    nip53: Live activities (kind 30311) and live chat (kind 1311).
    nip57: Zap receipt decoding (kind 9735 with embedded kind 9734 request).

Warning:
    Parsers raise [DecodeError][zapstats.core.exceptions.DecodeError] (or
    [ReferenceResolutionError][zapstats.core.exceptions.ReferenceResolutionError]
    for references). Both are local to one input: callers skip it and go on.
"""

from .nip01 import newest_profiles, parse_profile
from .nip19 import parse_reference, resolve_reference
from .nip53 import LiveActivity, live_event_coordinate, parse_chat_message, parse_live_activity
from .nip57 import ZapRequest, decode_invoice_amount, decode_zap_receipt


__all__ = [
    "LiveActivity",
    "ZapRequest",
    "decode_invoice_amount",
    "decode_zap_receipt",
    "live_event_coordinate",
    "newest_profiles",
    "parse_chat_message",
    "parse_live_activity",
    "parse_profile",
    "parse_reference",
    "resolve_reference",
]
