"""Event accessors, tolerant parsing and nostr-sdk client helpers.

Attributes:
    events: Field and tag accessors over ``nostr_sdk.Event``.
    parsing: Bulk event parsing that skips and counts malformed events.
    protocol: Read-only client construction and pooled connection.

Note:
    The utils layer has no imports from ``zapstats.core`` or
    ``zapstats.services``.
"""
