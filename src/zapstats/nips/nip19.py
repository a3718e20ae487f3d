"""
NIP-19 target reference resolution.

Users identify zap targets in several equivalent encodings. All of them are
reduced to one canonical id so that receipts fetched by ``#e``/``#a`` tag
can be matched back to the reference that asked for them:

| Reference                          | Canonical id                 |
|------------------------------------|------------------------------|
| 64-char hex event id               | lowercase hex                |
| ``note1...``                       | hex event id                 |
| ``nevent1...``                     | hex event id (+ relay hints) |
| ``naddr1...``                      | ``kind:pubkey:d``            |
| ``kind:pubkey:d``                  | normalized ``kind:pubkey:d`` |

Any of them may carry a ``nostr:`` URI prefix.
"""

from __future__ import annotations

from nostr_sdk import EventId, Nip19Coordinate, Nip19Event, NostrSdkError, PublicKey

from zapstats.core.exceptions import ReferenceResolutionError
from zapstats.models._validation import is_hex64
from zapstats.models.constants import EVENT_KIND_MAX, TargetType
from zapstats.models.target import TargetRef


_URI_PREFIX = "nostr:"


def _address_target(kind: int, pubkey: str, identifier: str, reference: str) -> TargetRef:
    if not 0 <= kind <= EVENT_KIND_MAX:
        raise ReferenceResolutionError(reference, f"kind {kind} out of range")
    return TargetRef(
        target_id=f"{kind}:{pubkey}:{identifier}",
        reference=reference,
        target_type=TargetType.ADDRESS,
    )


def _parse_coordinate_string(raw: str, reference: str) -> TargetRef:
    kind_str, pubkey, identifier = raw.split(":", 2)
    if not kind_str.isdigit():
        raise ReferenceResolutionError(reference, "coordinate kind is not a number")
    return _address_target(int(kind_str), PublicKey.parse(pubkey).to_hex(), identifier, reference)


def parse_reference(reference: str) -> TargetRef:
    """Resolve a reference into a [TargetRef][zapstats.models.target.TargetRef].

    Raises:
        ReferenceResolutionError: If the reference is empty, in an unknown
            encoding, or fails to decode.
    """
    raw = reference.strip()
    if raw.lower().startswith(_URI_PREFIX):
        raw = raw[len(_URI_PREFIX) :]
    if not raw:
        raise ReferenceResolutionError(reference, "empty reference")

    try:
        if is_hex64(raw.lower()):
            return TargetRef(raw.lower(), reference, TargetType.EVENT)

        if raw.startswith("note1"):
            return TargetRef(EventId.parse(raw).to_hex(), reference, TargetType.EVENT)

        if raw.startswith("nevent1"):
            nevent = Nip19Event.from_bech32(raw)
            return TargetRef(
                nevent.event_id().to_hex(),
                reference,
                TargetType.EVENT,
                relays=tuple(str(r) for r in nevent.relays()),
            )

        if raw.startswith("naddr1"):
            coordinate = Nip19Coordinate.from_bech32(raw).coordinate()
            return _address_target(
                coordinate.kind().as_u16(),
                coordinate.public_key().to_hex(),
                coordinate.identifier(),
                reference,
            )

        if raw.count(":") >= 2:  # noqa: PLR2004
            return _parse_coordinate_string(raw, reference)

    except ReferenceResolutionError:
        raise
    except (NostrSdkError, ValueError, TypeError) as e:
        raise ReferenceResolutionError(reference, f"invalid encoding ({e})") from e

    raise ReferenceResolutionError(reference)


def resolve_reference(reference: str) -> str | None:
    """Return the canonical id for *reference*, or ``None`` if it cannot be resolved."""
    try:
        return parse_reference(reference).target_id
    except ReferenceResolutionError:
        return None
