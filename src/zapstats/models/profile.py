"""
Profile metadata parsed from kind 0 events.

Profiles are optional decoration: aggregates are keyed by pubkey and a
missing profile only changes how a payer is labelled, never the totals.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ._validation import validate_non_negative_int, validate_str_not_empty
from .constants import ANONYMOUS_PUBKEY


_SHORT_PUBKEY_LENGTH = 8


def short_pubkey(pubkey: str) -> str:
    """Abbreviate a pubkey for display (``"3bf0c63f..."``)."""
    if pubkey == ANONYMOUS_PUBKEY:
        return "Anonymous"
    return pubkey[:_SHORT_PUBKEY_LENGTH] + "..."


def _opt_str(data: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True, slots=True)
class ProfileMetadata:
    """Display metadata for one pubkey.

    Attributes:
        pubkey: Hex pubkey the profile belongs to.
        name: ``name`` field.
        display_name: ``display_name`` (or legacy ``displayName``) field.
        picture: Avatar URL.
        nip05: NIP-05 identifier.
        lud16: Lightning address.
        created_at: ``created_at`` of the kind 0 event; newer wins.
    """

    pubkey: str
    name: str | None = None
    display_name: str | None = None
    picture: str | None = None
    nip05: str | None = None
    lud16: str | None = None
    created_at: int = 0

    def __post_init__(self) -> None:
        validate_str_not_empty(self.pubkey, "pubkey")
        validate_non_negative_int(self.created_at, "created_at")

    @classmethod
    def from_content(cls, pubkey: str, content: str, created_at: int = 0) -> ProfileMetadata:
        """Build a profile from the JSON content of a kind 0 event.

        Raises:
            ValueError: If ``content`` is not a JSON object.
        """
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"profile content must be a JSON object, got {type(data).__name__}")
        return cls(
            pubkey=pubkey,
            name=_opt_str(data, "name"),
            display_name=_opt_str(data, "display_name", "displayName"),
            picture=_opt_str(data, "picture"),
            nip05=_opt_str(data, "nip05"),
            lud16=_opt_str(data, "lud16"),
            created_at=created_at,
        )

    @property
    def display_label(self) -> str:
        """Best human label: display name, then name, then a short pubkey."""
        return self.display_name or self.name or short_pubkey(self.pubkey)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "name": self.name,
            "display_name": self.display_name,
            "picture": self.picture,
            "nip05": self.nip05,
            "lud16": self.lud16,
        }
