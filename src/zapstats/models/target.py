"""Resolved target references."""

from __future__ import annotations

from dataclasses import dataclass

from ._validation import is_hex64, validate_str_not_empty
from .constants import TargetType


@dataclass(frozen=True, slots=True)
class TargetRef:
    """A zappable entity resolved from a user-supplied reference.

    Attributes:
        target_id: Canonical id: 64-hex event id, or ``kind:pubkey:d``
            coordinate for addressable events.
        reference: The reference exactly as supplied (``note1...``, ``naddr1...``).
        target_type: Whether ``target_id`` is an event id or a coordinate.
        relays: Relay hints carried by ``nevent``/``naddr`` encodings.
    """

    target_id: str
    reference: str
    target_type: TargetType
    relays: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        validate_str_not_empty(self.target_id, "target_id")
        if self.target_type is TargetType.EVENT and not is_hex64(self.target_id):
            raise ValueError(f"event target_id must be 64 hex chars: {self.target_id!r}")
        if self.target_type is TargetType.ADDRESS and self.target_id.count(":") < 2:  # noqa: PLR2004
            raise ValueError(f"address target_id must be kind:pubkey:d: {self.target_id!r}")

    @property
    def tag_name(self) -> str:
        """Tag letter under which receipts and chat reference this target."""
        return "e" if self.target_type is TargetType.EVENT else "a"

    @property
    def kind(self) -> int | None:
        if self.target_type is TargetType.EVENT:
            return None
        return int(self.target_id.split(":", 2)[0])

    @property
    def author(self) -> str | None:
        if self.target_type is TargetType.EVENT:
            return None
        return self.target_id.split(":", 2)[1]

    @property
    def identifier(self) -> str | None:
        if self.target_type is TargetType.EVENT:
            return None
        return self.target_id.split(":", 2)[2]
