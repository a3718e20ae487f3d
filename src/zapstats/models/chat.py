"""Live chat message (NIP-53 kind 1311)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ._validation import validate_non_negative_int, validate_str, validate_str_not_empty


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """An immutable chat message posted to a live event.

    Attributes:
        id: Hex event id.
        author_pubkey: Hex pubkey of the author.
        content: Message text.
        timestamp: ``created_at`` in Unix seconds.
        target_id: Coordinate of the live event the message is tagged with,
            empty when the event carried no ``a`` tag.
    """

    id: str
    author_pubkey: str
    content: str
    timestamp: int
    target_id: str = ""

    def __post_init__(self) -> None:
        validate_str_not_empty(self.id, "id")
        validate_str_not_empty(self.author_pubkey, "author_pubkey")
        validate_str(self.content, "content")
        validate_str(self.target_id, "target_id")
        validate_non_negative_int(self.timestamp, "timestamp")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "author_pubkey": self.author_pubkey,
            "content": self.content,
            "timestamp": self.timestamp,
            "target_id": self.target_id,
        }
