"""
Decoded zap receipt.

A [ZapReceipt][zapstats.models.zap.ZapReceipt] is the immutable result of
running a kind 9735 event through
[decode_zap_receipt()][zapstats.nips.nip57.decode_zap_receipt]. It is the
only input the aggregation engine accepts.

See Also:
    [aggregates][zapstats.models.aggregates]: Mutable
        per-payer and per-target accumulators built from receipts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ._validation import validate_non_negative_int, validate_str, validate_str_not_empty
from .constants import ANONYMOUS_PUBKEY, MSATS_PER_SAT


@dataclass(frozen=True, slots=True)
class ZapReceipt:
    """A single payment directed at a target.

    Attributes:
        id: Hex id of the receipt event; the idempotency key.
        target_id: Canonical id of the zapped entity (event id or
            ``kind:pubkey:d`` coordinate).
        amount_msat: Settled amount in millisatoshis.
        payer_pubkey: Hex pubkey of the zap request signer, or
            ``ANONYMOUS_PUBKEY``.
        message: Zap request content (may be empty).
        timestamp: Receipt ``created_at`` in Unix seconds.
        bolt11: The raw invoice, kept for diagnostics.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If ``id``/``target_id``/``payer_pubkey`` is empty or an
            integer field is negative.
    """

    id: str
    target_id: str
    amount_msat: int
    payer_pubkey: str
    message: str = ""
    timestamp: int = 0
    bolt11: str = ""

    def __post_init__(self) -> None:
        validate_str_not_empty(self.id, "id")
        validate_str_not_empty(self.target_id, "target_id")
        validate_str_not_empty(self.payer_pubkey, "payer_pubkey")
        validate_non_negative_int(self.amount_msat, "amount_msat")
        validate_non_negative_int(self.timestamp, "timestamp")
        validate_str(self.message, "message")
        validate_str(self.bolt11, "bolt11")

    @property
    def amount_sat(self) -> int:
        return self.amount_msat // MSATS_PER_SAT

    @property
    def is_anonymous(self) -> bool:
        return self.payer_pubkey == ANONYMOUS_PUBKEY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_id": self.target_id,
            "amount_msat": self.amount_msat,
            "payer_pubkey": self.payer_pubkey,
            "message": self.message,
            "timestamp": self.timestamp,
        }
