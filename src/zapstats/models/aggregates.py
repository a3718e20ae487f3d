"""
Mutable accumulators owned by the aggregation engine.

[ZapperAggregate][zapstats.models.aggregates.ZapperAggregate] and
[TargetBreakdown][zapstats.models.aggregates.TargetBreakdown] are mutated
only by [AggregationEngine][zapstats.engine.aggregation.AggregationEngine]
under its lock. Everything handed to callers is a ``copy()``, so consumers
can never change engine state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .profile import ProfileMetadata
    from .zap import ZapReceipt


@dataclass(slots=True)
class ZapperAggregate:
    """Running totals for one payer.

    Attributes:
        pubkey: Payer pubkey (or the anonymous sentinel).
        total_amount_msat: Sum of this payer's receipts.
        zap_count: Number of receipts.
        first_seen: Engine-assigned sequence number of the payer's first
            receipt; earlier wins ties in top-N lists.
        profile: Display metadata, backfilled when available.
    """

    pubkey: str
    total_amount_msat: int = 0
    zap_count: int = 0
    first_seen: int = 0
    profile: ProfileMetadata | None = None

    def add(self, amount_msat: int) -> None:
        self.total_amount_msat += amount_msat
        self.zap_count += 1

    def subtract(self, amount_msat: int) -> None:
        self.total_amount_msat -= amount_msat
        self.zap_count -= 1

    def copy(self) -> ZapperAggregate:
        return ZapperAggregate(
            pubkey=self.pubkey,
            total_amount_msat=self.total_amount_msat,
            zap_count=self.zap_count,
            first_seen=self.first_seen,
            profile=self.profile,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "total_amount_msat": self.total_amount_msat,
            "zap_count": self.zap_count,
            "profile": self.profile.to_dict() if self.profile else None,
        }


@dataclass(slots=True)
class TargetBreakdown:
    """Receipts and running total for one target.

    ``total_amount_msat`` is maintained incrementally and must always equal
    ``itemized_sum``; the verifier checks exactly that.

    Attributes:
        target_id: Canonical target id.
        receipts: Receipts in application order.
        total_amount_msat: Running sum of ``receipts``.
        zappers: Per-target payer totals.
    """

    target_id: str
    receipts: list[ZapReceipt] = field(default_factory=list)
    total_amount_msat: int = 0
    zappers: dict[str, ZapperAggregate] = field(default_factory=dict)

    @property
    def zap_count(self) -> int:
        return len(self.receipts)

    @property
    def unique_payer_count(self) -> int:
        return len(self.zappers)

    @property
    def itemized_sum(self) -> int:
        """Sum recomputed from the receipt list (independent of the running total)."""
        return sum(r.amount_msat for r in self.receipts)

    def copy(self) -> TargetBreakdown:
        return TargetBreakdown(
            target_id=self.target_id,
            receipts=list(self.receipts),
            total_amount_msat=self.total_amount_msat,
            zappers={k: v.copy() for k, v in self.zappers.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "total_amount_msat": self.total_amount_msat,
            "zap_count": self.zap_count,
            "unique_payers": self.unique_payer_count,
            "receipts": [r.to_dict() for r in self.receipts],
        }
