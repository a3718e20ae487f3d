"""
Composite ranking of targets.

Each target is scored on a 0-100 scale from three signals, each normalized
against the maximum observed across the targets being ranked:

```text
score = total / max_total * 70
      + zap_count / max_count * 20
      + unique_payers / max_unique * 10
```

A maximum of zero is treated as one. Targets are ranked by descending score
with a stable sort, so equal scores keep their input order; rank 1 is the
best target.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Iterable

    from zapstats.models.aggregates import TargetBreakdown


AMOUNT_WEIGHT = 70.0
COUNT_WEIGHT = 20.0
UNIQUE_PAYERS_WEIGHT = 10.0


@dataclass(frozen=True, slots=True)
class TargetRanking:
    """Position of one target in a ranking.

    Attributes:
        target_id: Canonical target id.
        rank: 1-based position.
        score: Composite score (0-100).
        total_amount_msat: Target total at ranking time.
        zap_count: Receipt count at ranking time.
        unique_payers: Distinct payers at ranking time.
    """

    target_id: str
    rank: int
    score: float
    total_amount_msat: int
    zap_count: int
    unique_payers: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "rank": self.rank,
            "score": round(self.score, 1),
            "total_amount_msat": self.total_amount_msat,
            "zap_count": self.zap_count,
            "unique_payers": self.unique_payers,
        }


def composite_score(
    total: int,
    count: int,
    unique: int,
    *,
    max_total: int,
    max_count: int,
    max_unique: int,
) -> float:
    """Score one target against batch maxima (zero maxima count as one)."""
    return (
        total / (max_total or 1) * AMOUNT_WEIGHT
        + count / (max_count or 1) * COUNT_WEIGHT
        + unique / (max_unique or 1) * UNIQUE_PAYERS_WEIGHT
    )


def rank_targets(breakdowns: Iterable[TargetBreakdown]) -> list[TargetRanking]:
    """Score and rank breakdowns; equal scores keep their input order."""
    items = list(breakdowns)
    if not items:
        return []

    max_total = max(b.total_amount_msat for b in items)
    max_count = max(b.zap_count for b in items)
    max_unique = max(b.unique_payer_count for b in items)

    scored = [
        (
            composite_score(
                b.total_amount_msat,
                b.zap_count,
                b.unique_payer_count,
                max_total=max_total,
                max_count=max_count,
                max_unique=max_unique,
            ),
            b,
        )
        for b in items
    ]
    scored.sort(key=lambda pair: pair[0], reverse=True)

    return [
        TargetRanking(
            target_id=b.target_id,
            rank=position,
            score=score,
            total_amount_msat=b.total_amount_msat,
            zap_count=b.zap_count,
            unique_payers=b.unique_payer_count,
        )
        for position, (score, b) in enumerate(scored, start=1)
    ]
