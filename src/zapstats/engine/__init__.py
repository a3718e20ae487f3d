"""Deduplication, aggregation, ranking and accounting verification.

Everything here is synchronous and free of network I/O; the live session and
the batch calculator drive it.

```text
EventDeduplicator ──> AggregationEngine ──> AccountingVerifier
                           │
                           └── rank_targets (composite score)
```
"""

from .aggregation import AggregationEngine
from .dedup import EventDeduplicator
from .scoring import TargetRanking, composite_score, rank_targets
from .verifier import AccountingVerifier, VerificationReport, VerificationResult


__all__ = [
    "AccountingVerifier",
    "AggregationEngine",
    "EventDeduplicator",
    "TargetRanking",
    "VerificationReport",
    "VerificationResult",
    "composite_score",
    "rank_targets",
]
