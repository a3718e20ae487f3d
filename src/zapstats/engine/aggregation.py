"""
Incremental zap aggregation.

[AggregationEngine][zapstats.engine.aggregation.AggregationEngine] is the
single owner of a session's (or batch computation's) running totals. It is
created by its owner and injected wherever totals are needed; there is no
module-level state.

Guarantees:

* **Exactly once** -- a receipt id is applied at most once; later copies are
  rejected by ``apply()`` returning ``False``.
* **Accounting** -- each target's running total equals the sum of its
  receipt list; each payer's total equals the sum of their receipts across
  the tracked targets (also after ``drop_target()``).
* **Order independence** -- totals depend only on the set of receipts
  applied, never on arrival order.
* **Top-N order** -- payers sort by descending total, ties broken by the
  payer seen first.

Mutation happens under a lock; listeners are invoked after the lock is
released with copies of the affected state.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING, Any

from zapstats.core.logger import format_kv_pairs
from zapstats.models.aggregates import TargetBreakdown, ZapperAggregate

from .scoring import TargetRanking, rank_targets


if TYPE_CHECKING:
    from collections.abc import Callable

    from zapstats.models.profile import ProfileMetadata
    from zapstats.models.zap import ZapReceipt


# =============================================================================
# Logging
# =============================================================================

_logger = logging.getLogger(__name__)


def _log(level: str, message: str, **kwargs: Any) -> None:
    """Log a structured message with key=value pairs."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    if _logger.isEnabledFor(log_level):
        _logger.log(log_level, message + format_kv_pairs(kwargs, max_value_length=None))


# =============================================================================
# Engine
# =============================================================================


def _top_key(zapper: ZapperAggregate) -> tuple[int, int]:
    return (-zapper.total_amount_msat, zapper.first_seen)


class AggregationEngine:
    """Running totals, per-payer aggregates and per-target breakdowns.

    Args:
        top_n: Length of the top-payer list watched for changes.
        on_aggregate_update: Called as ``(target_id, breakdown)`` after
            every successful ``apply()``.
        on_top_zappers_changed: Called with the new top-N list whenever its
            membership, order, totals or profiles change.

    Examples:
        ```python
        engine = AggregationEngine(top_n=5)
        engine.apply(receipt_a)          # True
        engine.apply(receipt_a)          # False (already applied)
        engine.target_breakdown("ab..").total_amount_msat
        engine.top_zappers(2)
        ```

    See Also:
        [AccountingVerifier][zapstats.engine.verifier.AccountingVerifier]:
            Cross-checks the running totals against the receipt lists.
    """

    def __init__(
        self,
        *,
        top_n: int = 5,
        on_aggregate_update: Callable[[str, TargetBreakdown], None] | None = None,
        on_top_zappers_changed: Callable[[list[ZapperAggregate]], None] | None = None,
    ) -> None:
        if top_n < 1:
            raise ValueError("top_n must be at least 1")
        self._top_n = top_n
        self._on_aggregate_update = on_aggregate_update
        self._on_top_zappers_changed = on_top_zappers_changed

        self._lock = threading.RLock()
        self._sequence = itertools.count()
        self._applied: set[str] = set()
        self._targets: dict[str, TargetBreakdown] = {}
        self._zappers: dict[str, ZapperAggregate] = {}
        self._profiles: dict[str, ProfileMetadata] = {}
        self._grand_total = 0
        self._zap_count = 0
        self._ranked_zappers: list[ZapperAggregate] = []
        self._rankings: list[TargetRanking] | None = None

    @property
    def top_n(self) -> int:
        return self._top_n

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def apply(self, receipt: ZapReceipt) -> bool:
        """Apply one receipt; return ``False`` if its id was already applied."""
        with self._lock:
            if receipt.id in self._applied:
                return False
            self._applied.add(receipt.id)

            before = self._top_signature()

            breakdown = self._targets.get(receipt.target_id)
            if breakdown is None:
                breakdown = TargetBreakdown(target_id=receipt.target_id)
                self._targets[receipt.target_id] = breakdown
            breakdown.receipts.append(receipt)
            breakdown.total_amount_msat += receipt.amount_msat
            self._zapper_in(breakdown.zappers, receipt.payer_pubkey).add(receipt.amount_msat)

            self._zapper_in(self._zappers, receipt.payer_pubkey).add(receipt.amount_msat)
            self._grand_total += receipt.amount_msat
            self._zap_count += 1

            self._resort()
            update = breakdown.copy()
            top = self._top_copies() if self._top_signature() != before else None

        self._notify_update(receipt.target_id, update)
        if top is not None:
            self._notify_top(top)
        return True

    def track_target(self, target_id: str) -> None:
        """Register a target so it appears in breakdowns and rankings before any zap."""
        with self._lock:
            if target_id not in self._targets:
                self._targets[target_id] = TargetBreakdown(target_id=target_id)
                self._rankings = None

    def drop_target(self, target_id: str) -> bool:
        """Remove a target and subtract its receipts from the payer aggregates.

        Returns:
            ``False`` if the target was not tracked.
        """
        with self._lock:
            breakdown = self._targets.pop(target_id, None)
            if breakdown is None:
                return False

            before = self._top_signature()
            for receipt in breakdown.receipts:
                self._applied.discard(receipt.id)
                zapper = self._zappers[receipt.payer_pubkey]
                zapper.subtract(receipt.amount_msat)
                if zapper.zap_count == 0:
                    del self._zappers[receipt.payer_pubkey]
            self._grand_total -= breakdown.total_amount_msat
            self._zap_count -= breakdown.zap_count

            self._resort()
            top = self._top_copies() if self._top_signature() != before else None

        _log("DEBUG", "target_dropped", target=target_id, receipts=breakdown.zap_count)
        if top is not None:
            self._notify_top(top)
        return True

    def attach_profile(self, pubkey: str, profile: ProfileMetadata) -> None:
        """Backfill display metadata for a payer (now or when they first zap)."""
        with self._lock:
            self._profiles[pubkey] = profile
            before = self._top_signature()
            zapper = self._zappers.get(pubkey)
            if zapper is not None:
                zapper.profile = profile
            for breakdown in self._targets.values():
                target_zapper = breakdown.zappers.get(pubkey)
                if target_zapper is not None:
                    target_zapper.profile = profile
            top = self._top_copies() if self._top_signature() != before else None

        if top is not None:
            self._notify_top(top)

    def reset(self) -> None:
        """Forget every receipt, target and payer (profiles are kept)."""
        with self._lock:
            had_top = bool(self._ranked_zappers)
            self._applied.clear()
            self._targets.clear()
            self._zappers.clear()
            self._ranked_zappers = []
            self._rankings = None
            self._grand_total = 0
            self._zap_count = 0

        if had_top:
            self._notify_top([])

    # -------------------------------------------------------------------------
    # Read accessors (copies only)
    # -------------------------------------------------------------------------

    def top_zappers(self, n: int | None = None) -> list[ZapperAggregate]:
        """Payers by descending total, earliest first-seen first on ties."""
        limit = self._top_n if n is None else n
        with self._lock:
            return [z.copy() for z in self._ranked_zappers[:limit]]

    def top_targets(self, n: int | None = None) -> list[TargetRanking]:
        """Targets ranked by composite score (all of them when ``n`` is None)."""
        with self._lock:
            if self._rankings is None:
                self._rankings = rank_targets(self._targets.values())
            return list(self._rankings if n is None else self._rankings[:n])

    def target_breakdown(self, target_id: str) -> TargetBreakdown | None:
        with self._lock:
            breakdown = self._targets.get(target_id)
            return breakdown.copy() if breakdown is not None else None

    def breakdowns(self) -> list[TargetBreakdown]:
        """All breakdowns, in the order targets were first seen."""
        with self._lock:
            return [b.copy() for b in self._targets.values()]

    def zapper(self, pubkey: str) -> ZapperAggregate | None:
        with self._lock:
            zapper = self._zappers.get(pubkey)
            return zapper.copy() if zapper is not None else None

    def zappers(self) -> list[ZapperAggregate]:
        with self._lock:
            return [z.copy() for z in self._ranked_zappers]

    def snapshot(self) -> tuple[list[TargetBreakdown], list[ZapperAggregate]]:
        """Breakdowns and ranked payers copied atomically."""
        with self._lock:
            return self.breakdowns(), self.zappers()

    def target_ids(self) -> list[str]:
        with self._lock:
            return list(self._targets)

    def grand_total(self) -> int:
        with self._lock:
            return self._grand_total

    def zap_count(self) -> int:
        with self._lock:
            return self._zap_count

    def unique_payer_count(self) -> int:
        with self._lock:
            return len(self._zappers)

    def has_applied(self, receipt_id: str) -> bool:
        with self._lock:
            return receipt_id in self._applied

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _zapper_in(self, zappers: dict[str, ZapperAggregate], pubkey: str) -> ZapperAggregate:
        zapper = zappers.get(pubkey)
        if zapper is None:
            zapper = ZapperAggregate(
                pubkey=pubkey,
                first_seen=next(self._sequence),
                profile=self._profiles.get(pubkey),
            )
            zappers[pubkey] = zapper
        return zapper

    def _resort(self) -> None:
        self._ranked_zappers = sorted(self._zappers.values(), key=_top_key)
        self._rankings = None

    def _top_signature(self) -> list[tuple[str, int, int, ProfileMetadata | None]]:
        return [
            (z.pubkey, z.total_amount_msat, z.zap_count, z.profile)
            for z in self._ranked_zappers[: self._top_n]
        ]

    def _top_copies(self) -> list[ZapperAggregate]:
        return [z.copy() for z in self._ranked_zappers[: self._top_n]]

    def _notify_update(self, target_id: str, breakdown: TargetBreakdown) -> None:
        if self._on_aggregate_update is None:
            return
        try:
            self._on_aggregate_update(target_id, breakdown)
        except Exception as e:  # Intentionally broad: listener code is outside the engine
            _log("ERROR", "aggregate_listener_failed", target=target_id, error=str(e))

    def _notify_top(self, ranked: list[ZapperAggregate]) -> None:
        if self._on_top_zappers_changed is None:
            return
        try:
            self._on_top_zappers_changed(ranked)
        except Exception as e:  # Intentionally broad: listener code is outside the engine
            _log("ERROR", "top_zappers_listener_failed", error=str(e))
