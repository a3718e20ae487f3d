"""
Accounting verification.

The engine keeps running totals for speed; the verifier recomputes them from
the itemized receipt lists and reports any disagreement. A mismatch means an
aggregation bug (double count, lost update) and is surfaced as data, never
corrected: silently fixing it would hide the bug.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from zapstats.core.logger import format_kv_pairs


if TYPE_CHECKING:
    from .aggregation import AggregationEngine


_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of checking one target.

    Attributes:
        target_id: The checked target.
        matches: ``itemized_sum == aggregate_total``.
        itemized_sum: Sum recomputed from the receipt list.
        aggregate_total: Running total maintained by the engine.
    """

    target_id: str
    matches: bool
    itemized_sum: int
    aggregate_total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "matches": self.matches,
            "itemized_sum": self.itemized_sum,
            "aggregate_total": self.aggregate_total,
        }


@dataclass(frozen=True, slots=True)
class VerificationReport:
    """Session-wide health check.

    Attributes:
        passed: Number of targets whose totals match.
        failed: Number of targets whose totals do not match.
        mismatched: The failing results.
        payer_mismatches: Payers whose aggregate total differs from the sum
            of their receipts across tracked targets.
    """

    passed: int
    failed: int
    mismatched: tuple[VerificationResult, ...] = ()
    payer_mismatches: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.payer_mismatches

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "mismatched": [r.to_dict() for r in self.mismatched],
            "payer_mismatches": list(self.payer_mismatches),
        }


class AccountingVerifier:
    """Cross-check an engine's running totals against its receipt lists.

    Examples:
        ```python
        verifier = AccountingVerifier(engine)
        verifier.verify("ab" * 32).matches  # True
        report = verifier.verify_all()
        report.passed, report.failed
        ```
    """

    def __init__(self, engine: AggregationEngine) -> None:
        self._engine = engine

    def verify(self, target_id: str) -> VerificationResult:
        """Check one target.

        Raises:
            KeyError: If the engine does not track ``target_id``.
        """
        breakdown = self._engine.target_breakdown(target_id)
        if breakdown is None:
            raise KeyError(target_id)
        result = VerificationResult(
            target_id=target_id,
            matches=breakdown.itemized_sum == breakdown.total_amount_msat,
            itemized_sum=breakdown.itemized_sum,
            aggregate_total=breakdown.total_amount_msat,
        )
        if not result.matches:
            self._warn(result)
        return result

    def verify_all(self) -> VerificationReport:
        """Check every tracked target and every payer aggregate."""
        breakdowns, zappers = self._engine.snapshot()

        mismatched: list[VerificationResult] = []
        per_payer: dict[str, int] = {}
        for breakdown in breakdowns:
            itemized = breakdown.itemized_sum
            if itemized != breakdown.total_amount_msat:
                result = VerificationResult(
                    target_id=breakdown.target_id,
                    matches=False,
                    itemized_sum=itemized,
                    aggregate_total=breakdown.total_amount_msat,
                )
                self._warn(result)
                mismatched.append(result)
            for receipt in breakdown.receipts:
                per_payer[receipt.payer_pubkey] = (
                    per_payer.get(receipt.payer_pubkey, 0) + receipt.amount_msat
                )

        payer_mismatches = tuple(
            z.pubkey for z in zappers if per_payer.get(z.pubkey, 0) != z.total_amount_msat
        )
        if payer_mismatches:
            _logger.warning(
                "payer_accounting_mismatch%s",
                format_kv_pairs({"payers": len(payer_mismatches)}),
            )

        return VerificationReport(
            passed=len(breakdowns) - len(mismatched),
            failed=len(mismatched),
            mismatched=tuple(mismatched),
            payer_mismatches=payer_mismatches,
        )

    @staticmethod
    def _warn(result: VerificationResult) -> None:
        _logger.warning(
            "accounting_mismatch%s",
            format_kv_pairs(
                {
                    "target": result.target_id,
                    "itemized_sum": result.itemized_sum,
                    "aggregate_total": result.aggregate_total,
                }
            ),
        )
