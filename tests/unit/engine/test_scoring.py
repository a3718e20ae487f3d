"""
Unit tests for engine.scoring module.

Tests:
- composite_score() weights and zero-maximum handling
- rank_targets() ordering and stable tie handling
- TargetRanking.to_dict() rounding
"""

from __future__ import annotations

import pytest

from zapstats.engine.scoring import TargetRanking, composite_score, rank_targets
from zapstats.models.aggregates import TargetBreakdown, ZapperAggregate
from zapstats.models.zap import ZapReceipt

from fixtures.events import hex_id


def _breakdown(target_id: str, amounts: list[int], payers: int) -> TargetBreakdown:
    receipts = [
        ZapReceipt(hex_id(i), target_id, amount, f"p{i % payers}")
        for i, amount in enumerate(amounts)
    ]
    zappers = {f"p{i}": ZapperAggregate(pubkey=f"p{i}") for i in range(payers)}
    return TargetBreakdown(
        target_id=target_id,
        receipts=receipts,
        total_amount_msat=sum(amounts),
        zappers=zappers,
    )


class TestCompositeScore:
    """Weighted 70/20/10 score."""

    def test_best_in_every_signal_scores_100(self) -> None:
        score = composite_score(
            10_000, 10, 5, max_total=10_000, max_count=10, max_unique=5
        )
        assert score == pytest.approx(100.0)

    def test_mixed_signals(self) -> None:
        # 5000/10000*70 + 10/10*20 + 5/5*10 = 35 + 20 + 10
        score = composite_score(
            5_000, 10, 5, max_total=10_000, max_count=10, max_unique=5
        )
        assert score == pytest.approx(65.0)

    def test_zero_maxima_treated_as_one(self) -> None:
        score = composite_score(0, 0, 0, max_total=0, max_count=0, max_unique=0)
        assert score == 0.0


class TestRankTargets:
    """Ranking a batch of breakdowns."""

    def test_empty(self) -> None:
        assert rank_targets([]) == []

    def test_ranked_by_score(self) -> None:
        small = _breakdown("small", [1000], 1)
        big = _breakdown("big", [5000, 5000], 2)
        ranking = rank_targets([small, big])
        assert [r.target_id for r in ranking] == ["big", "small"]
        assert ranking[0].rank == 1
        assert ranking[0].score == pytest.approx(100.0)
        assert ranking[1].rank == 2

    def test_half_amount_equal_counts(self) -> None:
        # amount 50/100*70 + count 10/10*20 + unique 5/5*10
        first = _breakdown("first", [10] * 10, 5)
        second = _breakdown("second", [5] * 10, 5)
        ranking = rank_targets([second, first])
        assert [r.target_id for r in ranking] == ["first", "second"]
        assert [r.score for r in ranking] == pytest.approx([100.0, 65.0])
        assert ranking[0].score > ranking[1].score

    def test_equal_scores_keep_input_order(self) -> None:
        first = _breakdown("first", [1000], 1)
        second = _breakdown("second", [1000], 1)
        ranking = rank_targets([first, second])
        assert [r.target_id for r in ranking] == ["first", "second"]

    def test_ranking_carries_counts(self) -> None:
        ranking = rank_targets([_breakdown("t", [1000, 2000, 3000], 2)])
        assert ranking[0].total_amount_msat == 6000
        assert ranking[0].zap_count == 3
        assert ranking[0].unique_payers == 2


class TestTargetRanking:
    """Serialization."""

    def test_to_dict_rounds_score(self) -> None:
        ranking = TargetRanking("t", 1, 64.2857, 1000, 1, 1)
        data = ranking.to_dict()
        assert data["score"] == 64.3
        assert data["rank"] == 1
        assert data["target_id"] == "t"
