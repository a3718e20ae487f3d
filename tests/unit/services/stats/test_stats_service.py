"""
Unit tests for services.stats.service module.

Tests:
- StatsCalculator stage pipeline over a routed AsyncMock fetcher
- Totals, top lists, ranking and per-target stats
- Partial results when optional stages fail
- Hard failures (no targets, receipts unavailable)
- StatsService cycle, gauges and fetcher ownership
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from zapstats.core.exceptions import (
    ConfigurationError,
    NoRelaysReachableError,
    NoTargetsResolvedError,
    StatsComputationError,
)
from zapstats.models.constants import EventKind
from zapstats.services.common.configs import ProfileCacheConfig, RetryConfig
from zapstats.services.common.profiles import ProfileCache
from zapstats.services.stats import (
    Stage,
    StageReport,
    StatsCalculator,
    StatsConfig,
    StatsService,
    compute_stats,
)

from fixtures.events import (
    AUTHOR,
    NOTE_ID,
    OTHER_NOTE_ID,
    PAYER_A,
    PAYER_B,
    hex_id,
    make_mock_event,
    make_profile_event,
    make_receipt_event,
)


pytestmark = pytest.mark.usefixtures("fake_bolt11")

NO_DELAY = RetryConfig(max_attempts=2, delay=0)


def _receipts() -> list[MagicMock]:
    """Receipts on NOTE_ID and OTHER_NOTE_ID plus a duplicate, a broken and a stray one."""
    first = make_receipt_event(hex_id(1), payer=PAYER_A, amount_msat=10_000, created_at=1_700_000_100)
    return [
        first,
        make_receipt_event(hex_id(2), payer=PAYER_B, amount_msat=5_000, created_at=1_700_000_200),
        make_receipt_event(
            hex_id(3),
            target=OTHER_NOTE_ID,
            payer=PAYER_A,
            amount_msat=3_000,
            created_at=1_700_000_300,
        ),
        first,
        make_mock_event(event_id=hex_id(4), kind=9735, tags=[["e", NOTE_ID]]),
        make_receipt_event(hex_id(5), target="ff" * 32, amount_msat=99_000),
    ]


def _route(
    *,
    receipts: Iterable[Any] = (),
    notes: Iterable[Any] = (),
    profiles: Iterable[Any] = (),
    zaps_error: Exception | None = None,
    profiles_error: Exception | None = None,
) -> AsyncMock:
    """An EventFetcher answering by filter shape."""
    receipts, notes, profiles = list(receipts), list(notes), list(profiles)

    async def fetch_events(subscription_filter: Any) -> list[Any]:
        kinds = subscription_filter.kinds or []
        if EventKind.ZAP_RECEIPT in kinds:
            if zaps_error is not None:
                raise zaps_error
            return receipts
        if EventKind.METADATA in kinds:
            if profiles_error is not None:
                raise profiles_error
            wanted = set(subscription_filter.authors)
            return [p for p in profiles if p.author().to_hex() in wanted]
        if subscription_filter.ids:
            return notes
        return []

    fetcher = AsyncMock()
    fetcher.fetch_events = AsyncMock(side_effect=fetch_events)
    return fetcher


def _note() -> MagicMock:
    return make_mock_event(event_id=NOTE_ID, kind=1, pubkey=AUTHOR, content="hello", created_at=1_700_000_000)


def _full_fetcher(**overrides: Any) -> AsyncMock:
    kwargs: dict[str, Any] = {
        "receipts": _receipts(),
        "notes": [_note()],
        "profiles": [
            make_profile_event(AUTHOR, name="author"),
            make_profile_event(PAYER_A, name="alice"),
        ],
    }
    kwargs.update(overrides)
    return _route(**kwargs)


def _calculator(fetcher: AsyncMock, *, with_profiles: bool = True, **kwargs: Any) -> StatsCalculator:
    profiles = ProfileCache(fetcher, ProfileCacheConfig()) if with_profiles else None
    return StatsCalculator(fetcher, profiles=profiles, retry=NO_DELAY, **kwargs)


# ============================================================================
# Happy path
# ============================================================================


class TestComputeStats:
    """Full pipeline with every stage succeeding."""

    async def test_totals(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, OTHER_NOTE_ID])

        assert stats.total_targets == 2
        assert stats.total_notes == 1
        assert stats.total_zaps == 3
        assert stats.total_amount_msat == 18_000
        assert stats.total_amount_sat == 18
        assert stats.unique_zappers == 2
        assert stats.decode_failures == 1
        assert stats.partial is False
        assert stats.unresolved_refs == []

    async def test_top_lists(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, OTHER_NOTE_ID])

        assert [z.pubkey for z in stats.top_zappers] == [PAYER_A, PAYER_B]
        assert stats.top_zappers[0].total_amount_msat == 13_000
        assert stats.top_zappers[0].profile is not None
        assert stats.top_zappers[0].profile.name == "alice"
        assert stats.top_zappers[1].profile is None

        assert [r.target_id for r in stats.top_targets] == [NOTE_ID, OTHER_NOTE_ID]
        assert [r.rank for r in stats.top_targets] == [1, 2]

    async def test_per_target_stats(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, OTHER_NOTE_ID])

        note_stats = stats.targets[NOTE_ID]
        assert note_stats.breakdown.total_amount_msat == 15_000
        assert note_stats.breakdown.zap_count == 2
        assert note_stats.ranking is not None
        assert note_stats.ranking.rank == 1
        assert note_stats.note is not None
        assert note_stats.note.content == "hello"
        assert note_stats.author_profile is not None
        assert note_stats.author_profile.name == "author"

        other = stats.targets[OTHER_NOTE_ID]
        assert other.breakdown.total_amount_msat == 3_000
        assert other.note is None
        assert other.author_profile is None

    async def test_stage_reports(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, OTHER_NOTE_ID, "garbage"])

        assert [s.name for s in stats.stages] == [
            Stage.RESOLVE,
            Stage.FETCH_NOTES,
            Stage.FETCH_ZAPS,
            Stage.AUTHOR_PROFILES,
            Stage.AGGREGATE,
            Stage.PAYER_PROFILES,
            Stage.VERIFY,
        ]
        assert all(s.ok for s in stats.stages)

        resolve = stats.stage(Stage.RESOLVE)
        assert resolve is not None
        assert (resolve.attempted, resolve.succeeded, resolve.failed) == (3, 2, 1)

        aggregate = stats.stage(Stage.AGGREGATE)
        assert aggregate is not None
        assert (aggregate.attempted, aggregate.succeeded, aggregate.failed) == (4, 3, 1)

        notes = stats.stage(Stage.FETCH_NOTES)
        assert notes is not None
        assert (notes.succeeded, notes.failed) == (1, 1)

    async def test_unresolved_refs_listed(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, "garbage"])
        assert stats.unresolved_refs == ["garbage"]
        assert stats.total_targets == 1
        assert stats.partial is False

    async def test_duplicate_references_merged(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, NOTE_ID])
        assert stats.total_targets == 1
        assert stats.total_amount_msat == 15_000

    async def test_references_counted_before_merging(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, NOTE_ID, "garbage"])
        assert stats.total_references == 3
        assert stats.total_targets == 1
        data = stats.to_dict()
        assert (data["total_references"], data["total_targets"]) == (3, 1)

    async def test_date_range(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, OTHER_NOTE_ID])
        assert stats.date_range is not None
        assert stats.date_range.earliest == 1_700_000_000
        assert stats.date_range.latest == 1_700_000_300

    async def test_verification_passes(self) -> None:
        stats = await _calculator(_full_fetcher()).compute_stats([NOTE_ID, OTHER_NOTE_ID])
        assert stats.verification is not None
        assert stats.verification.ok
        assert stats.verification.passed == 2

    async def test_target_without_receipts(self) -> None:
        stats = await _calculator(_route()).compute_stats([NOTE_ID])
        assert stats.total_zaps == 0
        assert stats.targets[NOTE_ID].breakdown.total_amount_msat == 0
        assert stats.date_range is None

    async def test_top_n_limits_lists(self) -> None:
        stats = await _calculator(_full_fetcher(), top_n=1).compute_stats([NOTE_ID, OTHER_NOTE_ID])
        assert len(stats.top_zappers) == 1
        assert len(stats.top_targets) == 1

    def test_top_n_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="top_n"):
            StatsCalculator(_route(), top_n=0)


# ============================================================================
# Partial and failed computations
# ============================================================================


class TestFailures:
    """Retry, partial results and hard failures."""

    async def test_profile_failure_is_partial(self) -> None:
        fetcher = _full_fetcher(profiles_error=NoRelaysReachableError("profiles down"))
        stats = await _calculator(fetcher).compute_stats([NOTE_ID, OTHER_NOTE_ID])

        assert stats.partial is True
        assert stats.total_amount_msat == 18_000
        author_stage = stats.stage(Stage.AUTHOR_PROFILES)
        assert author_stage is not None
        assert author_stage.ok is False
        assert author_stage.attempts == 2
        assert author_stage.error == "profiles down"
        assert stats.targets[NOTE_ID].author_profile is None
        assert all(z.profile is None for z in stats.top_zappers)

    async def test_stage_retried_until_success(self) -> None:
        fetcher = _full_fetcher()
        route = fetcher.fetch_events.side_effect
        failures = iter([OSError("reset")])

        async def flaky(subscription_filter: Any) -> list[Any]:
            if EventKind.ZAP_RECEIPT in (subscription_filter.kinds or []):
                error = next(failures, None)
                if error is not None:
                    raise error
            return await route(subscription_filter)

        fetcher.fetch_events.side_effect = flaky
        stats = await _calculator(fetcher).compute_stats([NOTE_ID])

        zaps = stats.stage(Stage.FETCH_ZAPS)
        assert zaps is not None
        assert zaps.ok is True
        assert zaps.attempts == 2
        assert stats.total_amount_msat == 15_000

    async def test_no_targets_resolved(self) -> None:
        with pytest.raises(NoTargetsResolvedError) as exc_info:
            await _calculator(_route()).compute_stats(["garbage", "npub1nothing"])
        assert exc_info.value.references == ["garbage", "npub1nothing"]

    async def test_empty_reference_list(self) -> None:
        with pytest.raises(NoTargetsResolvedError):
            await _calculator(_route()).compute_stats([])

    async def test_receipts_unavailable(self) -> None:
        fetcher = _full_fetcher(zaps_error=TimeoutError())
        with pytest.raises(StatsComputationError) as exc_info:
            await _calculator(fetcher).compute_stats([NOTE_ID])
        assert exc_info.value.stage == Stage.FETCH_ZAPS

    async def test_unexpected_error_propagates(self) -> None:
        fetcher = _full_fetcher(zaps_error=RuntimeError("bug"))
        with pytest.raises(ExceptionGroup) as exc_info:
            await _calculator(fetcher).compute_stats([NOTE_ID])
        assert exc_info.group_contains(RuntimeError)


# ============================================================================
# Progress and the module-level helper
# ============================================================================


class TestProgress:
    """on_progress listener."""

    async def test_reports_every_stage(self) -> None:
        reports: list[StageReport] = []
        await _calculator(_full_fetcher(), on_progress=reports.append).compute_stats([NOTE_ID])
        assert [r.name for r in reports][0] == Stage.RESOLVE
        assert [r.name for r in reports][-1] == Stage.VERIFY
        assert len(reports) == 7

    async def test_listener_failure_tolerated(self) -> None:
        def explode(_report: StageReport) -> None:
            raise RuntimeError("ui gone")

        stats = await _calculator(_full_fetcher(), on_progress=explode).compute_stats([NOTE_ID])
        assert stats.total_amount_msat == 15_000


class TestComputeStatsFunction:
    """compute_stats() convenience wrapper."""

    async def test_without_profiles(self) -> None:
        fetcher = _full_fetcher()
        stats = await compute_stats([NOTE_ID, OTHER_NOTE_ID], fetcher=fetcher, retry=NO_DELAY)

        assert [s.name for s in stats.stages] == [
            Stage.RESOLVE,
            Stage.FETCH_NOTES,
            Stage.FETCH_ZAPS,
            Stage.AGGREGATE,
            Stage.VERIFY,
        ]
        assert stats.total_amount_msat == 18_000
        kinds = [c.args[0].kinds for c in fetcher.fetch_events.await_args_list]
        assert [EventKind.METADATA] not in kinds

    async def test_to_dict(self) -> None:
        stats = await compute_stats([NOTE_ID, OTHER_NOTE_ID], fetcher=_full_fetcher(), retry=NO_DELAY)
        data = stats.to_dict()

        assert data["total_amount_msat"] == 18_000
        assert data["total_amount_sat"] == 18
        assert data["unique_zappers"] == 2
        assert data["partial"] is False
        assert data["decode_failures"] == 1
        assert [t["target_id"] for t in data["top_targets"]] == [NOTE_ID, OTHER_NOTE_ID]
        assert {t["target_id"] for t in data["targets"]} == {NOTE_ID, OTHER_NOTE_ID}
        assert data["date_range"] == {"earliest": 1_700_000_000, "latest": 1_700_000_300}
        assert data["verification"]["passed"] == 2
        assert data["stages"][0]["name"] == "resolve"

        note = next(t for t in data["targets"] if t["target_id"] == NOTE_ID)
        assert note["rank"] == 1
        assert note["zap_count"] == 2
        assert [z["pubkey"] for z in note["top_zappers"]] == [PAYER_A, PAYER_B]


# ============================================================================
# StatsService
# ============================================================================


class TestStatsService:
    """Interval service around the calculator."""

    async def test_run_without_targets(self) -> None:
        service = StatsService(StatsConfig(), fetcher=_route())
        with pytest.raises(ConfigurationError, match="no targets"):
            await service.run()

    async def test_run_stores_latest_and_gauges(self) -> None:
        config = StatsConfig(targets=[NOTE_ID, OTHER_NOTE_ID], fetch_profiles=False, retry=NO_DELAY)
        service = StatsService(config, fetcher=_full_fetcher())

        with (
            patch.object(service, "set_gauge") as set_gauge,
            patch.object(service, "inc_counter") as inc_counter,
        ):
            await service.run()

        assert service.latest is not None
        assert service.latest.total_amount_msat == 18_000
        set_gauge.assert_any_call("grand_total_msat", 18_000)
        set_gauge.assert_any_call("tracked_targets", 2)
        set_gauge.assert_any_call("unique_payers", 2)
        set_gauge.assert_any_call("partial", 0)
        inc_counter.assert_called_once_with("decode_failures", 1)

    async def test_compute_uses_config(self) -> None:
        config = StatsConfig(top_n=1, retry=NO_DELAY)
        service = StatsService(config, fetcher=_full_fetcher())
        stats = await service.compute([NOTE_ID, OTHER_NOTE_ID])
        assert len(stats.top_targets) == 1
        assert stats.stage(Stage.PAYER_PROFILES) is not None

    async def test_owned_fetcher_closed_on_exit(self) -> None:
        config = StatsConfig(targets=[NOTE_ID], fetch_profiles=False, retry=NO_DELAY)
        with patch("zapstats.services.stats.service.RelayEventFetcher") as fetcher_cls:
            fetcher_cls.return_value = _full_fetcher()
            fetcher_cls.return_value.close = AsyncMock()
            async with StatsService(config) as service:
                await service.run()

        fetcher_cls.assert_called_once_with(config.relays)
        fetcher_cls.return_value.close.assert_awaited_once()
        assert service.latest is not None

    async def test_injected_fetcher_not_closed(self) -> None:
        fetcher = _full_fetcher()
        fetcher.close = AsyncMock()
        config = StatsConfig(targets=[NOTE_ID], retry=NO_DELAY)
        async with StatsService(config, fetcher=fetcher) as service:
            await service.run()
        fetcher.close.assert_not_awaited()
