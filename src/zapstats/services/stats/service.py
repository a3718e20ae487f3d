"""Batch zap statistics for many targets.

[StatsCalculator][zapstats.services.stats.StatsCalculator] computes totals,
top payers and a composite-score ranking over the stored zap receipts of a
set of targets. It does not use live subscriptions: every input is a
one-shot fetch through an
[EventFetcher][zapstats.services.common.fetcher.EventFetcher].

The computation is a sequence of stages, each reported as a
[StageReport][zapstats.services.stats.StageReport] and retried up to
``retry.max_attempts`` times:

1. ``resolve``: references to canonical target ids. Unresolvable
   references are dropped and listed in ``Stats.unresolved_refs``; when none
   resolves, [NoTargetsResolvedError][zapstats.core.exceptions.NoTargetsResolvedError]
   is raised.
2. ``fetch_notes`` and ``fetch_zaps`` run concurrently. Notes are optional
   decoration; receipts are not, so a failed ``fetch_zaps`` raises
   [StatsComputationError][zapstats.core.exceptions.StatsComputationError].
3. ``author_profiles``: kind 0 of the target authors.
4. ``aggregate``: receipts grouped by target, decoded per target, then
   merged into a fresh [AggregationEngine][zapstats.engine.aggregation.AggregationEngine]
   in one single-threaded pass. Undecodable receipts are skipped and counted.
5. ``payer_profiles``: kind 0 of every named payer, attached to the engine.
6. ``verify``: [AccountingVerifier][zapstats.engine.verifier.AccountingVerifier]
   over the finished engine.

A failed non-critical stage leaves ``Stats.partial`` set; the rest of the
result is still valid.

[StatsService][zapstats.services.stats.StatsService] runs the calculator on
an interval for a configured list of targets and keeps the latest result.

Examples:
    ```python
    async with RelayEventFetcher() as fetcher:
        stats = await compute_stats(["note1...", "naddr1..."], fetcher=fetcher)
    print(stats.total_amount_sat, [t.target_id for t in stats.top_targets])
    ```
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, ClassVar, TypeVar

from nostr_sdk import NostrSdkError

from zapstats.core.base_service import BaseService
from zapstats.core.exceptions import (
    ConfigurationError,
    DecodeError,
    NoTargetsResolvedError,
    ReferenceResolutionError,
    StatsComputationError,
    ZapStatsError,
)
from zapstats.core.logger import Logger
from zapstats.engine.aggregation import AggregationEngine
from zapstats.engine.verifier import AccountingVerifier
from zapstats.models.constants import ANONYMOUS_PUBKEY, ServiceName
from zapstats.nips.nip19 import parse_reference
from zapstats.nips.nip57 import decode_zap_receipt
from zapstats.services.common.configs import RetryConfig
from zapstats.services.common.fetcher import RelayEventFetcher
from zapstats.services.common.filters import target_event_filters, zap_receipt_filters
from zapstats.services.common.profiles import ProfileCache
from zapstats.utils.events import (
    event_author,
    event_created_at,
    event_id,
    event_kind,
    event_tags,
    tag_value,
    tag_values,
)

from .configs import StatsConfig
from .utils import DateRange, Stage, StageReport, Stats, TargetNote, TargetStats


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from types import TracebackType

    from nostr_sdk import Event as NostrEvent

    from zapstats.models.profile import ProfileMetadata
    from zapstats.models.target import TargetRef
    from zapstats.models.zap import ZapReceipt
    from zapstats.services.common.fetcher import EventFetcher


_T = TypeVar("_T")

# (result, attempted, succeeded, failed)
_StageOutcome = tuple[_T, int, int, int]

# Errors a stage may retry; anything else is a bug and propagates.
_STAGE_ERRORS = (ZapStatsError, NostrSdkError, OSError, TimeoutError)


# =============================================================================
# Calculator
# =============================================================================


class StatsCalculator:
    """Compute [Stats][zapstats.services.stats.Stats] for a batch of references.

    Args:
        fetcher: Source of notes and receipts.
        profiles: Profile cache; profile stages are skipped when ``None``.
        top_n: Length of ``top_zappers`` and ``top_targets``.
        retry: Per-stage retry policy.
        on_progress: Called with every finished
            [StageReport][zapstats.services.stats.StageReport].
        logger: Logger to report through (defaults to ``Logger("stats")``).
    """

    def __init__(
        self,
        fetcher: EventFetcher,
        *,
        profiles: ProfileCache | None = None,
        top_n: int = 20,
        retry: RetryConfig | None = None,
        on_progress: Callable[[StageReport], None] | None = None,
        logger: Logger | None = None,
    ) -> None:
        if top_n < 1:
            raise ValueError("top_n must be at least 1")
        self._fetcher = fetcher
        self._profiles = profiles
        self._top_n = top_n
        self._retry = retry or RetryConfig()
        self._on_progress = on_progress
        self._logger = logger or Logger("stats")

    async def compute_stats(self, target_refs: Iterable[str]) -> Stats:
        """Run every stage and assemble the result.

        Raises:
            NoTargetsResolvedError: If no reference could be resolved.
            StatsComputationError: If the receipts could not be fetched.
        """
        refs = list(target_refs)
        stats = Stats()
        self._logger.info("stats_started", references=len(refs))

        # resolve
        report, resolved = await self._run_stage(Stage.RESOLVE, lambda: self._resolve(refs, stats))
        self._record(stats, report)
        targets = resolved or []
        if not targets:
            raise NoTargetsResolvedError(refs)
        target_ids = [t.target_id for t in targets]

        # fetch_notes || fetch_zaps
        async with asyncio.TaskGroup() as tg:
            notes_task = tg.create_task(
                self._run_stage(Stage.FETCH_NOTES, lambda: self._fetch_notes(targets))
            )
            zaps_task = tg.create_task(
                self._run_stage(Stage.FETCH_ZAPS, lambda: self._fetch_zaps(targets))
            )
        notes_report, notes = notes_task.result()
        zaps_report, receipts = zaps_task.result()
        self._record(stats, notes_report)
        self._record(stats, zaps_report)
        if receipts is None:
            raise StatsComputationError(Stage.FETCH_ZAPS, zaps_report.error or "unknown error")
        notes = notes or {}

        # author_profiles
        authors: dict[str, ProfileMetadata] = {}
        if self._profiles is not None:
            author_keys = self._author_pubkeys(targets, notes)
            report, fetched = await self._run_stage(
                Stage.AUTHOR_PROFILES, lambda: self._ensure_profiles(author_keys)
            )
            self._record(stats, report)
            authors = fetched or {}

        # aggregate
        engine = AggregationEngine(top_n=self._top_n)
        for target_id in target_ids:
            engine.track_target(target_id)
        report, decoded = await self._run_stage(
            Stage.AGGREGATE, lambda: self._aggregate(engine, receipts, target_ids)
        )
        self._record(stats, report)
        stats.decode_failures = report.failed

        # payer_profiles
        if self._profiles is not None:
            payer_keys = [z.pubkey for z in engine.zappers() if z.pubkey != ANONYMOUS_PUBKEY]
            report, payers = await self._run_stage(
                Stage.PAYER_PROFILES, lambda: self._ensure_profiles(payer_keys)
            )
            self._record(stats, report)
            for pubkey, profile in (payers or {}).items():
                engine.attach_profile(pubkey, profile)

        # totals, ranking
        rankings = {r.target_id: r for r in engine.top_targets()}
        for target in targets:
            breakdown = engine.target_breakdown(target.target_id)
            if breakdown is None:
                continue
            note = notes.get(target.target_id)
            author = note.author_pubkey if note is not None else target.author
            stats.targets[target.target_id] = TargetStats(
                target=target,
                breakdown=breakdown,
                ranking=rankings.get(target.target_id),
                note=note,
                author_profile=authors.get(author) if author else None,
            )

        stats.total_references = len(refs)
        stats.total_targets = len(targets)
        stats.total_notes = len(notes)
        stats.total_zaps = engine.zap_count()
        stats.total_amount_msat = engine.grand_total()
        stats.unique_zappers = engine.unique_payer_count()
        stats.top_zappers = engine.top_zappers(self._top_n)
        stats.top_targets = engine.top_targets(self._top_n)
        stats.date_range = DateRange.from_timestamps(
            [n.created_at for n in notes.values()] + [r.timestamp for r in decoded or []]
        )

        # verify
        start = time.monotonic()
        verification = AccountingVerifier(engine).verify_all()
        stats.verification = verification
        self._record(
            stats,
            StageReport(
                name=Stage.VERIFY,
                ok=verification.ok,
                attempted=verification.passed + verification.failed,
                succeeded=verification.passed,
                failed=verification.failed,
                error=None if verification.ok else "accounting mismatch",
                duration_s=time.monotonic() - start,
            ),
        )

        stats.partial = any(not s.ok for s in stats.stages if s.name != Stage.VERIFY)
        self._logger.info(
            "stats_completed",
            targets=stats.total_targets,
            zaps=stats.total_zaps,
            total_msat=stats.total_amount_msat,
            unique_zappers=stats.unique_zappers,
            decode_failures=stats.decode_failures,
            partial=stats.partial,
        )
        return stats

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _resolve(self, refs: list[str], stats: Stats) -> _StageOutcome[list[TargetRef]]:
        targets: dict[str, TargetRef] = {}
        for ref in refs:
            try:
                target = parse_reference(ref)
            except ReferenceResolutionError as e:
                stats.unresolved_refs.append(ref)
                self._logger.warning("reference_unresolved", reference=ref, reason=e.reason)
                continue
            targets.setdefault(target.target_id, target)
        unresolved = len(stats.unresolved_refs)
        return list(targets.values()), len(refs), len(refs) - unresolved, unresolved

    async def _fetch_notes(self, targets: list[TargetRef]) -> _StageOutcome[dict[str, TargetNote]]:
        filters = target_event_filters(targets)
        batches = await asyncio.gather(*(self._fetcher.fetch_events(f) for f in filters))

        wanted = {t.target_id for t in targets}
        notes: dict[str, TargetNote] = {}
        for event in (e for batch in batches for e in batch):
            target_id = _note_target_id(event, wanted)
            if target_id is None:
                continue
            note = TargetNote.from_event(event)
            current = notes.get(target_id)
            if current is None or note.created_at > current.created_at:
                notes[target_id] = note
        return notes, len(targets), len(notes), len(targets) - len(notes)

    async def _fetch_zaps(self, targets: list[TargetRef]) -> _StageOutcome[list[NostrEvent]]:
        filters = zap_receipt_filters(targets)
        batches = await asyncio.gather(*(self._fetcher.fetch_events(f) for f in filters))

        unique: dict[str, NostrEvent] = {}
        for event in (e for batch in batches for e in batch):
            unique.setdefault(event_id(event), event)
        receipts = list(unique.values())
        return receipts, len(filters), len(filters), 0

    async def _ensure_profiles(
        self, pubkeys: list[str]
    ) -> _StageOutcome[dict[str, ProfileMetadata]]:
        assert self._profiles is not None  # noqa: S101
        found = await self._profiles.ensure_profiles(pubkeys)
        return found, len(pubkeys), len(found), len(pubkeys) - len(found)

    async def _aggregate(
        self,
        engine: AggregationEngine,
        events: list[NostrEvent],
        target_ids: list[str],
    ) -> _StageOutcome[list[ZapReceipt]]:
        wanted = set(target_ids)
        grouped: dict[str, list[NostrEvent]] = {tid: [] for tid in target_ids}
        unmatched = 0
        for event in events:
            target_id = _receipt_target_id(event, wanted)
            if target_id is None:
                unmatched += 1
                continue
            grouped[target_id].append(event)

        decoded: list[ZapReceipt] = []
        failures = 0
        for target_id, target_events in grouped.items():
            for event in target_events:
                try:
                    decoded.append(decode_zap_receipt(event, target_id=target_id))
                except DecodeError as e:
                    failures += 1
                    self._logger.debug(
                        "zap_decode_failed", target=target_id, event_id=e.event_id, error=str(e)
                    )

        applied = sum(1 for receipt in decoded if engine.apply(receipt))
        if failures or unmatched:
            self._logger.warning(
                "receipts_skipped", decode_failures=failures, unmatched=unmatched
            )
        return decoded, len(events) - unmatched, applied, failures

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _run_stage(
        self,
        stage: Stage,
        func: Callable[[], Awaitable[_StageOutcome[_T]]],
    ) -> tuple[StageReport, _T | None]:
        max_attempts = self._retry.max_attempts
        start = time.monotonic()
        error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                result, attempted, succeeded, failed = await func()
            except _STAGE_ERRORS as e:
                error = e
                self._logger.warning(
                    "stage_attempt_failed",
                    stage=stage,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt < max_attempts:
                    await asyncio.sleep(self._retry.delay)
                continue

            return (
                StageReport(
                    name=stage,
                    ok=True,
                    attempted=attempted,
                    succeeded=succeeded,
                    failed=failed,
                    duration_s=time.monotonic() - start,
                    attempts=attempt,
                ),
                result,
            )

        return (
            StageReport(
                name=stage,
                ok=False,
                error=str(error) or type(error).__name__,
                duration_s=time.monotonic() - start,
                attempts=max_attempts,
            ),
            None,
        )

    def _record(self, stats: Stats, report: StageReport) -> None:
        stats.stages.append(report)
        self._logger.debug(
            "stage_completed",
            stage=report.name,
            ok=report.ok,
            succeeded=report.succeeded,
            failed=report.failed,
            duration_s=round(report.duration_s, 3),
        )
        if self._on_progress is None:
            return
        try:
            self._on_progress(report)
        except Exception as e:  # Intentionally broad: progress listener is caller code
            self._logger.error("progress_callback_failed", stage=report.name, error=str(e))

    @staticmethod
    def _author_pubkeys(targets: list[TargetRef], notes: dict[str, TargetNote]) -> list[str]:
        authors = [n.author_pubkey for n in notes.values()]
        authors.extend(t.author for t in targets if t.author)
        return list(dict.fromkeys(authors))


def _note_target_id(event: NostrEvent, wanted: set[str]) -> str | None:
    eid = event_id(event)
    if eid in wanted:
        return eid
    identifier = tag_value(event_tags(event), "d")
    if identifier is None:
        return None
    coordinate = f"{event_kind(event)}:{event_author(event)}:{identifier}"
    return coordinate if coordinate in wanted else None


def _receipt_target_id(event: NostrEvent, wanted: set[str]) -> str | None:
    tags = event_tags(event)
    for name in ("e", "a"):
        for value in tag_values(tags, name):
            if value in wanted:
                return value
    return None


async def compute_stats(
    target_refs: Iterable[str],
    *,
    fetcher: EventFetcher,
    profiles: ProfileCache | None = None,
    top_n: int = 20,
    retry: RetryConfig | None = None,
    on_progress: Callable[[StageReport], None] | None = None,
) -> Stats:
    """One-off [StatsCalculator.compute_stats()][zapstats.services.stats.StatsCalculator.compute_stats]."""
    calculator = StatsCalculator(
        fetcher, profiles=profiles, top_n=top_n, retry=retry, on_progress=on_progress
    )
    return await calculator.compute_stats(target_refs)


# =============================================================================
# Service
# =============================================================================


class StatsService(BaseService[StatsConfig]):
    """Recompute batch statistics for the configured targets on an interval.

    The latest result is kept in
    [latest][zapstats.services.stats.StatsService.latest]; the profile cache
    lives as long as the service so later cycles only fetch stale profiles.

    Args:
        config: Service configuration.
        fetcher: Event source; a
            [RelayEventFetcher][zapstats.services.common.fetcher.RelayEventFetcher]
            over ``config.relays`` is created (and closed on exit) when omitted.
        on_progress: Forwarded to the calculator.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.STATS
    CONFIG_CLASS: ClassVar[type[StatsConfig]] = StatsConfig

    def __init__(
        self,
        config: StatsConfig | None = None,
        *,
        fetcher: EventFetcher | None = None,
        on_progress: Callable[[StageReport], None] | None = None,
    ) -> None:
        super().__init__(config=config or StatsConfig())
        self._config: StatsConfig
        self._fetcher = fetcher
        self._owned_fetcher: RelayEventFetcher | None = None
        self._on_progress = on_progress
        self._profiles: ProfileCache | None = None
        self._latest: Stats | None = None

    @property
    def latest(self) -> Stats | None:
        """Result of the last successful cycle."""
        return self._latest

    def _get_fetcher(self) -> EventFetcher:
        if self._fetcher is None:
            self._owned_fetcher = RelayEventFetcher(self._config.relays)
            self._fetcher = self._owned_fetcher
        return self._fetcher

    def _get_profiles(self, fetcher: EventFetcher) -> ProfileCache | None:
        if not self._config.fetch_profiles:
            return None
        if self._profiles is None:
            self._profiles = ProfileCache(fetcher, self._config.profiles)
        return self._profiles

    async def compute(self, target_refs: Iterable[str]) -> Stats:
        """Compute statistics for ``target_refs`` with this service's settings."""
        fetcher = self._get_fetcher()
        calculator = StatsCalculator(
            fetcher,
            profiles=self._get_profiles(fetcher),
            top_n=self._config.top_n,
            retry=self._config.retry,
            on_progress=self._on_progress,
            logger=self._logger,
        )
        return await calculator.compute_stats(target_refs)

    async def run(self) -> None:
        """Recompute the configured targets and publish the gauges.

        Raises:
            ConfigurationError: If no targets are configured.
        """
        if not self._config.targets:
            raise ConfigurationError("stats service has no targets configured")

        stats = await self.compute(self._config.targets)
        self._latest = stats

        self.set_gauge("grand_total_msat", stats.total_amount_msat)
        self.set_gauge("tracked_targets", stats.total_targets)
        self.set_gauge("unique_payers", stats.unique_zappers)
        self.set_gauge("partial", 1 if stats.partial else 0)
        self.inc_counter("decode_failures", stats.decode_failures)
        if stats.verification is not None and not stats.verification.ok:
            self.inc_counter("accounting_mismatches", stats.verification.failed)

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._owned_fetcher is not None:
            await self._owned_fetcher.close()
            self._owned_fetcher = None
            self._fetcher = None
            self._profiles = None
        await super().__aexit__(exc_type, exc_val, exc_tb)
