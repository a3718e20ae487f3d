"""Result types of a batch statistics computation.

Everything here is a plain container with a ``to_dict()`` that produces the
JSON-ready mapping printed by ``zapstats stats`` and consumed by
presentation layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from zapstats.models.constants import MSATS_PER_SAT
from zapstats.utils.events import event_author, event_created_at, event_id, event_kind


if TYPE_CHECKING:
    from nostr_sdk import Event as NostrEvent

    from zapstats.engine.scoring import TargetRanking
    from zapstats.engine.verifier import VerificationReport
    from zapstats.models.aggregates import TargetBreakdown, ZapperAggregate
    from zapstats.models.profile import ProfileMetadata
    from zapstats.models.target import TargetRef


class Stage(StrEnum):
    """Stages of a batch computation, in reporting order."""

    RESOLVE = "resolve"
    FETCH_NOTES = "fetch_notes"
    FETCH_ZAPS = "fetch_zaps"
    AUTHOR_PROFILES = "author_profiles"
    AGGREGATE = "aggregate"
    PAYER_PROFILES = "payer_profiles"
    VERIFY = "verify"


@dataclass(frozen=True, slots=True)
class StageReport:
    """Outcome of one stage.

    Attributes:
        name: Stage name.
        ok: Whether the stage produced its result.
        attempted: Items the stage worked on (refs, filters, receipts, ...).
        succeeded: Items that went through.
        failed: Items that were skipped.
        error: Last error message when ``ok`` is False.
        duration_s: Wall time including retries.
        attempts: Tries used.
    """

    name: str
    ok: bool
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    error: str | None = None
    duration_s: float = 0.0
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ok": self.ok,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "error": self.error,
            "duration_s": round(self.duration_s, 3),
            "attempts": self.attempts,
        }


@dataclass(frozen=True, slots=True)
class TargetNote:
    """The zapped event itself, as fetched from relays."""

    id: str
    kind: int
    author_pubkey: str
    content: str
    created_at: int

    @classmethod
    def from_event(cls, event: NostrEvent) -> TargetNote:
        return cls(
            id=event_id(event),
            kind=event_kind(event),
            author_pubkey=event_author(event),
            content=event.content(),
            created_at=event_created_at(event),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "author_pubkey": self.author_pubkey,
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass(slots=True)
class TargetStats:
    """Everything known about one target after a batch."""

    target: TargetRef
    breakdown: TargetBreakdown
    ranking: TargetRanking | None = None
    note: TargetNote | None = None
    author_profile: ProfileMetadata | None = None

    @property
    def target_id(self) -> str:
        return self.target.target_id

    @property
    def reference(self) -> str:
        return self.target.reference

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "reference": self.reference,
            "target_type": self.target.target_type.value,
            "rank": self.ranking.rank if self.ranking else None,
            "score": round(self.ranking.score, 1) if self.ranking else None,
            "total_amount_msat": self.breakdown.total_amount_msat,
            "zap_count": self.breakdown.zap_count,
            "unique_payers": self.breakdown.unique_payer_count,
            "top_zappers": [
                z.to_dict()
                for z in sorted(
                    self.breakdown.zappers.values(),
                    key=lambda z: (-z.total_amount_msat, z.first_seen),
                )
            ],
            "note": self.note.to_dict() if self.note else None,
            "author_profile": self.author_profile.to_dict() if self.author_profile else None,
        }


@dataclass(frozen=True, slots=True)
class DateRange:
    """Earliest and latest ``created_at`` seen across notes and receipts."""

    earliest: int
    latest: int

    @classmethod
    def from_timestamps(cls, timestamps: list[int]) -> DateRange | None:
        valid = [ts for ts in timestamps if ts > 0]
        if not valid:
            return None
        return cls(earliest=min(valid), latest=max(valid))

    def to_dict(self) -> dict[str, int]:
        return {"earliest": self.earliest, "latest": self.latest}


@dataclass(slots=True)
class Stats:
    """Aggregate statistics for a batch of targets.

    ``total_references`` counts the references as supplied;
    ``total_targets`` counts the distinct targets they resolved to, so
    duplicates and unresolvable references make it smaller.
    """

    total_references: int = 0
    total_targets: int = 0
    total_notes: int = 0
    total_zaps: int = 0
    total_amount_msat: int = 0
    unique_zappers: int = 0
    top_zappers: list[ZapperAggregate] = field(default_factory=list)
    top_targets: list[TargetRanking] = field(default_factory=list)
    targets: dict[str, TargetStats] = field(default_factory=dict)
    date_range: DateRange | None = None
    verification: VerificationReport | None = None
    stages: list[StageReport] = field(default_factory=list)
    unresolved_refs: list[str] = field(default_factory=list)
    decode_failures: int = 0
    partial: bool = False

    @property
    def total_amount_sat(self) -> int:
        return self.total_amount_msat // MSATS_PER_SAT

    def stage(self, name: str) -> StageReport | None:
        for report in self.stages:
            if report.name == name:
                return report
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_references": self.total_references,
            "total_targets": self.total_targets,
            "total_notes": self.total_notes,
            "total_zaps": self.total_zaps,
            "total_amount_msat": self.total_amount_msat,
            "total_amount_sat": self.total_amount_sat,
            "unique_zappers": self.unique_zappers,
            "top_zappers": [z.to_dict() for z in self.top_zappers],
            "top_targets": [t.to_dict() for t in self.top_targets],
            "targets": [t.to_dict() for t in self.targets.values()],
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "verification": self.verification.to_dict() if self.verification else None,
            "stages": [s.to_dict() for s in self.stages],
            "unresolved_refs": list(self.unresolved_refs),
            "decode_failures": self.decode_failures,
            "partial": self.partial,
        }
