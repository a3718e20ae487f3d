"""Batch statistics package.

Re-exports all public symbols::

    from zapstats.services.stats import StatsService, StatsConfig, compute_stats
"""

from .configs import StatsConfig
from .service import StatsCalculator, StatsService, compute_stats
from .utils import DateRange, Stage, StageReport, Stats, TargetNote, TargetStats


__all__ = [
    "DateRange",
    "Stage",
    "StageReport",
    "Stats",
    "StatsCalculator",
    "StatsConfig",
    "StatsService",
    "TargetNote",
    "TargetStats",
    "compute_stats",
]
