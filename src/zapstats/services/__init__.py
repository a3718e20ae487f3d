"""zapstats services.

Services are the top layer, depending on [zapstats.core][zapstats.core],
[zapstats.engine][zapstats.engine], [zapstats.nips][zapstats.nips],
[zapstats.utils][zapstats.utils] and [zapstats.models][zapstats.models].
Each service extends [BaseService][zapstats.core.base_service.BaseService]
and implements ``async def run()``.

Attributes:
    LiveSession: Follows one note or live event over relay subscriptions and
        keeps its zap totals, top payers and chat feed current.
    StatsService: Recomputes historical statistics for many targets and
        ranks them by composite score.

Examples:
    ```python
    from zapstats.services import StatsService

    service = StatsService.from_yaml("config/stats.yaml")
    async with service:
        await service.run()
    print(service.latest.to_dict())
    ```
"""

from .live import LiveConfig, LiveSession
from .stats import (
    Stats,
    StatsCalculator,
    StatsConfig,
    StatsService,
    compute_stats,
)


__all__ = [
    "LiveConfig",
    "LiveSession",
    "Stats",
    "StatsCalculator",
    "StatsConfig",
    "StatsService",
    "compute_stats",
]
