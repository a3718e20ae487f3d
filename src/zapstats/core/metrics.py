"""
Prometheus instrumentation for zapstats services.

Every service shares the metric families below; they are labelled by
service name so the live session and the stats service can run in one
process. [BaseService][zapstats.core.base_service.BaseService] records cycle
outcomes on its own, and the relay layer reports subscription states.

Families:
    ``zapstats_service_info``: Which service the process runs.
    ``zapstats_service_gauge{service, name}``: Current values such as
        ``grand_total_msat``, ``tracked_targets`` and ``unique_payers``.
    ``zapstats_service_counter_total{service, name}``: Running totals such
        as ``events_received``, ``duplicates_dropped``, ``decode_failures``
        and ``reconnect_attempts``.
    ``zapstats_cycle_duration_seconds{service}``: Time spent in one
        ``run()`` cycle.
    ``zapstats_subscription_state{subscription, state}``: One-hot state of
        each relay subscription.

Nothing is served until [start_metrics_server()][zapstats.core.metrics.start_metrics_server]
is called with ``enabled: true``.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


SERVICE_INFO = Info("zapstats_service", "Service running in this process")

SERVICE_GAUGE = Gauge(
    "zapstats_service_gauge",
    "Current value of a named service measurement",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "zapstats_service_counter",
    "Running total of a named service event",
    ["service", "name"],
)

CYCLE_DURATION_SECONDS = Histogram(
    "zapstats_cycle_duration_seconds",
    "Wall time of one service run() cycle",
    ["service"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

SUBSCRIPTION_STATE = Gauge(
    "zapstats_subscription_state",
    "1 for the current state of each live subscription, 0 otherwise",
    ["subscription", "state"],
)


class MetricsConfig(BaseModel):
    """Where the scrape endpoint listens. With ``enabled`` off nothing is recorded either."""

    enabled: bool = Field(default=False, description="Record metrics and serve the endpoint")
    host: str = Field(default="127.0.0.1", description="Interface to bind")
    port: int = Field(default=9100, ge=1024, le=65535, description="TCP port to bind")
    path: str = Field(default="/metrics", description="URL path of the scrape endpoint")


class MetricsServer:
    """Serves the Prometheus text exposition over aiohttp.

    The server is inert when the config is disabled, so callers can always
    pair ``start()`` with ``stop()``.
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)
        return app

    async def start(self) -> None:
        """Bind ``host:port``. Does nothing when disabled or already started.

        Raises:
            OSError: The address cannot be bound.
        """
        if self._runner is not None or not self._config.enabled:
            return
        runner = web.AppRunner(self._build_app(), access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._config.host, self._config.port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Start a [MetricsServer][zapstats.core.metrics.MetricsServer]; the caller stops it."""
    server = MetricsServer(config if config is not None else MetricsConfig())
    await server.start()
    return server
