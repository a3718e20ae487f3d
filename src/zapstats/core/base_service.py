"""
Service lifecycle shared by the live session and the batch statistics service.

A service is configured by a pydantic model, logs through
[Logger][zapstats.core.logger.Logger] under its ``SERVICE_NAME`` and is used
as an async context manager. Inside the context it either performs a single
[run()][zapstats.core.base_service.BaseService.run] or repeats it with
[run_forever()][zapstats.core.base_service.BaseService.run_forever]:

```text
__aenter__ ──> run() ──ok──> wait(interval) ──> run() ...
                 │                  │
                 └──error──> failures += 1 ──(failures == cap)──> stop
                                    │
                    request_shutdown() ──> stop
```

Services hold no process-wide state. Each instance builds (or is handed) its
own [AggregationEngine][zapstats.engine.aggregation.AggregationEngine] and
relay collaborators and releases them in ``__aexit__``.

See Also:
    [LiveSession][zapstats.services.live.LiveSession]: Follows one target.
    [StatsService][zapstats.services.stats.StatsService]: Periodic batch
        recomputation.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .yaml import load_yaml


if TYPE_CHECKING:
    from types import TracebackType

    from zapstats.models.constants import ServiceName


class BaseServiceConfig(BaseModel):
    """Settings every service understands; service configs extend it."""

    interval: float = Field(
        default=60.0,
        ge=1.0,
        description="Pause between two run() cycles, in seconds",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Give up after this many failed cycles in a row (0 = never)",
    )
    json_logs: bool = Field(default=False, description="Emit JSON log records")
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Lifecycle, logging and metrics for one zapstats service.

    Subclasses define ``SERVICE_NAME`` (log name and metric label) and
    ``CONFIG_CLASS`` (parsed by the factories), and implement
    [run()][zapstats.core.base_service.BaseService.run].
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, config: ConfigT | None = None) -> None:
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME, json_output=self._config.json_logs)
        self._shutdown_event = asyncio.Event()
        self._consecutive_failures = 0
        self._last_error: BaseException | None = None

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def consecutive_failures(self) -> int:
        """Failed cycles since the last successful one."""
        return self._consecutive_failures

    @property
    def last_error(self) -> BaseException | None:
        """Error of the most recent failed cycle, cleared by a successful one."""
        return self._last_error

    @abstractmethod
    async def run(self) -> None:
        """Do one unit of work.

        Long-running implementations poll
        [is_running][zapstats.core.base_service.BaseService.is_running] or
        sleep through [wait()][zapstats.core.base_service.BaseService.wait]
        so a shutdown request ends them promptly.
        """

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Ask the service to stop; safe to call from a signal handler."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float | None) -> bool:  # noqa: ASYNC109
        """Sleep for *timeout* seconds unless shutdown is requested first.

        Returns:
            ``True`` when woken by a shutdown request, ``False`` on timeout.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Cycling
    # -------------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Repeat [run()][zapstats.core.base_service.BaseService.run] every ``interval`` seconds.

        Returns when shutdown is requested or after
        ``max_consecutive_failures`` failed cycles in a row. A successful
        cycle resets the failure count. ``CancelledError``,
        ``KeyboardInterrupt`` and ``SystemExit`` are never caught.
        """
        cap = self._config.max_consecutive_failures
        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": str(self.SERVICE_NAME)})
        self._logger.info("service_loop_started", interval=self._config.interval, failure_cap=cap)

        while self.is_running:
            if not await self._cycle() and 0 < cap <= self._consecutive_failures:
                self._logger.critical(
                    "failure_cap_reached",
                    failures=self._consecutive_failures,
                    last_error=str(self._last_error),
                )
                break
            if await self.wait(self._config.interval):
                break

        self._logger.info("service_loop_stopped")

    async def _cycle(self) -> bool:
        """Run once, record the outcome and return whether it succeeded."""
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # Intentionally broad: one failed cycle must not end the loop
            self._consecutive_failures += 1
            self._last_error = e
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            self.set_gauge("consecutive_failures", self._consecutive_failures)
            self._logger.error(
                "cycle_failed",
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self._consecutive_failures,
            )
            return False

        elapsed = time.monotonic() - started
        self._consecutive_failures = 0
        self._last_error = None
        self.inc_counter("cycles_success")
        self.set_gauge("consecutive_failures", 0)
        self.set_gauge("last_cycle_timestamp", time.time())
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(elapsed)
        self._logger.info("cycle_completed", duration_s=round(elapsed, 2))
        return True

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, **kwargs: Any) -> Self:
        """Build the service from a YAML file (see [load_yaml()][zapstats.core.yaml.load_yaml])."""
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> Self:
        """Build the service from a mapping; *kwargs* go to the constructor (callbacks, fetchers)."""
        return cls(config=cast("ConfigT", cls.CONFIG_CLASS(**data)), **kwargs)

    # -------------------------------------------------------------------------
    # Async context
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped", error=type(exc_val).__name__ if exc_val else None)

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set ``zapstats_service_gauge{service, name}``; no-op with metrics off."""
        if self._config.metrics.enabled:
            SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Add to ``zapstats_service_counter_total{service, name}``; no-op with metrics off."""
        if self._config.metrics.enabled:
            SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
