"""Core layer providing the foundation for all zapstats services.

Depends only on ``zapstats.models`` and ``zapstats.utils`` and is depended
upon by ``zapstats.engine`` and ``zapstats.services``.

Attributes:
    BaseService: Abstract generic base class with lifecycle management
        ([run()][zapstats.core.base_service.BaseService.run] /
        [run_forever()][zapstats.core.base_service.BaseService.run_forever] /
        shutdown), factory methods and Prometheus metrics integration.
    RelayConnectionManager: Per-subscription state machine with bounded
        reconnect. See [RelayConnectionManager][zapstats.core.relays.RelayConnectionManager].
    Logger: Structured logger supporting key=value and JSON output modes.
        See [Logger][zapstats.core.logger.Logger].
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
        See [MetricsServer][zapstats.core.metrics.MetricsServer].
    YAML: Safe YAML loading. See [load_yaml()][zapstats.core.yaml.load_yaml].

Examples:
    ```python
    from zapstats.core import Logger, RelayConnectionManager, NostrSdkTransport

    manager = RelayConnectionManager(NostrSdkTransport(["wss://nos.lol"]))
    ```
"""

from .base_service import (
    BaseService,
    BaseServiceConfig,
    ConfigT,
)
from .exceptions import (
    ConfigurationError,
    DecodeError,
    NoRelaysReachableError,
    NoTargetsResolvedError,
    ReferenceResolutionError,
    RelayConnectionError,
    StatsComputationError,
    SubscriptionFailedError,
    ZapStatsError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    SUBSCRIPTION_STATE,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .relays import (
    NostrSdkTransport,
    ReconnectConfig,
    RelayConnectionManager,
    RelayTransport,
    SubscriptionHandle,
    SubscriptionState,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "SUBSCRIPTION_STATE",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "DecodeError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "NoRelaysReachableError",
    "NoTargetsResolvedError",
    "NostrSdkTransport",
    "ReconnectConfig",
    "ReferenceResolutionError",
    "RelayConnectionError",
    "RelayConnectionManager",
    "RelayTransport",
    "StatsComputationError",
    "StructuredFormatter",
    "SubscriptionFailedError",
    "SubscriptionHandle",
    "SubscriptionState",
    "ZapStatsError",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
