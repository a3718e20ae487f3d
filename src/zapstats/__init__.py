r"""zapstats -- zap statistics over the Nostr relay network.

Ingests NIP-57 zap receipts and NIP-53 live chat from relays and keeps
correct, incrementally updated totals, top payers and target rankings while
relays disconnect, events arrive out of order and duplicates are replayed.

Imports flow strictly downward:

```text
                services        Live session, batch statistics
               /        \
           engine      core     Aggregation, dedup, verifier | relays, base service, logging
               \   |    /
             nips     utils     NIP-01/19/53/57 decoding | nostr-sdk helpers
                \     /
                models          Frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from zapstats import LiveSession``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("zapstats")

__all__ = [
    "AccountingVerifier",
    "AggregationEngine",
    "BaseService",
    "ChatMessage",
    "EventDeduplicator",
    "LiveConfig",
    "LiveSession",
    "Logger",
    "ProfileMetadata",
    "RelayConnectionManager",
    "Stats",
    "StatsConfig",
    "StatsService",
    "TargetRef",
    "ZapReceipt",
    "compute_stats",
    "decode_zap_receipt",
    "resolve_reference",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("zapstats.core", "BaseService"),
    "Logger": ("zapstats.core", "Logger"),
    "RelayConnectionManager": ("zapstats.core", "RelayConnectionManager"),
    "AccountingVerifier": ("zapstats.engine", "AccountingVerifier"),
    "AggregationEngine": ("zapstats.engine", "AggregationEngine"),
    "EventDeduplicator": ("zapstats.engine", "EventDeduplicator"),
    "ChatMessage": ("zapstats.models", "ChatMessage"),
    "ProfileMetadata": ("zapstats.models", "ProfileMetadata"),
    "TargetRef": ("zapstats.models", "TargetRef"),
    "ZapReceipt": ("zapstats.models", "ZapReceipt"),
    "decode_zap_receipt": ("zapstats.nips", "decode_zap_receipt"),
    "resolve_reference": ("zapstats.nips", "resolve_reference"),
    "LiveConfig": ("zapstats.services", "LiveConfig"),
    "LiveSession": ("zapstats.services", "LiveSession"),
    "Stats": ("zapstats.services", "Stats"),
    "StatsConfig": ("zapstats.services", "StatsConfig"),
    "StatsService": ("zapstats.services", "StatsService"),
    "compute_stats": ("zapstats.services", "compute_stats"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'zapstats' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
