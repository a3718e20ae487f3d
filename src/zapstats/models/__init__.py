"""Pure data models (no network I/O).

```text
constants     EventKind, ServiceName, TargetType, ANONYMOUS_PUBKEY
zap           ZapReceipt (frozen)
chat          ChatMessage (frozen)
profile       ProfileMetadata (frozen)
target        TargetRef (frozen)
aggregates    ZapperAggregate, TargetBreakdown (engine-owned, mutable)
```
"""

from .aggregates import TargetBreakdown, ZapperAggregate
from .chat import ChatMessage
from .constants import (
    ANONYMOUS_PUBKEY,
    EVENT_KIND_MAX,
    MSATS_PER_SAT,
    EventKind,
    ServiceName,
    TargetType,
)
from .profile import ProfileMetadata, short_pubkey
from .target import TargetRef
from .zap import ZapReceipt


__all__ = [
    "ANONYMOUS_PUBKEY",
    "EVENT_KIND_MAX",
    "MSATS_PER_SAT",
    "ChatMessage",
    "EventKind",
    "ProfileMetadata",
    "ServiceName",
    "TargetBreakdown",
    "TargetRef",
    "TargetType",
    "ZapReceipt",
    "ZapperAggregate",
    "short_pubkey",
]
