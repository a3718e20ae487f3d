"""zapstats exception hierarchy.

Typed exceptions let callers separate per-event problems (skip and count)
from per-stream problems (retry) and whole-operation failures (escalate),
while ``CancelledError`` keeps propagating untouched.

Exception hierarchy:

```text
ZapStatsError (base -- never raised directly)
├── ConfigurationError          -- config validation, bad YAML
├── DecodeError                 -- malformed receipt, invoice, profile or chat event
├── ReferenceResolutionError    -- unrecognized target reference
│   └── NoTargetsResolvedError  -- every reference in a batch failed
├── RelayConnectionError        -- relay closed or unreachable (retryable)
│   ├── NoRelaysReachableError  -- no relay in the pool accepted the subscription
│   └── SubscriptionFailedError -- automatic reconnects exhausted
└── StatsComputationError       -- a critical batch stage failed
```

An accounting mismatch is deliberately not an exception: it is reported by
[AccountingVerifier][zapstats.engine.verifier.AccountingVerifier] and never
corrected automatically.
"""

from __future__ import annotations


class ZapStatsError(Exception):
    """Base exception for all zapstats errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(ZapStatsError):
    """Invalid or missing configuration (YAML, CLI flags)."""


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class DecodeError(ZapStatsError, ValueError):
    """An event could not be turned into a domain object.

    Always local to one event: callers log it, count it and move on.

    Attributes:
        event_id: Hex id of the offending event, when known.
    """

    def __init__(self, message: str, *, event_id: str | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------


class ReferenceResolutionError(ZapStatsError):
    """A target reference is not a hex id, note, nevent, naddr or coordinate.

    Attributes:
        reference: The raw reference as supplied by the caller.
    """

    def __init__(self, reference: str, reason: str = "unrecognized reference") -> None:
        super().__init__(f"{reason}: {reference!r}")
        self.reference = reference
        self.reason = reason


class NoTargetsResolvedError(ReferenceResolutionError):
    """None of the references in a batch could be resolved."""

    def __init__(self, references: list[str]) -> None:
        super().__init__(", ".join(references), "no target reference could be resolved")
        self.references = references


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class RelayConnectionError(ZapStatsError):
    """A relay subscription closed or could not be opened.

    Triggers the bounded reconnect policy of
    [RelayConnectionManager][zapstats.core.relays.RelayConnectionManager].
    """


class NoRelaysReachableError(RelayConnectionError):
    """Not a single relay of the configured pool accepted the request."""


class SubscriptionFailedError(RelayConnectionError):
    """A subscription exhausted its automatic reconnect attempts.

    Attributes:
        attempts: Number of reconnect attempts that were made.
    """

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Batch statistics
# ---------------------------------------------------------------------------


class StatsComputationError(ZapStatsError):
    """A stage that the batch result cannot do without has failed.

    Attributes:
        stage: Name of the failed stage.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"stage {stage!r} failed: {message}")
        self.stage = stage
