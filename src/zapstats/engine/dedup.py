"""Per-stream event deduplication.

Every relay in the pool delivers its own copy of an event, and a reconnect
replays recent history. [EventDeduplicator][zapstats.engine.dedup.EventDeduplicator]
is the gate that lets exactly one copy of each event id through per logical
stream (``"zaps:<target>"``, ``"chat:<target>"``).
"""

from __future__ import annotations

import threading


class EventDeduplicator:
    """Thread-safe set of seen event ids, partitioned by stream key.

    Safe for concurrent writers: nostr-sdk may invoke notification handlers
    from its own threads while the asyncio side also delivers. Entries are
    kept for the lifetime of the owning session; there is no eviction.

    Examples:
        ```python
        dedup = EventDeduplicator()
        dedup.seen("zaps:note1", "ab" * 32)  # False (first delivery)
        dedup.seen("zaps:note1", "ab" * 32)  # True  (duplicate)
        dedup.seen("chat:note1", "ab" * 32)  # False (different stream)
        ```
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seen: dict[str, set[str]] = {}

    def seen(self, stream_key: str, event_id: str) -> bool:
        """Record *event_id* for *stream_key* and report whether it was already there."""
        with self._lock:
            ids = self._seen.setdefault(stream_key, set())
            if event_id in ids:
                return True
            ids.add(event_id)
            return False

    def count(self, stream_key: str) -> int:
        with self._lock:
            return len(self._seen.get(stream_key, ()))

    def forget(self, stream_key: str) -> None:
        """Drop everything recorded for one stream (its owner was torn down)."""
        with self._lock:
            self._seen.pop(stream_key, None)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(ids) for ids in self._seen.values())
