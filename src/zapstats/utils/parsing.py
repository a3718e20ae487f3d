"""Tolerant bulk parsing of relay events into model instances.

Relays return whatever they like; a single malformed event must not lose the
rest of a batch. [parse_events][zapstats.utils.parsing.parse_events] calls a
parser per event, keeps the successes and counts the failures.

Examples:
    ```python
    from zapstats.nips.nip01 import parse_profile
    from zapstats.utils.parsing import parse_events

    profiles, failed = parse_events(events, parse_profile)
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from nostr_sdk import Event as NostrEvent

logger = logging.getLogger(__name__)

_M = TypeVar("_M")


def parse_events(
    events: Iterable[NostrEvent],
    parser: Callable[[NostrEvent], _M],
) -> tuple[list[_M], int]:
    """Parse events, skipping the ones the parser rejects.

    ``ValueError`` (``DecodeError`` included) and ``TypeError`` raised by
    *parser* are logged at DEBUG and counted; anything else propagates.

    Returns:
        ``(parsed, failed_count)``.
    """
    name = getattr(parser, "__name__", repr(parser))
    parsed: list[_M] = []
    failed = 0
    for event in events:
        try:
            parsed.append(parser(event))
        except (ValueError, TypeError) as e:
            failed += 1
            logger.debug("event_parse_failed parser=%s error=%s", name, e)
    return parsed, failed
