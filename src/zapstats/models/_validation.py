"""Field checks run from ``__post_init__`` of the frozen zapstats models.

Not public API. Relay data is untrusted, so models reject malformed field
values when they are built instead of when they are aggregated.
"""

from __future__ import annotations

import re
from typing import Any


_HEX64 = re.compile(r"[0-9a-f]{64}")


def _type_name(value: Any) -> str:
    return type(value).__name__


def validate_non_negative_int(value: Any, name: str) -> None:
    """Accept ``int`` values >= 0; ``bool`` is rejected even though it subclasses ``int``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {_type_name(value)}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def validate_str(value: Any, name: str) -> None:
    """Accept any ``str`` free of NUL characters."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {_type_name(value)}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    validate_str(value, name)
    if value == "":
        raise ValueError(f"{name} must not be empty")


def is_hex64(value: Any) -> bool:
    """True for a lowercase 64-character hex string (event ids and pubkeys)."""
    return isinstance(value, str) and _HEX64.fullmatch(value) is not None
