"""Live session package.

Re-exports all public symbols::

    from zapstats.services.live import LiveSession, LiveConfig
"""

from .configs import LiveConfig
from .service import LiveSession


__all__ = [
    "LiveConfig",
    "LiveSession",
]
