"""
Pytest configuration and shared fixtures for zapstats tests.

Provides:
- Mock event factories (via ``fixtures.events``)
- Engine and receipt fixtures
- An AsyncMock event fetcher
"""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from zapstats.engine.aggregation import AggregationEngine
from zapstats.models.zap import ZapReceipt

from fixtures.events import NOTE_ID, PAYER_A, PAYER_B, hex_id


pytest_plugins = ["fixtures.events"]


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def engine() -> AggregationEngine:
    """A fresh engine with a top-3 watch list."""
    return AggregationEngine(top_n=3)


@pytest.fixture
def receipts() -> list[ZapReceipt]:
    """Three receipts on one note from two payers (A: 3000 msat, B: 2000 msat)."""
    return [
        ZapReceipt(hex_id(1), NOTE_ID, 1000, PAYER_A, "first", 100),
        ZapReceipt(hex_id(2), NOTE_ID, 2000, PAYER_B, "second", 200),
        ZapReceipt(hex_id(3), NOTE_ID, 2000, PAYER_A, "third", 300),
    ]


@pytest.fixture
def mock_fetcher() -> AsyncMock:
    """An EventFetcher returning no events unless configured."""
    fetcher = AsyncMock()
    fetcher.fetch_events = AsyncMock(return_value=[])
    return fetcher
