"""
Unit tests for core.logger module.

Tests:
- format_kv_pairs() quoting, escaping and truncation
- StructuredFormatter rendering of structured and plain records
- Logger levels, bound context and JSON output
"""

import json
import logging

import pytest

from zapstats.core.logger import Logger, StructuredFormatter, format_kv_pairs


# ============================================================================
# format_kv_pairs Tests
# ============================================================================


class TestFormatKvPairs:
    """Tests for format_kv_pairs() utility function."""

    def test_empty_dict(self) -> None:
        """Test formatting empty dictionary returns empty string."""
        assert format_kv_pairs({}) == ""

    def test_simple_values(self) -> None:
        """Test plain values are emitted unquoted."""
        assert format_kv_pairs({"target": "abc", "amount_msat": 21000}) == (
            " target=abc amount_msat=21000"
        )

    def test_value_with_space_quoted(self) -> None:
        """Test values containing spaces are wrapped in quotes."""
        assert format_kv_pairs({"message": "great post"}) == ' message="great post"'

    def test_quotes_escaped(self) -> None:
        """Test embedded double quotes are escaped."""
        assert format_kv_pairs({"m": 'say "hi"'}) == ' m="say \\"hi\\""'

    def test_empty_value_quoted(self) -> None:
        """Test empty strings stay visible."""
        assert format_kv_pairs({"reason": ""}) == ' reason=""'

    def test_truncation(self) -> None:
        """Test long values are truncated with a marker."""
        result = format_kv_pairs({"blob": "x" * 20}, max_value_length=5)
        assert "xxxxx...<truncated 15 chars>" in result

    def test_truncation_disabled(self) -> None:
        """Test max_value_length=None keeps the whole value."""
        assert format_kv_pairs({"k": "y" * 2000}, max_value_length=None) == " k=" + "y" * 2000

    def test_custom_prefix(self) -> None:
        assert format_kv_pairs({"a": 1}, prefix="") == "a=1"


# ============================================================================
# StructuredFormatter Tests
# ============================================================================


class TestStructuredFormatter:
    """Tests for the root handler formatter."""

    def test_structured_record(self) -> None:
        record = logging.LogRecord("live", logging.INFO, __file__, 1, "zap_applied", (), None)
        record.structured_kv = {"amount_msat": 1000}
        assert StructuredFormatter().format(record) == "info live zap_applied amount_msat=1000"

    def test_plain_record(self) -> None:
        record = logging.LogRecord(
            "zapstats.nips.nip57", logging.DEBUG, __file__, 1, "x=%s", ("1",), None
        )
        assert StructuredFormatter().format(record) == "debug zapstats.nips.nip57 x=1"


# ============================================================================
# Logger Tests
# ============================================================================


class TestLogger:
    """Tests for the Logger wrapper."""

    def test_name(self) -> None:
        assert Logger("stats").name == "stats"

    @pytest.mark.parametrize("level", ["debug", "info", "warning", "error", "critical"])
    def test_levels_attach_fields(self, level: str, caplog: pytest.LogCaptureFixture) -> None:
        logger = Logger("test_levels")
        with caplog.at_level(logging.DEBUG, logger="test_levels"):
            getattr(logger, level)("event_name", key="value")

        record = caplog.records[-1]
        assert record.levelname == level.upper()
        assert record.getMessage() == "event_name"
        assert record.structured_kv == {"key": "value"}

    def test_bound_context(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = Logger("test_bind").bind(target="note1xyz")
        with caplog.at_level(logging.INFO, logger="test_bind"):
            logger.info("subscription_active", relays=3)
        assert caplog.records[-1].structured_kv == {"target": "note1xyz", "relays": 3}

    def test_bind_does_not_modify_parent(self, caplog: pytest.LogCaptureFixture) -> None:
        parent = Logger("test_parent")
        parent.bind(target="x")
        with caplog.at_level(logging.INFO, logger="test_parent"):
            parent.info("plain")
        assert not hasattr(caplog.records[-1], "structured_kv")

    def test_long_values_truncated(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = Logger("test_trunc", max_value_length=4)
        with caplog.at_level(logging.INFO, logger="test_trunc"):
            logger.info("e", blob="abcdefgh", n=123456789)
        fields = caplog.records[-1].structured_kv
        assert fields["blob"].startswith("abcd...")
        assert fields["n"] == 123456789

    def test_json_output(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = Logger("test_json", json_output=True)
        with caplog.at_level(logging.INFO, logger="test_json"):
            logger.warning("zap_decode_failed", event_id="ff")
        data = json.loads(caplog.records[-1].getMessage())
        assert data["level"] == "warning"
        assert data["service"] == "test_json"
        assert data["message"] == "zap_decode_failed"
        assert data["event_id"] == "ff"
        assert "timestamp" in data

    def test_disabled_level_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = Logger("test_disabled")
        with caplog.at_level(logging.WARNING, logger="test_disabled"):
            logger.debug("hidden")
        assert caplog.records == []

    def test_exception_includes_traceback(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = Logger("test_exc")
        with caplog.at_level(logging.ERROR, logger="test_exc"):
            try:
                raise ValueError("boom")
            except ValueError:
                logger.exception("crashed")
        assert caplog.records[-1].exc_info is not None
