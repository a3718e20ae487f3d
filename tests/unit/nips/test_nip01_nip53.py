"""Unit tests for nips.nip01 (profiles) and nips.nip53 (live activities and chat)."""

from __future__ import annotations

import pytest

from zapstats.core.exceptions import DecodeError
from zapstats.models.profile import ProfileMetadata
from zapstats.nips.nip01 import newest_profiles, parse_profile
from zapstats.nips.nip53 import live_event_coordinate, parse_chat_message, parse_live_activity

from fixtures.events import (
    AUTHOR,
    LIVE_COORDINATE,
    PAYER_A,
    PAYER_B,
    hex_id,
    make_chat_event,
    make_mock_event,
    make_profile_event,
)


# ============================================================================
# NIP-01 profiles
# ============================================================================


class TestParseProfile:
    """Kind 0 parsing."""

    def test_valid(self) -> None:
        profile = parse_profile(make_profile_event(PAYER_A, name="alice", created_at=5))
        assert profile.pubkey == PAYER_A
        assert profile.name == "alice"
        assert profile.created_at == 5

    def test_wrong_kind(self) -> None:
        with pytest.raises(DecodeError, match="expected kind 0"):
            parse_profile(make_mock_event(kind=1))

    def test_malformed_content(self) -> None:
        with pytest.raises(DecodeError, match="malformed profile") as exc_info:
            parse_profile(make_profile_event(PAYER_A, content="not json", event_id=hex_id(3)))
        assert exc_info.value.event_id == hex_id(3)


class TestNewestProfiles:
    """Replaceable-event resolution."""

    def test_keeps_newest_per_pubkey(self) -> None:
        old = ProfileMetadata(PAYER_A, name="old", created_at=1)
        new = ProfileMetadata(PAYER_A, name="new", created_at=2)
        other = ProfileMetadata(PAYER_B, name="bob", created_at=1)
        result = newest_profiles([new, other, old])
        assert result == {PAYER_A: new, PAYER_B: other}

    def test_empty(self) -> None:
        assert newest_profiles([]) == {}


# ============================================================================
# NIP-53 live activities
# ============================================================================


class TestParseLiveActivity:
    """Kind 30311 parsing."""

    def test_valid(self) -> None:
        event = make_mock_event(
            kind=30311,
            pubkey=AUTHOR,
            tags=[
                ["d", "stream-1"],
                ["title", "Live coding"],
                ["status", "live"],
                ["streaming", "https://example.com/s.m3u8"],
            ],
        )
        activity = parse_live_activity(event)
        assert activity.coordinate == LIVE_COORDINATE
        assert activity.host_pubkey == AUTHOR
        assert activity.title == "Live coding"
        assert activity.status == "live"
        assert activity.summary == ""

    def test_missing_d_tag(self) -> None:
        with pytest.raises(DecodeError, match="no d tag"):
            parse_live_activity(make_mock_event(kind=30311))

    def test_wrong_kind(self) -> None:
        with pytest.raises(DecodeError, match="expected kind 30311"):
            parse_live_activity(make_mock_event(kind=1))

    def test_coordinate_helper(self) -> None:
        assert live_event_coordinate(AUTHOR, "stream-1") == LIVE_COORDINATE


class TestParseChatMessage:
    """Kind 1311 parsing."""

    def test_valid(self) -> None:
        message = parse_chat_message(make_chat_event(hex_id(1), content="gm", created_at=9))
        assert message.id == hex_id(1)
        assert message.author_pubkey == PAYER_B
        assert message.content == "gm"
        assert message.timestamp == 9
        assert message.target_id == LIVE_COORDINATE

    def test_without_a_tag(self) -> None:
        message = parse_chat_message(make_mock_event(event_id=hex_id(2), kind=1311))
        assert message.target_id == ""

    def test_wrong_kind(self) -> None:
        with pytest.raises(DecodeError, match="expected kind 1311"):
            parse_chat_message(make_mock_event(kind=9735))

    def test_null_byte_content(self) -> None:
        event = make_chat_event(hex_id(1), content="a\x00b")
        with pytest.raises(DecodeError, match="malformed chat"):
            parse_chat_message(event)
