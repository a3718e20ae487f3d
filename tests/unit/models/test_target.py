"""Unit tests for models.target module."""

from __future__ import annotations

import pytest

from zapstats.models.constants import TargetType
from zapstats.models.target import TargetRef

from fixtures.events import AUTHOR, LIVE_COORDINATE, NOTE_ID


class TestTargetRef:
    """Event and address targets."""

    def test_event_target(self) -> None:
        target = TargetRef(NOTE_ID, "note1xyz", TargetType.EVENT)
        assert target.tag_name == "e"
        assert target.kind is None
        assert target.author is None
        assert target.identifier is None
        assert target.relays == ()

    def test_address_target(self) -> None:
        target = TargetRef(LIVE_COORDINATE, "naddr1xyz", TargetType.ADDRESS)
        assert target.tag_name == "a"
        assert target.kind == 30311
        assert target.author == AUTHOR
        assert target.identifier == "stream-1"

    def test_identifier_may_contain_colons(self) -> None:
        target = TargetRef(f"30023:{AUTHOR}:a:b:c", "ref", TargetType.ADDRESS)
        assert target.identifier == "a:b:c"

    def test_event_target_requires_hex(self) -> None:
        with pytest.raises(ValueError, match="64 hex"):
            TargetRef("not-hex", "ref", TargetType.EVENT)

    def test_address_target_requires_coordinate(self) -> None:
        with pytest.raises(ValueError, match="kind:pubkey:d"):
            TargetRef("30311-nope", "ref", TargetType.ADDRESS)

    def test_hashable(self) -> None:
        a = TargetRef(NOTE_ID, "note1xyz", TargetType.EVENT)
        b = TargetRef(NOTE_ID, "note1xyz", TargetType.EVENT)
        assert {a, b} == {a}
