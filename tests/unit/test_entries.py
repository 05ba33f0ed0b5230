"""Unit tests for entry derivation.

Covers:
- Format and kind derivation from event descriptions
- Synthetic player ids for anonymous accounts
- Match, game and standing records
"""

from datetime import date, datetime, timezone

import pytest
from conftest import FakeTournament, make_bye, make_match

from mtgo_tracker.models.types import EventType, FormatType, ResultType
from mtgo_tracker.services.ingestion.entries import (
    BYE_RECORD,
    EventEntry,
    MalformedEventError,
    MatchEntry,
    PlayerEntry,
    StandingEntry,
    get_event_type,
    get_format_type,
    is_excluded_event,
    parse_percentage,
    synthetic_player_id,
)
from mtgo_tracker.services.mtgo_client import SENTINEL_ID, PlayerRecord, StandingRecord


class TestFormatType:
    """Test format derivation."""

    def test_plain_format(self, classification_config):
        assert get_format_type("Modern Challenge 32", classification_config) == FormatType.MODERN

    def test_each_format_is_recognized(self, classification_config):
        for format_type in FormatType:
            description = f"{format_type.value} Preliminary"
            assert get_format_type(description, classification_config) == format_type

    def test_premodern_with_contraption(self, classification_config):
        """Premodern is matched before the generic scan."""
        description = "Premodern Contraption Showcase"
        assert get_format_type(description, classification_config) == FormatType.PREMODERN

    def test_premodern_is_not_modern(self, classification_config):
        assert get_format_type("Premodern League", classification_config) == FormatType.PREMODERN

    def test_unknown_format_raises(self, classification_config):
        with pytest.raises(MalformedEventError):
            get_format_type("Commander Challenge", classification_config)

    def test_matching_is_case_sensitive(self, classification_config):
        with pytest.raises(MalformedEventError):
            get_format_type("modern challenge", classification_config)


class TestEventType:
    """Test event kind derivation."""

    def test_plain_kind(self, classification_config):
        assert get_event_type("Pioneer Challenge 64", classification_config) == EventType.CHALLENGE

    def test_last_chance_is_qualifier(self, classification_config):
        """'Last Chance' implies a qualifier without naming it."""
        description = "Legacy Last Chance 12345"
        assert get_event_type(description, classification_config) == EventType.QUALIFIER

    def test_unknown_kind_raises(self, classification_config):
        with pytest.raises(MalformedEventError):
            get_event_type("Modern Open", classification_config)


class TestExcludedEvents:
    """Test non-tournament event detection."""

    @pytest.mark.parametrize(
        "name",
        ["Modern Queue", "Standard Draft", "Cube Draft Queue"],
    )
    def test_excluded(self, name, classification_config):
        assert is_excluded_event(name, classification_config)

    def test_tournament_not_excluded(self, classification_config):
        assert not is_excluded_event("Modern Challenge 32", classification_config)


class TestSyntheticPlayerId:
    """Test synthetic ids for anonymous players."""

    def test_stable_across_calls(self):
        assert synthetic_player_id("Dave") == synthetic_player_id("Dave")

    def test_negative_and_not_sentinel(self):
        for name in ["Dave", "Alice", "", "x" * 100, "名前"]:
            value = synthetic_player_id(name)
            assert value < 0
            assert value != SENTINEL_ID

    def test_different_names_differ(self):
        assert synthetic_player_id("Dave") != synthetic_player_id("Eve")

    def test_player_entry_uses_synthetic_id_for_sentinel(self):
        entry = PlayerEntry.from_record(PlayerRecord(id=SENTINEL_ID, name="Dave"))
        assert entry.id == synthetic_player_id("Dave")
        assert entry.is_synthetic

    def test_player_entry_keeps_real_id(self):
        entry = PlayerEntry.from_record(PlayerRecord(id=42, name="Alice"))
        assert entry.id == 42
        assert not entry.is_synthetic


class TestMatchEntry:
    """Test match and game derivation."""

    def test_bye_invariant(self, players):
        match = MatchEntry.from_record(1, make_bye(3, players["alice"]), players["alice"])

        assert match.is_bye
        assert match.opponent is None
        assert match.games == ()
        assert match.record == BYE_RECORD == "2-0-0"
        assert match.result == ResultType.WIN
        assert match.id is None

    def test_winner_side(self, players):
        alice, bob = players["alice"], players["bob"]
        record = make_match(101, 1, alice, bob, [alice, bob, alice])

        match = MatchEntry.from_record(1, record, alice)

        assert match.result == ResultType.WIN
        assert match.opponent == "Bob"
        assert match.record == "2-1-0"
        assert [g.result for g in match.games] == [
            ResultType.WIN,
            ResultType.LOSS,
            ResultType.WIN,
        ]

    def test_loser_side_mirrors(self, players):
        alice, bob = players["alice"], players["bob"]
        record = make_match(101, 1, alice, bob, [alice, bob, alice])

        match = MatchEntry.from_record(1, record, bob)

        assert match.result == ResultType.LOSS
        assert match.opponent == "Alice"
        assert match.record == "1-2-0"

    def test_draw(self, players):
        carol, dave = players["carol"], players["dave"]
        record = make_match(102, 1, carol, dave, [carol, dave, None])

        assert MatchEntry.from_record(1, record, carol).result == ResultType.DRAW
        assert MatchEntry.from_record(1, record, dave).result == ResultType.DRAW
        assert MatchEntry.from_record(1, record, dave).record == "1-1-1"


class TestStandingEntry:
    """Test standing derivation."""

    def test_percentages_are_parsed(self, standings, players):
        record = standings[0]
        matches = [
            MatchEntry.from_record(1, m, record.player) for m in record.previous_matches
        ]

        standing = StandingEntry.from_record(1, record, matches)

        assert standing.rank == 1
        assert standing.player == "Alice"
        assert standing.record == "2-0-0"
        assert standing.points == 6
        assert standing.omwp == pytest.approx(50.0)
        assert standing.gwp == pytest.approx(80.0)
        assert standing.wins == 2
        assert standing.draws == 0

    def test_parse_percentage(self):
        assert parse_percentage("66.67%") == pytest.approx(66.67)
        assert parse_percentage(" 0.00% ") == 0.0

    def test_bad_percentage_raises(self, players):
        record = StandingRecord(1, players["alice"], 0, "n/a", "0%", "0%", [])
        with pytest.raises(ValueError):
            StandingEntry.from_record(1, record, [])


class TestEventEntry:
    """Test event metadata."""

    def test_from_handle(self, tournament, classification_config):
        entry = EventEntry.from_handle(tournament, classification_config)

        assert entry.id == 111222
        assert entry.name == "Modern Challenge 32"
        assert entry.date == date(2024, 5, 4)
        assert entry.format == FormatType.MODERN
        assert entry.kind == EventType.CHALLENGE
        assert entry.rounds == 2
        assert entry.players == 4

    def test_invalid_id_raises(self, classification_config):
        handle = FakeTournament(
            id=0,
            description="Modern Challenge",
            start_time=datetime(2024, 5, 4, tzinfo=timezone.utc),
            players=[],
            standings=[],
        )
        with pytest.raises(MalformedEventError):
            EventEntry.from_handle(handle, classification_config)
