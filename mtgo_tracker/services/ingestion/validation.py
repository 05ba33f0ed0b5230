"""Consistency checks for a fully built standings table.

A failure here means the live client handed back an inconsistent snapshot,
usually because the tournament was enumerated while its proxies were being
refreshed. The caller must not retry the same read.
"""

from collections import defaultdict
from collections.abc import Sequence

from mtgo_tracker.services.ingestion.entries import MatchEntry, StandingEntry
from mtgo_tracker.services.mtgo_client.api import SENTINEL_ID


class StandingsValidationError(Exception):
    """Raised when a standings table violates an integrity rule."""

    def __init__(self, event_id: int, message: str):
        super().__init__(f"Event {event_id}: {message}")
        self.event_id = event_id


def validate_standings(event_id: int, standings: Sequence[StandingEntry]) -> None:
    """
    Check a standings table as a whole.

    Rules:
    - Ranks are unique
    - Player names are unique
    - points == 3 * wins + draws for every standing
    - A match id is referenced by at most two standings. A single reference
      is only allowed for a bye; two references must carry mirrored results.

    Raises:
        StandingsValidationError: On the first rule violated
    """
    ranks: set[int] = set()
    players: set[str] = set()
    references: dict[int, list[MatchEntry]] = defaultdict(list)

    for standing in standings:
        if standing.rank in ranks:
            raise StandingsValidationError(event_id, f"duplicate rank {standing.rank}")
        ranks.add(standing.rank)

        if standing.player in players:
            raise StandingsValidationError(
                event_id, f"duplicate player '{standing.player}'"
            )
        players.add(standing.player)

        expected = 3 * standing.wins + standing.draws
        if standing.points != expected:
            raise StandingsValidationError(
                event_id,
                f"'{standing.player}' has {standing.points} points, "
                f"expected {expected} from record {standing.record}",
            )

        for match in standing.matches:
            if match.id is None or match.id == SENTINEL_ID:
                continue
            references[match.id].append(match)

    for match_id, matches in references.items():
        if len(matches) > 2:
            raise StandingsValidationError(
                event_id, f"match {match_id} is referenced {len(matches)} times"
            )
        if len(matches) == 1:
            if not matches[0].is_bye:
                raise StandingsValidationError(
                    event_id,
                    f"match {match_id} for '{matches[0].player}' has no opponent entry",
                )
            continue

        first, second = matches
        if first.is_bye or second.is_bye or first.result.mirrored is not second.result:
            raise StandingsValidationError(
                event_id,
                f"match {match_id} results do not mirror "
                f"({first.player}: {first.result.value}, "
                f"{second.player}: {second.result.value})",
            )
