"""Enumerations and composite value types stored inside event rows."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class FormatType(str, Enum):
    """Constructed or limited format an event is played in."""

    STANDARD = "Standard"
    MODERN = "Modern"
    PIONEER = "Pioneer"
    VINTAGE = "Vintage"
    LEGACY = "Legacy"
    PAUPER = "Pauper"
    LIMITED = "Limited"
    PREMODERN = "Premodern"


class EventType(str, Enum):
    """Tournament structure, derived from the event description."""

    LEAGUE = "League"
    PRELIMINARY = "Preliminary"
    CHALLENGE = "Challenge"
    SHOWCASE = "Showcase"
    QUALIFIER = "Qualifier"


class ResultType(str, Enum):
    """Outcome of a match or game relative to one player."""

    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"

    @property
    def mirrored(self) -> "ResultType":
        """The same outcome seen from the opponent's side."""
        if self is ResultType.WIN:
            return ResultType.LOSS
        if self is ResultType.LOSS:
            return ResultType.WIN
        return ResultType.DRAW


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]


@dataclass(frozen=True)
class GameResult:
    """One game of a match, relative to the match's player."""

    id: int
    result: ResultType

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "result": self.result.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameResult":
        return cls(id=int(data["id"]), result=ResultType(data["result"]))


@dataclass(frozen=True)
class CardQuantityPair:
    """A card and how many copies a deck runs."""

    id: int
    name: str
    quantity: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CardQuantityPair":
        return cls(id=int(data["id"]), name=data["name"], quantity=int(data["quantity"]))
