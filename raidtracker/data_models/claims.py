"""
Typed payloads for the tick claim workflow.

Each operation gets its own variant so required fields are checked once,
at construction, before any database work starts.
"""

from dataclasses import dataclass
from typing import Tuple

from raidtracker.utils.exceptions import InvalidRequestError


def _require_ids(character_id: int, raid_id: int) -> None:
    if not character_id:
        raise InvalidRequestError("No character selected")
    if not raid_id:
        raise InvalidRequestError("No raid selected")


def _as_tick(tick) -> int:
    try:
        return int(tick)
    except (TypeError, ValueError):
        raise InvalidRequestError("Ticks must be whole numbers")


def _normalize_ticks(ticks) -> Tuple[int, ...]:
    normalized = tuple(sorted({_as_tick(tick) for tick in ticks or ()}))
    if not normalized:
        raise InvalidRequestError("No ticks selected")
    if normalized[0] < 0:
        raise InvalidRequestError("Ticks must not be negative")
    return normalized


@dataclass(frozen=True)
class TickRequest:
    """A character asking to be credited for one or more ticks of a raid."""
    character_id: int
    raid_id: int
    ticks: Tuple[int, ...]

    def __post_init__(self):
        _require_ids(self.character_id, self.raid_id)
        object.__setattr__(self, 'ticks', _normalize_ticks(self.ticks))


@dataclass(frozen=True)
class TickDecision:
    """An officer approving or rejecting a single claimed tick."""
    character_id: int
    raid_id: int
    tick: int

    def __post_init__(self):
        _require_ids(self.character_id, self.raid_id)
        if self.tick is None:
            raise InvalidRequestError("A valid tick is required")
        tick = _as_tick(self.tick)
        if tick < 0:
            raise InvalidRequestError("A valid tick is required")
        object.__setattr__(self, 'tick', tick)


@dataclass(frozen=True)
class TickRemoval:
    """An officer removing ticks from a player's whole roster."""
    character_id: int
    raid_id: int
    ticks: Tuple[int, ...]

    def __post_init__(self):
        _require_ids(self.character_id, self.raid_id)
        object.__setattr__(self, 'ticks', _normalize_ticks(self.ticks))
