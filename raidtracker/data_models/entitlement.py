"""
Entitlement data models for roll ranges and currency splits.

Provides immutable data transfer objects consumed by the pure allocators.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RollCandidate:
    """A main character entered into a loot roll."""
    character_id: int
    name: str
    ticket_count: int
    attendance_30: int = 0
    box_count: int = 0
    ticks_since_last_win: int = 0

    @property
    def weight(self) -> int:
        return self.ticket_count + 1


@dataclass(frozen=True)
class RollRange:
    """Contiguous slice of the roll assigned to one candidate."""
    character_id: int
    name: str
    lower: int
    upper: int


@dataclass(frozen=True)
class CurrencySplitEntry:
    """Per-main ticket meta for one raid."""
    character_id: int
    name: str
    character_class: str
    total_ticket_allocation: int
    total_ticks: int
    attended_ticks: int
    awarded_tickets: int


@dataclass(frozen=True)
class CurrencyShare:
    """Currency handed to one main."""
    character_id: int
    name: str
    split_amount: int
