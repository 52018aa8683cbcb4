from fractions import Fraction
from typing import Iterable, List, Sequence
from raidtracker.data_models.entitlement import CurrencySplitEntry, CurrencyShare
from raidtracker.utils.exceptions import InvalidRequestError

class CurrencySplitAllocator:
    """Splits a lump of raid currency between mains in proportion to earned tickets"""

    @staticmethod
    def awarded_tickets(total_ticket_allocation: int, total_ticks: int, attended_ticks: int) -> int:
        """
        Tickets earned in one raid

        Args:
            total_ticket_allocation: Tickets a full-attendance main earns
            total_ticks: Ticks in the raid
            attended_ticks: Ticks the main attended through any character

        Returns:
            floor(allocation / total_ticks * attended), 0 for a raid without ticks
        """
        if total_ticks <= 0:
            return 0
        return (total_ticket_allocation or 0) * attended_ticks // total_ticks

    @staticmethod
    def split(amount: int, entries: Sequence[CurrencySplitEntry]) -> List[CurrencyShare]:
        """
        Distribute amount proportionally to awarded tickets

        Each share is floored, then the units left over go one at a time to
        the entries with the largest fractional remainder (ties by name).
        The shares always sum to amount.

        Args:
            amount: Whole units of currency to split
            entries: Selected mains with their awarded tickets

        Returns:
            One share per entry, in name order

        Raises:
            InvalidRequestError: If amount is negative
        """
        if amount is None or amount < 0:
            raise InvalidRequestError("Split amount must not be negative")

        entries = sorted(entries, key=lambda e: (e.name.lower(), e.character_id))
        if not entries:
            return []

        weights = [max(e.awarded_tickets, 0) for e in entries]
        total_weight = sum(weights)
        if total_weight == 0:
            weights = [1] * len(entries)
            total_weight = len(entries)

        exact = [Fraction(amount * w, total_weight) for w in weights]
        floored = [int(share) for share in exact]
        remainder = amount - sum(floored)

        # Largest fractional part first, then name
        order = sorted(
            range(len(entries)),
            key=lambda i: (-(exact[i] - floored[i]), entries[i].name.lower(), entries[i].character_id)
        )
        for i in order[:remainder]:
            floored[i] += 1

        return [
            CurrencyShare(character_id=entry.character_id, name=entry.name, split_amount=share)
            for entry, share in zip(entries, floored)
        ]

    @staticmethod
    def summary(total_tickets: int, shares: Iterable[CurrencyShare]) -> str:
        """Chat line listing each main's share"""
        parts = [f"{share.name} received {share.split_amount}" for share in shares]
        return f"{total_tickets} units split: " + " | ".join(parts)
