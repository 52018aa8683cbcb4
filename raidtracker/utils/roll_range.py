from typing import Iterable, List
from raidtracker.data_models.entitlement import RollCandidate, RollRange

class RollRangeAllocator:
    """Turns ticket counts into contiguous ranges for the in-game /random command"""

    SEPARATOR = " | "

    @staticmethod
    def ticket_count(ticket_allocation, attendance_30) -> int:
        """
        Tickets a main rolls with

        Args:
            ticket_allocation: Allocated ticket total, None when not yet computed
            attendance_30: Recent attendance percentage used as fallback

        Returns:
            Ticket count (never negative)
        """
        count = ticket_allocation if ticket_allocation is not None else attendance_30
        return max(int(count or 0), 0)

    @staticmethod
    def allocate(candidates: Iterable[RollCandidate]) -> List[RollRange]:
        """
        Assign each candidate the slice [cumulative + 1, cumulative + weight]

        Candidates are ordered by name, case-insensitive, so anyone can
        recompute the same ranges from the same inputs.

        Args:
            candidates: Mains entering the roll

        Returns:
            Ranges in name order, gap-free and non-overlapping
        """
        ordered = sorted(candidates, key=lambda c: (c.name.lower(), c.character_id))
        ranges = []
        cumulative = 0
        for candidate in ordered:
            lower = cumulative + 1
            upper = cumulative + candidate.weight
            ranges.append(RollRange(
                character_id=candidate.character_id,
                name=candidate.name,
                lower=lower,
                upper=upper
            ))
            cumulative = upper
        return ranges

    @staticmethod
    def generate(candidates: Iterable[RollCandidate], debug: bool = False) -> str:
        """
        Render the roll ranges as one line for chat

        Args:
            candidates: Mains entering the roll
            debug: Append attendance, box count and ticks since last win

        Returns:
            Segments like "name 1-10" joined by " | "
        """
        candidates = list(candidates)
        by_id = {c.character_id: c for c in candidates}
        segments = []
        for roll_range in RollRangeAllocator.allocate(candidates):
            segment = f"{roll_range.name} {roll_range.lower}-{roll_range.upper}"
            if debug:
                candidate = by_id[roll_range.character_id]
                segment += (
                    f" (att {candidate.attendance_30}%, boxes {candidate.box_count + 1}, "
                    f"since win {candidate.ticks_since_last_win})"
                )
            segments.append(segment)
        return RollRangeAllocator.SEPARATOR.join(segments)

    @staticmethod
    def total_range(candidates: Iterable[RollCandidate]) -> int:
        """Upper bound of the whole roll (sum of weights)"""
        return sum(c.weight for c in candidates)
