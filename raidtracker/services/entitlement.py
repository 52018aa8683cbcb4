"""
Entitlement Service

Read-only service that feeds the pure allocators from the ledger and the
roster: roll candidates for the loot roll and per-main currency split
meta for a raid. Nothing here writes to the database.
"""

from collections import Counter
from typing import Iterable, List, Optional

from sqlalchemy import select

from raidtracker.database.models import Character, Raid
from raidtracker.data_models.entitlement import RollCandidate, CurrencySplitEntry, CurrencyShare
from raidtracker.operations.attendance_ledger import AttendanceLedger
from raidtracker.operations.identity_resolver import IdentityResolver
from raidtracker.services.base import BaseService
from raidtracker.utils.currency_split import CurrencySplitAllocator
from raidtracker.utils.exceptions import NotFoundError
from raidtracker.utils.roll_range import RollRangeAllocator
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class EntitlementService(BaseService):
    """Roll ranges and currency splits for one guild."""

    def __init__(self, database, guild_id: int, ledger: Optional[AttendanceLedger] = None):
        super().__init__(database.async_session)
        self.db = database
        self.guild_id = guild_id
        self.ledger = ledger or AttendanceLedger(database, guild_id)
        self.resolver = self.ledger.resolver

    async def roll_candidates(self, character_ids: Iterable[int]) -> List[RollCandidate]:
        """
        Resolve the selected characters to their mains and build one
        candidate per distinct live main.

        Selecting a main and its box together still enters the player once.
        """
        async with self.get_session() as session:
            ownership = await self.resolver.ownership_map(session=session)
            main_ids = {IdentityResolver.resolve_in(ownership, cid) for cid in character_ids if cid}
            if not main_ids:
                return []

            mains = await self._live_mains(session, main_ids, "roll range")
            box_counts = Counter(ownership.values())

            return [
                RollCandidate(
                    character_id=main.id,
                    name=main.name,
                    ticket_count=RollRangeAllocator.ticket_count(main.ticket_allocation, main.attendance_30),
                    attendance_30=main.attendance_30 or 0,
                    box_count=box_counts.get(main.id, 0),
                    ticks_since_last_win=main.ticks_since_last_win or 0
                )
                for main in mains
            ]

    async def generate_roll_range(self, character_ids: Iterable[int], debug: bool = False) -> str:
        """Roll range line for the selected characters."""
        candidates = await self.roll_candidates(character_ids)
        line = RollRangeAllocator.generate(candidates, debug=debug)
        logger.info(f"Generated roll range for {len(candidates)} main(s), total {RollRangeAllocator.total_range(candidates)}")
        return line

    async def compute_meta(self, raid_id: int) -> List[CurrencySplitEntry]:
        """
        Ticket meta for every live main that attended the raid, in name order.

        A raid without attendance has no ticks and yields an empty list.
        """
        async with self.get_session() as session:
            raid = await session.get(Raid, raid_id)
            if raid is None or raid.guild_id != self.guild_id:
                raise NotFoundError("Raid", str(raid_id))

            total_ticks = await self.ledger.total_ticks(raid_id, session=session)
            if total_ticks == 0:
                return []

            ticks_by_main = await self.ledger.attended_ticks_by_main(raid_id, session=session)
            mains = await self._live_mains(session, ticks_by_main, f"currency split of raid {raid_id}")

            entries = []
            for main in mains:
                allocation = main.ticket_allocation if main.ticket_allocation is not None else main.base_ticket_allocation
                allocation = allocation or 0
                attended = len(ticks_by_main[main.id])
                entries.append(CurrencySplitEntry(
                    character_id=main.id,
                    name=main.name,
                    character_class=main.character_class,
                    total_ticket_allocation=allocation,
                    total_ticks=total_ticks,
                    attended_ticks=attended,
                    awarded_tickets=CurrencySplitAllocator.awarded_tickets(allocation, total_ticks, attended)
                ))
            return entries

    async def split(
        self,
        raid_id: int,
        amount: int,
        selected_ids: Optional[Iterable[int]] = None
    ) -> List[CurrencyShare]:
        """
        Split amount between the selected mains of a raid.

        Args:
            raid_id: Raid whose attendance earns the tickets
            amount: Currency units to distribute
            selected_ids: Characters to include (boxes count as their main);
                every attending main when omitted
        """
        entries = await self.compute_meta(raid_id)
        if selected_ids is not None:
            ownership = await self.resolver.ownership_map()
            wanted = {IdentityResolver.resolve_in(ownership, cid) for cid in selected_ids}
            entries = [entry for entry in entries if entry.character_id in wanted]

        shares = CurrencySplitAllocator.split(amount, entries)
        logger.info(f"Split {amount} between {len(shares)} main(s) for raid {raid_id}")
        return shares

    async def _live_mains(self, session, main_ids, purpose: str) -> List[Character]:
        """
        Load the live mains among main_ids in name order.

        Soft-deleted mains earn no entitlement in either allocator; each one
        skipped is logged so a missing player is never silent.
        """
        main_ids = set(main_ids)
        if not main_ids:
            return []

        result = await session.execute(
            select(Character)
            .where(Character.id.in_(main_ids), Character.guild_id == self.guild_id)
            .order_by(Character.name)
        )
        characters = result.scalars().all()

        unknown = main_ids - {character.id for character in characters}
        if unknown:
            logger.warning(f"Skipping unknown character id(s) {sorted(unknown)} in {purpose}")

        mains = []
        for character in characters:
            if character.is_deleted:
                logger.warning(f"Skipping deleted main {character.name} ({character.id}) in {purpose}")
                continue
            mains.append(character)
        return mains
