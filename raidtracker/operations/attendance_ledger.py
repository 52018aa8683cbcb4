"""
Attendance Ledger

Stores confirmed per-tick attendance facts and derives per-raid views:
the attendance matrix, total ticks, ticks attended per main and the
raid list summaries.

Facts are written only by tick approval and removed only by rejection
or officer removal; everything else here is read-only.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set
from contextlib import asynccontextmanager
from sqlalchemy import select, delete, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.config import Config
from raidtracker.database.models import AttendanceFact, Character, Raid
from raidtracker.data_models.attendance import RaidSummary
from raidtracker.operations.identity_resolver import IdentityResolver
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class AttendanceLedger:
    """Attendance facts of one guild."""

    def __init__(self, database, guild_id: int, resolver: Optional[IdentityResolver] = None):
        self.db = database
        self.guild_id = guild_id
        self.resolver = resolver or IdentityResolver(database, guild_id)
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise opens a transaction that commits on exit.
        """
        if session:
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def record_attendance(
        self,
        character_id: int,
        raid_id: int,
        tick: int,
        recorded_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> bool:
        """
        Insert an attendance fact. Duplicates are no-ops.

        Returns:
            True if a new fact was written, False if it already existed
        """
        async with self._get_session_context(session) as s:
            existing = await s.execute(
                select(AttendanceFact.id).where(
                    AttendanceFact.character_id == character_id,
                    AttendanceFact.raid_id == raid_id,
                    AttendanceFact.tick_index == tick
                )
            )
            if existing.scalar_one_or_none() is not None:
                return False

            fact = AttendanceFact(character_id=character_id, raid_id=raid_id, tick_index=tick)
            if recorded_at is not None:
                fact.recorded_at = recorded_at

            s.add(fact)
            await s.flush()

            self.logger.debug(f"Recorded attendance for character {character_id} in raid {raid_id} tick {tick}")
            return True

    async def remove_attendance(
        self,
        character_id: int,
        raid_id: int,
        ticks: Iterable[int],
        include_boxes: bool = True,
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Delete attendance facts for the given ticks.

        With include_boxes the removal covers the character's main and every
        box of that main in a single statement, so the whole roster loses
        the ticks together or not at all.

        Returns:
            Number of facts removed
        """
        ticks = sorted(set(ticks))
        if not ticks:
            return 0

        async with self._get_session_context(session) as s:
            if include_boxes:
                character_ids = await self.resolver.main_group(character_id, session=s)
            else:
                character_ids = [character_id]

            result = await s.execute(
                delete(AttendanceFact).where(
                    AttendanceFact.raid_id == raid_id,
                    AttendanceFact.character_id.in_(character_ids),
                    AttendanceFact.tick_index.in_(ticks)
                )
            )
            removed = result.rowcount or 0

            self.logger.info(
                f"Removed {removed} attendance fact(s) in raid {raid_id} ticks {ticks} "
                f"for characters {character_ids}"
            )
            return removed

    async def normalize_tick_times(
        self,
        raid_id: int,
        threshold: Optional[timedelta] = None,
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Snap recorded_at of every (raid, tick) group whose spread exceeds the
        threshold to the group's earliest timestamp.

        This only affects when a tick is reported to have happened.

        Returns:
            Number of tick groups rewritten
        """
        if threshold is None:
            threshold = timedelta(minutes=Config.TICK_SKEW_THRESHOLD_MINUTES)

        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(
                    AttendanceFact.tick_index,
                    func.min(AttendanceFact.recorded_at),
                    func.max(AttendanceFact.recorded_at)
                )
                .where(AttendanceFact.raid_id == raid_id)
                .group_by(AttendanceFact.tick_index)
            )

            rewritten = 0
            for tick, earliest, latest in result.all():
                if earliest is None or latest is None:
                    continue
                if latest - earliest <= threshold:
                    continue

                await s.execute(
                    update(AttendanceFact)
                    .where(
                        AttendanceFact.raid_id == raid_id,
                        AttendanceFact.tick_index == tick
                    )
                    .values(recorded_at=earliest)
                    .execution_options(synchronize_session=False)
                )
                rewritten += 1
                self.logger.info(
                    f"Normalized tick {tick} of raid {raid_id}: spread {latest - earliest} snapped to {earliest}"
                )

            return rewritten

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def total_ticks(self, raid_id: int, session: Optional[AsyncSession] = None) -> int:
        """1 + the highest tick index seen for the raid, or 0 without attendance."""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(func.max(AttendanceFact.tick_index)).where(AttendanceFact.raid_id == raid_id)
            )
            max_tick = result.scalar()
            return 0 if max_tick is None else max_tick + 1

    async def ticks_attended(
        self,
        character_id: int,
        raid_id: int,
        session: Optional[AsyncSession] = None
    ) -> int:
        """Distinct ticks attended by the character's main or any of its boxes."""
        async with self._get_session_context(session) as s:
            character_ids = await self.resolver.main_group(character_id, session=s)
            result = await s.execute(
                select(func.count(func.distinct(AttendanceFact.tick_index))).where(
                    AttendanceFact.raid_id == raid_id,
                    AttendanceFact.character_id.in_(character_ids)
                )
            )
            return result.scalar() or 0

    async def attended_ticks_by_main(
        self,
        raid_id: int,
        session: Optional[AsyncSession] = None
    ) -> Dict[int, Set[int]]:
        """Map of main id to the set of ticks it attended through any character."""
        async with self._get_session_context(session) as s:
            ownership = await self.resolver.ownership_map(session=s)
            result = await s.execute(
                select(AttendanceFact.character_id, AttendanceFact.tick_index)
                .where(AttendanceFact.raid_id == raid_id)
            )

            ticks_by_main: Dict[int, Set[int]] = defaultdict(set)
            for character_id, tick in result.all():
                main_id = IdentityResolver.resolve_in(ownership, character_id)
                ticks_by_main[main_id].add(tick)
            return dict(ticks_by_main)

    async def attendance_matrix(
        self,
        raid_id: int,
        session: Optional[AsyncSession] = None
    ) -> Dict[int, Dict[int, Set[str]]]:
        """
        Per-main view of who was present at each tick.

        Every main that attended gets an entry for every tick of the raid
        (empty sets where absent). A box's presence adds both the main's
        name and the box's name; the sets are informational, not counts.
        """
        async with self._get_session_context(session) as s:
            ownership = await self.resolver.ownership_map(session=s)
            total = await self.total_ticks(raid_id, session=s)

            result = await s.execute(
                select(AttendanceFact.character_id, AttendanceFact.tick_index, Character.name)
                .join(Character, Character.id == AttendanceFact.character_id)
                .where(AttendanceFact.raid_id == raid_id)
                .order_by(AttendanceFact.tick_index, Character.name)
            )
            rows = result.all()

            main_ids = {IdentityResolver.resolve_in(ownership, character_id) for character_id, _, _ in rows}
            names = await self._names(main_ids, s)

            matrix: Dict[int, Dict[int, Set[str]]] = {}
            for character_id, tick, name in rows:
                main_id = IdentityResolver.resolve_in(ownership, character_id)
                if main_id not in matrix:
                    matrix[main_id] = {t: set() for t in range(total)}

                if main_id != character_id and names.get(main_id):
                    matrix[main_id][tick].add(names[main_id])
                matrix[main_id][tick].add(name)

            return matrix

    async def mains_at_tick(
        self,
        raid_id: int,
        tick: int,
        session: Optional[AsyncSession] = None
    ) -> List[Character]:
        """Mains present at a tick, directly or through a box, ordered by name."""
        async with self._get_session_context(session) as s:
            ownership = await self.resolver.ownership_map(session=s)
            result = await s.execute(
                select(AttendanceFact.character_id).where(
                    AttendanceFact.raid_id == raid_id,
                    AttendanceFact.tick_index == tick
                )
            )
            main_ids = {IdentityResolver.resolve_in(ownership, cid) for cid in result.scalars().all()}
            if not main_ids:
                return []

            result = await s.execute(
                select(Character).where(Character.id.in_(main_ids)).order_by(Character.name)
            )
            return list(result.scalars().all())

    async def raid_summaries(
        self,
        page: int = 0,
        page_size: int = 10,
        session: Optional[AsyncSession] = None
    ) -> List[RaidSummary]:
        """Raids of the guild, newest first, with tick and main counts."""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Raid)
                .where(Raid.guild_id == self.guild_id)
                .order_by(Raid.created_at.desc(), Raid.id.desc())
                .limit(page_size)
                .offset(page * page_size)
            )
            raids = result.scalars().all()
            if not raids:
                return []

            ownership = await self.resolver.ownership_map(session=s)
            raid_ids = [raid.id for raid in raids]
            result = await s.execute(
                select(AttendanceFact.raid_id, AttendanceFact.character_id, AttendanceFact.tick_index)
                .where(AttendanceFact.raid_id.in_(raid_ids))
            )

            max_tick: Dict[int, int] = {}
            mains: Dict[int, Set[int]] = defaultdict(set)
            for raid_id, character_id, tick in result.all():
                max_tick[raid_id] = max(max_tick.get(raid_id, -1), tick)
                mains[raid_id].add(IdentityResolver.resolve_in(ownership, character_id))

            return [
                RaidSummary(
                    raid_id=raid.id,
                    name=raid.name,
                    created_at=raid.created_at,
                    is_official=bool(raid.is_official),
                    total_ticks=max_tick.get(raid.id, -1) + 1,
                    total_mains=len(mains.get(raid.id, ())),
                )
                for raid in raids
            ]

    async def _names(self, character_ids, session: AsyncSession) -> Dict[int, str]:
        if not character_ids:
            return {}
        result = await session.execute(
            select(Character.id, Character.name).where(Character.id.in_(character_ids))
        )
        return {character_id: name for character_id, name in result.all()}
