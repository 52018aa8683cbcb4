"""
Identity Resolver

Resolves any character to the main that owns it. Attendance, loot credit
and entitlement are all computed per person, and a person plays one main
plus zero or more boxes, so every downstream component resolves first.

The ownership graph is flat: a box has at most one main and a main is
never a box. Links that would form a chain are ignored, which keeps
resolve_main idempotent even on inconsistent data.
"""

from typing import Dict, List, Optional
from contextlib import asynccontextmanager
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.database.models import Character, OwnershipLink
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class IdentityResolver:
    """Read-only lookups over the main/box ownership graph of one guild."""

    def __init__(self, database, guild_id: int):
        self.db = database
        self.guild_id = guild_id
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    @staticmethod
    def resolve_in(ownership: Dict[int, int], character_id: int) -> int:
        """Resolve against a preloaded box -> main map."""
        return ownership.get(character_id, character_id)

    async def ownership_map(self, session: Optional[AsyncSession] = None) -> Dict[int, int]:
        """
        Load every box -> main link of the guild in one query.

        Links whose main is itself a box are dropped.
        """
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(OwnershipLink.box_id, OwnershipLink.main_id)
                .join(Character, Character.id == OwnershipLink.box_id)
                .where(Character.guild_id == self.guild_id)
            )
            links = {box_id: main_id for box_id, main_id in result.all()}

        ownership = {box_id: main_id for box_id, main_id in links.items() if main_id not in links}
        if len(ownership) != len(links):
            self.logger.warning(
                f"Ignoring {len(links) - len(ownership)} chained ownership link(s) in guild {self.guild_id}"
            )
        return ownership

    async def resolve_main(self, character_id: int, session: Optional[AsyncSession] = None) -> int:
        """
        Return the id of the main owning character_id, or character_id itself.

        Unknown ids resolve to themselves; callers must not assume existence.
        """
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(OwnershipLink.main_id).where(OwnershipLink.box_id == character_id)
            )
            main_id = result.scalar_one_or_none()
            if main_id is None:
                return character_id

            # Only one level is honoured
            result = await s.execute(
                select(OwnershipLink.id).where(OwnershipLink.box_id == main_id)
            )
            if result.scalar_one_or_none() is not None:
                return character_id

            return main_id

    async def boxes_of(self, main_id: int, session: Optional[AsyncSession] = None) -> List[Character]:
        """All characters linked as boxes of main_id, ordered by name."""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Character)
                .join(OwnershipLink, OwnershipLink.box_id == Character.id)
                .where(OwnershipLink.main_id == main_id)
                .order_by(Character.name)
            )
            return list(result.scalars().all())

    async def main_group(self, character_id: int, session: Optional[AsyncSession] = None) -> List[int]:
        """Ids of the resolved main followed by all of its boxes."""
        async with self._get_session_context(session) as s:
            main_id = await self.resolve_main(character_id, session=s)
            result = await s.execute(
                select(OwnershipLink.box_id).where(OwnershipLink.main_id == main_id)
            )
            return [main_id] + [box_id for box_id in result.scalars().all() if box_id != main_id]
