"""
Roster Operations

Officer-facing management of the main/box ownership graph and of
soft-deleted characters. Every change is audited in the same transaction.

Rules kept by link_box:
- a character cannot be its own box
- a box has at most one main
- a main is never itself a box, and a box never owns boxes
"""

from typing import List, Optional
from contextlib import asynccontextmanager
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.database.models import Character, OwnershipLink, AuditType
from raidtracker.data_models.actor import Actor
from raidtracker.operations.audit_log import AuditLog
from raidtracker.services.attendance_recalc import AttendanceRecalcClient
from raidtracker.utils.exceptions import NotFoundError, RosterConflictError, UnauthorizedError
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class RosterOperations:
    """Box links and character lifecycle for one guild."""

    def __init__(
        self,
        database,
        guild_id: int,
        audit_log: Optional[AuditLog] = None,
        recalc_client: Optional[AttendanceRecalcClient] = None
    ):
        self.db = database
        self.guild_id = guild_id
        self.audit_log = audit_log or AuditLog(database, guild_id)
        self.recalc_client = recalc_client or AttendanceRecalcClient()
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

    async def link_box(
        self,
        actor: Actor,
        main_id: int,
        box_id: int,
        session: Optional[AsyncSession] = None
    ) -> OwnershipLink:
        """
        Register box_id as a box of main_id.

        Raises:
            UnauthorizedError: If the actor is not an officer
            NotFoundError: If either character is missing, deleted or in another guild
            RosterConflictError: If the link would break the ownership rules
        """
        if not actor.is_officer:
            raise UnauthorizedError("link boxes")
        if main_id == box_id:
            raise RosterConflictError("A character cannot be its own box")

        async with self._get_session_context(session) as s:
            main = await self._live_character(s, main_id)
            box = await self._live_character(s, box_id)

            result = await s.execute(
                select(OwnershipLink).where(OwnershipLink.box_id.in_([main.id, box.id]))
            )
            for link in result.scalars().all():
                if link.box_id == box.id:
                    raise RosterConflictError(f"'{box.name}' is already a box of another main")
                raise RosterConflictError(f"'{main.name}' is a box and cannot own boxes")

            result = await s.execute(
                select(func.count(OwnershipLink.id)).where(OwnershipLink.main_id == box.id)
            )
            if result.scalar():
                raise RosterConflictError(f"'{box.name}' has boxes of its own and cannot become a box")

            link = OwnershipLink(main_id=main.id, box_id=box.id)
            s.add(link)
            await s.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.BOX_LINKED,
                from_character_id=main.id,
                to_character_id=box.id,
                session=s
            )
            self.logger.info(f"Linked box {box.name} ({box.id}) to main {main.name} ({main.id})")

        if session is None:
            self.recalc_client.notify(f"linking box {box_id} to main {main_id}")
        return link

    async def unlink_box(
        self,
        actor: Actor,
        box_id: int,
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Remove the box link of box_id.

        Returns:
            The id of the main the box belonged to
        """
        if not actor.is_officer:
            raise UnauthorizedError("unlink boxes")

        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(OwnershipLink)
                .join(Character, Character.id == OwnershipLink.box_id)
                .where(OwnershipLink.box_id == box_id, Character.guild_id == self.guild_id)
            )
            link = result.scalar_one_or_none()
            if link is None:
                raise NotFoundError("Box link", f"character {box_id} is not a box")

            main_id = link.main_id
            await s.delete(link)
            await s.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.BOX_UNLINKED,
                from_character_id=main_id,
                to_character_id=box_id,
                session=s
            )
            self.logger.info(f"Unlinked box {box_id} from main {main_id}")

        if session is None:
            self.recalc_client.notify(f"unlinking box {box_id}")
        return main_id

    async def list_mains(
        self,
        include_deleted: bool = False,
        session: Optional[AsyncSession] = None
    ) -> List[Character]:
        """Characters of the guild that are not a box of anyone, ordered by name."""
        async with self._get_session_context(session) as s:
            boxes = select(OwnershipLink.box_id)
            query = select(Character).where(
                Character.guild_id == self.guild_id,
                Character.id.not_in(boxes)
            )
            if not include_deleted:
                query = query.where(Character.is_deleted == False)
            result = await s.execute(query.order_by(Character.name))
            return list(result.scalars().all())

    async def delete_character(
        self,
        actor: Actor,
        character_id: int,
        session: Optional[AsyncSession] = None
    ) -> Character:
        """
        Soft-delete a character. History (attendance, loot, audit) stays.

        Raises:
            RosterConflictError: If the character still owns boxes
        """
        if not actor.is_officer:
            raise UnauthorizedError("delete characters")

        async with self._get_session_context(session) as s:
            character = await self._live_character(s, character_id)

            result = await s.execute(
                select(func.count(OwnershipLink.id)).where(OwnershipLink.main_id == character.id)
            )
            if result.scalar():
                raise RosterConflictError(f"'{character.name}' still owns boxes; unlink them first")

            character.is_deleted = True
            await s.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.CHARACTER_DELETED,
                to_character_id=character.id,
                session=s
            )
            self.logger.info(f"Deleted character {character.name} ({character.id})")
            return character

    async def restore_character(
        self,
        actor: Actor,
        character_id: int,
        session: Optional[AsyncSession] = None
    ) -> Character:
        """
        Bring a soft-deleted character back.

        Raises:
            RosterConflictError: If a live character has taken the name meanwhile
        """
        if not actor.is_officer:
            raise UnauthorizedError("restore characters")

        async with self._get_session_context(session) as s:
            character = await s.get(Character, character_id)
            if character is None or character.guild_id != self.guild_id or not character.is_deleted:
                raise NotFoundError("Deleted character", str(character_id))

            result = await s.execute(
                select(func.count(Character.id)).where(
                    Character.guild_id == self.guild_id,
                    Character.name == character.name,
                    Character.is_deleted == False
                )
            )
            if result.scalar():
                raise RosterConflictError(f"A live character named '{character.name}' already exists")

            character.is_deleted = False
            await s.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.CHARACTER_RESTORED,
                to_character_id=character.id,
                session=s
            )
            self.logger.info(f"Restored character {character.name} ({character.id})")
            return character

    async def _live_character(self, session: AsyncSession, character_id: int) -> Character:
        character = await session.get(Character, character_id)
        if character is None or character.guild_id != self.guild_id or character.is_deleted:
            raise NotFoundError("Character", str(character_id))
        return character
