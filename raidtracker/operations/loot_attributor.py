"""
Loot Attributor

Credits loot to the person who won it. A box's win counts for its main,
tagged as a box win, and the box keeps its own line in the drilldown.
"""

from typing import Dict, Iterable, List, Optional
from contextlib import asynccontextmanager
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.config import Config
from raidtracker.database.models import LootAward, Item, ItemCategory, Raid, Character, AuditType
from raidtracker.data_models.actor import Actor
from raidtracker.data_models.loot import LootAttribution, MainLootTotal
from raidtracker.operations.audit_log import AuditLog
from raidtracker.operations.identity_resolver import IdentityResolver
from raidtracker.utils.exceptions import NotFoundError, UnauthorizedError, InvalidRequestError
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_CATEGORIES = frozenset({ItemCategory.BIS, ItemCategory.ROLLED})


class LootAttributor:
    """Loot credit and per-main loot totals for one guild."""

    def __init__(
        self,
        database,
        guild_id: int,
        resolver: Optional[IdentityResolver] = None,
        audit_log: Optional[AuditLog] = None
    ):
        self.db = database
        self.guild_id = guild_id
        self.resolver = resolver or IdentityResolver(database, guild_id)
        self.audit_log = audit_log or AuditLog(database, guild_id)
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session

    async def attribute(self, award: LootAward, session: Optional[AsyncSession] = None) -> LootAttribution:
        """Resolve the looter of an award to the main that gets credit."""
        async with self._get_session_context(session) as s:
            main_id = await self.resolver.resolve_main(award.character_id, session=s)
            looter = await s.get(Character, award.character_id)
            looter_name = looter.name if looter else None

            if main_id == award.character_id:
                return LootAttribution(
                    award_id=award.id,
                    credited_main_id=main_id,
                    credited_main_name=looter_name,
                    is_box_win=False
                )

            main = await s.get(Character, main_id)
            return LootAttribution(
                award_id=award.id,
                credited_main_id=main_id,
                credited_main_name=main.name if main else None,
                is_box_win=True,
                box_character_id=award.character_id,
                box_character_name=looter_name
            )

    async def loot_distribution(
        self,
        raid_ids: Optional[Iterable[int]] = None,
        categories: Optional[Iterable[ItemCategory]] = None,
        include_passes: bool = False,
        pass_token_item_id: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> List[MainLootTotal]:
        """
        Total items per main with per-box drilldown.

        Every live main of the guild is listed, including those with no
        loot. The pass token item is skipped unless include_passes is set.

        Args:
            raid_ids: Restrict to these raids (default: every raid of the guild)
            categories: Item categories to count (default: bis and rolled)
            include_passes: Count the pass token item
            pass_token_item_id: Overrides Config.PASS_TOKEN_ITEM_ID

        Returns:
            Totals ordered by most items, then name
        """
        categories = DEFAULT_CATEGORIES if categories is None else frozenset(categories)
        if pass_token_item_id is None:
            pass_token_item_id = Config.PASS_TOKEN_ITEM_ID

        async with self._get_session_context(session) as s:
            ownership = await self.resolver.ownership_map(session=s)

            result = await s.execute(
                select(Character).where(
                    Character.guild_id == self.guild_id,
                    Character.is_deleted == False
                )
            )
            characters = {character.id: character for character in result.scalars().all()}

            totals: Dict[int, MainLootTotal] = {
                character.id: MainLootTotal(main_id=character.id, name=character.name)
                for character in characters.values()
                if character.id not in ownership
            }

            query = (
                select(LootAward.character_id, LootAward.quantity, LootAward.item_id)
                .join(Raid, Raid.id == LootAward.raid_id)
                .join(Item, Item.id == LootAward.item_id)
                .where(Raid.guild_id == self.guild_id)
            )
            if raid_ids is not None:
                query = query.where(LootAward.raid_id.in_(list(raid_ids)))
            if categories:
                query = query.where(Item.category.in_(list(categories)))
            result = await s.execute(query)

            for character_id, quantity, item_id in result.all():
                if pass_token_item_id and item_id == pass_token_item_id and not include_passes:
                    continue

                main_id = IdentityResolver.resolve_in(ownership, character_id)
                if main_id not in totals:
                    # Looter or its main was deleted since
                    main = characters.get(main_id) or await s.get(Character, main_id)
                    if main is None:
                        continue
                    totals[main_id] = MainLootTotal(main_id=main_id, name=main.name)

                if main_id == character_id:
                    totals[main_id].add(quantity or 0)
                else:
                    box = characters.get(character_id) or await s.get(Character, character_id)
                    totals[main_id].add(quantity or 0, box_id=character_id, box_name=box.name if box else None)

            return sorted(totals.values(), key=lambda total: (-total.total_items, total.name))

    async def reassign_loot(
        self,
        actor: Actor,
        award_id: int,
        to_character_id: int,
        session: Optional[AsyncSession] = None
    ) -> LootAward:
        """
        Move a loot award to another character of the guild.

        Raises:
            UnauthorizedError: If the actor is not an officer
            NotFoundError: If the award or target character is not in this guild
            InvalidRequestError: If the award already belongs to the target
        """
        if not actor.is_officer:
            raise UnauthorizedError("reassign loot")

        async def _reassign(s: AsyncSession) -> LootAward:
            result = await s.execute(
                select(LootAward)
                .join(Raid, Raid.id == LootAward.raid_id)
                .where(LootAward.id == award_id, Raid.guild_id == self.guild_id)
                .options(selectinload(LootAward.item))
            )
            award = result.scalar_one_or_none()
            if award is None:
                raise NotFoundError("Loot award", str(award_id))

            target = await s.get(Character, to_character_id)
            if target is None or target.guild_id != self.guild_id or target.is_deleted:
                raise NotFoundError("Character", str(to_character_id))
            if award.character_id == target.id:
                raise InvalidRequestError(f"The item already belongs to {target.name}")

            from_character_id = award.character_id
            award.character_id = target.id
            award.was_assigned = True
            await s.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.LOOT_REASSIGNED,
                item_id=award.item_id,
                from_character_id=from_character_id,
                to_character_id=target.id,
                raid_id=award.raid_id,
                session=s
            )
            self.logger.info(
                f"Loot award {award.id} moved from character {from_character_id} to {target.id}"
            )
            return award

        if session:
            return await _reassign(session)
        async with self.db.transaction() as txn_session:
            return await _reassign(txn_session)
