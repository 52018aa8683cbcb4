from typing import Optional, List
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, func
from contextlib import asynccontextmanager

from raidtracker.config import Config
from raidtracker.constants import CharacterConstants
from raidtracker.database.models import (
    Base, Guild, Character, Raid, Item, ItemCategory, LootAward
)
from raidtracker.utils.exceptions import RosterConflictError, InvalidRequestError
from raidtracker.utils.logger import setup_logger


def normalize_name(name: str) -> str:
    """Character names are compared case-insensitively and stored lower-cased"""
    return (name or '').strip().lower()


class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")
        Config.validate()

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction() as session:
                await workflow.approve(..., session=session)
                await roster_ops.link_box(..., session=session)
                # All operations commit together here

        The caller is responsible for passing the yielded session to all
        participating operations. Exceptions must be allowed to propagate
        out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Administrative creation helpers
    async def create_guild(self, name: str) -> Guild:
        """Create a new guild"""
        async with self.transaction() as session:
            guild = Guild(name=name.strip())
            session.add(guild)
            await session.flush()
            await session.refresh(guild)
            return guild

    async def create_character(
        self,
        guild_id: int,
        name: str,
        character_class: Optional[str] = None,
        level: int = 1,
        rank: str = 'raider',
        base_ticket_allocation: int = 0,
        ticket_allocation: Optional[int] = None,
        attendance_30: int = 0,
        ticks_since_last_win: int = 0
    ) -> Character:
        """
        Create a new character, rejecting names already used by a live character.

        Raises:
            InvalidRequestError: If the name is too short, the class unknown
                or the level out of range
            RosterConflictError: If a live character already has the name
        """
        normalized = normalize_name(name)
        if len(normalized) < CharacterConstants.MIN_NAME_LENGTH:
            raise InvalidRequestError(
                f"Character name must be at least {CharacterConstants.MIN_NAME_LENGTH} characters"
            )

        character_class = (character_class or '').strip().lower()
        if character_class not in CharacterConstants.CLASSES:
            raise InvalidRequestError(f"Unknown character class '{character_class}'")

        if isinstance(level, bool) or not isinstance(level, int) or not (
            CharacterConstants.MIN_LEVEL <= level <= CharacterConstants.MAX_LEVEL
        ):
            raise InvalidRequestError(
                f"Level must be between {CharacterConstants.MIN_LEVEL} and {CharacterConstants.MAX_LEVEL}"
            )

        async with self.transaction() as session:
            result = await session.execute(
                select(func.count(Character.id)).where(
                    Character.guild_id == guild_id,
                    Character.name == normalized,
                    Character.is_deleted == False
                )
            )
            if result.scalar():
                raise RosterConflictError(f"A character named '{normalized}' already exists")

            character = Character(
                guild_id=guild_id,
                name=normalized,
                character_class=character_class,
                level=level,
                rank=rank,
                base_ticket_allocation=base_ticket_allocation,
                ticket_allocation=ticket_allocation,
                attendance_30=attendance_30,
                ticks_since_last_win=ticks_since_last_win
            )
            session.add(character)
            await session.flush()
            await session.refresh(character)
            return character

    async def get_character(self, character_id: int) -> Optional[Character]:
        """Get a character by ID"""
        async with self.get_session() as session:
            return await session.get(Character, character_id)

    async def get_character_by_name(self, guild_id: int, name: str) -> Optional[Character]:
        """Get a live character by name (case-insensitive)"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Character).where(
                    Character.guild_id == guild_id,
                    Character.name == normalize_name(name),
                    Character.is_deleted == False
                )
            )
            return result.scalar_one_or_none()

    async def create_raid(self, guild_id: int, name: str, is_official: bool = True) -> Raid:
        """Create a new raid"""
        async with self.transaction() as session:
            raid = Raid(guild_id=guild_id, name=name.strip(), is_official=is_official)
            session.add(raid)
            await session.flush()
            await session.refresh(raid)
            return raid

    async def get_raid(self, raid_id: int) -> Optional[Raid]:
        """Get a raid by ID"""
        async with self.get_session() as session:
            return await session.get(Raid, raid_id)

    async def create_item(
        self,
        name: str,
        category: ItemCategory = ItemCategory.UNCATEGORIZED,
        item_id: Optional[int] = None
    ) -> Item:
        """Create a new item"""
        async with self.transaction() as session:
            item = Item(id=item_id, name=name.strip(), category=category)
            session.add(item)
            await session.flush()
            await session.refresh(item)
            return item

    async def award_loot(
        self,
        raid_id: int,
        character_id: int,
        item_id: int,
        quantity: int = 1,
        was_assigned: bool = False
    ) -> LootAward:
        """Record an item awarded to a character in a raid"""
        async with self.transaction() as session:
            award = LootAward(
                raid_id=raid_id,
                character_id=character_id,
                item_id=item_id,
                quantity=quantity,
                was_assigned=was_assigned
            )
            session.add(award)
            await session.flush()
            await session.refresh(award)
            return award

    async def get_all_characters(self, guild_id: int, include_deleted: bool = False) -> List[Character]:
        """Get all characters of a guild ordered by name"""
        async with self.get_session() as session:
            query = select(Character).where(Character.guild_id == guild_id)
            if not include_deleted:
                query = query.where(Character.is_deleted == False)
            query = query.order_by(Character.name)

            result = await session.execute(query)
            return result.scalars().all()
