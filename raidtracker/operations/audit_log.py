"""
Audit Log

Append-only record of every administrative decision. Each entry type has
one message template; the rendered message carries bracketed tokens that
consumers turn into links:

    un[name]  acting user's character   -> actor_id
    fn[name]  from / source character   -> from_character_id
    tn[name]  to / destination character -> to_character_id
    rn[name]  raid                      -> raid_id
    in[name]  item                      -> item_id

The token micro-format is read by the UI and must stay stable.
"""

import re
from typing import Dict, List, Optional
from contextlib import asynccontextmanager
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.database.models import AuditEntry, AuditType, Character, Raid, Item
from raidtracker.data_models.audit import AuditSegment, AuditPage
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


AUDIT_TEMPLATES: Dict[AuditType, str] = {
    AuditType.TICK_REQUESTED: "un[{actor}] requested {ticks} {origin} in rn[{raid}]",
    AuditType.TICK_APPROVED: "un[{actor}] approved {ticks} for tn[{target}] in rn[{raid}]",
    AuditType.TICK_REJECTED: "un[{actor}] rejected {ticks} for tn[{target}] in rn[{raid}]",
    AuditType.TICKS_REMOVED: "un[{actor}] removed {ticks} from tn[{target}] and their boxes in rn[{raid}]",
    AuditType.BOX_LINKED: "un[{actor}] linked tn[{target}] as a box of fn[{source}]",
    AuditType.BOX_UNLINKED: "un[{actor}] unlinked tn[{target}] from fn[{source}]",
    AuditType.CHARACTER_DELETED: "un[{actor}] deleted tn[{target}]",
    AuditType.CHARACTER_RESTORED: "un[{actor}] restored tn[{target}]",
    AuditType.LOOT_REASSIGNED: "un[{actor}] moved in[{item}] from fn[{source}] to tn[{target}] in rn[{raid}]",
    AuditType.GUILD_SETTINGS_UPDATED: "un[{actor}] set the last win modifier to {last_win}% and the box modifier to {box}%",
}

TOKEN_PATTERN = re.compile(r'(un|fn|tn|rn|in)\[([^\]]+)\]')

TOKEN_REFERENCES = {
    'un': 'actor_id',
    'fn': 'from_character_id',
    'tn': 'to_character_id',
    'rn': 'raid_id',
    'in': 'item_id',
}


def token_safe(value) -> str:
    """Strip characters that would break the bracketed token format."""
    return str(value if value is not None else 'unknown').replace('[', '').replace(']', '').strip() or 'unknown'


def format_ticks(ticks) -> str:
    ticks = sorted(ticks)
    label = 'tick' if len(ticks) == 1 else 'ticks'
    return f"{label} {', '.join(str(tick) for tick in ticks)}"


def parse_audit_message(entry: AuditEntry) -> List[AuditSegment]:
    """
    Split a rendered message into plain text and typed reference segments.

    Returns:
        Segments in message order; reference segments carry the id of the
        referenced row taken from the entry's typed reference columns
    """
    segments: List[AuditSegment] = []
    message = entry.message or ''
    last_index = 0

    for match in TOKEN_PATTERN.finditer(message):
        if match.start() > last_index:
            segments.append(AuditSegment(kind='text', text=message[last_index:match.start()]))

        prefix, content = match.group(1), match.group(2)
        segments.append(AuditSegment(
            kind=prefix,
            text=content,
            ref_id=getattr(entry, TOKEN_REFERENCES[prefix])
        ))
        last_index = match.end()

    if last_index < len(message):
        segments.append(AuditSegment(kind='text', text=message[last_index:]))

    return segments


class AuditLog:
    """Writes and reads audit entries of one guild."""

    def __init__(self, database, guild_id: int):
        self.db = database
        self.guild_id = guild_id
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

    async def record(
        self,
        actor_id: int,
        audit_type: AuditType,
        item_id: Optional[int] = None,
        from_character_id: Optional[int] = None,
        to_character_id: Optional[int] = None,
        raid_id: Optional[int] = None,
        session: Optional[AsyncSession] = None,
        **fields
    ) -> AuditEntry:
        """
        Render the type's template and append an entry.

        Names for the typed references are looked up here; extra template
        fields (ticks, origin, ...) are passed as keyword arguments.
        """
        async with self._get_session_context(session) as s:
            names = await self._character_names(s, actor_id, from_character_id, to_character_id)
            values = {
                'actor': token_safe(names.get(actor_id)),
                'source': token_safe(names.get(from_character_id)),
                'target': token_safe(names.get(to_character_id)),
                'raid': token_safe(await self._raid_name(s, raid_id)),
                'item': token_safe(await self._item_name(s, item_id)),
            }
            if to_character_id is None or to_character_id == actor_id:
                values['origin'] = 'for themselves'
            else:
                values['origin'] = f"on behalf of tn[{values['target']}]"
            values.update(fields)

            message = AUDIT_TEMPLATES[audit_type].format(**values)
            entry = AuditEntry(
                guild_id=self.guild_id,
                actor_id=actor_id,
                type=audit_type,
                item_id=item_id,
                from_character_id=from_character_id,
                to_character_id=to_character_id,
                raid_id=raid_id,
                message=message
            )
            s.add(entry)
            await s.flush()

            self.logger.info(f"Audit {audit_type.value} by {actor_id}: {message}")
            return entry

    async def entries(
        self,
        page: int = 0,
        page_size: int = 10,
        raid_id: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> AuditPage:
        """Audit entries of the guild, newest first."""
        async with self._get_session_context(session) as s:
            conditions = [AuditEntry.guild_id == self.guild_id]
            if raid_id is not None:
                conditions.append(AuditEntry.raid_id == raid_id)

            total = await s.execute(select(func.count(AuditEntry.id)).where(*conditions))
            result = await s.execute(
                select(AuditEntry)
                .where(*conditions)
                .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
                .limit(page_size)
                .offset(page * page_size)
            )
            return AuditPage(
                entries=list(result.scalars().all()),
                page=page,
                page_size=page_size,
                total_results=total.scalar() or 0
            )

    async def _character_names(self, session: AsyncSession, *character_ids) -> Dict[int, str]:
        ids = {cid for cid in character_ids if cid is not None}
        if not ids:
            return {}
        result = await session.execute(
            select(Character.id, Character.name).where(Character.id.in_(ids))
        )
        return {cid: name for cid, name in result.all()}

    async def _raid_name(self, session: AsyncSession, raid_id: Optional[int]) -> Optional[str]:
        if raid_id is None:
            return None
        result = await session.execute(select(Raid.name).where(Raid.id == raid_id))
        return result.scalar_one_or_none()

    async def _item_name(self, session: AsyncSession, item_id: Optional[int]) -> Optional[str]:
        if item_id is None:
            return None
        result = await session.execute(select(Item.name).where(Item.id == item_id))
        return result.scalar_one_or_none()
