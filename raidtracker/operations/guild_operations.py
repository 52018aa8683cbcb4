"""
Guild Operations

Admin-only guild settings. The modifiers are not used by this engine; the
external attendance service reads them when it recomputes ticket
allocations, so every change triggers a recalculation.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.database.models import Guild, AuditType
from raidtracker.data_models.actor import Actor
from raidtracker.operations.audit_log import AuditLog
from raidtracker.services.attendance_recalc import AttendanceRecalcClient
from raidtracker.utils.exceptions import NotFoundError, UnauthorizedError, InvalidRequestError
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class GuildOperations:
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

    async def get_guild(self, session: Optional[AsyncSession] = None) -> Guild:
        if session:
            guild = await session.get(Guild, self.guild_id)
        else:
            async with self.db.get_session() as db_session:
                guild = await db_session.get(Guild, self.guild_id)
        if guild is None:
            raise NotFoundError("Guild", str(self.guild_id))
        return guild

    async def update_modifiers(
        self,
        actor: Actor,
        last_win_modifier_pct: float,
        box_modifier_pct: float,
        session: Optional[AsyncSession] = None
    ) -> Guild:
        """
        Set the last-win and box modifiers, given as percentages.

        Args:
            actor: Must be an admin
            last_win_modifier_pct: e.g. 25 for 25%
            box_modifier_pct: e.g. 50 for 50%

        Returns:
            The updated guild (modifiers stored as fractions)
        """
        if not actor.is_admin:
            raise UnauthorizedError("change guild settings")
        for label, value in (("Last win modifier", last_win_modifier_pct), ("Box modifier", box_modifier_pct)):
            if value is None or not 0 <= value <= 100:
                raise InvalidRequestError(f"{label} must be between 0 and 100")

        async def _update(s: AsyncSession) -> Guild:
            guild = await self.get_guild(session=s)
            guild.last_win_modifier = last_win_modifier_pct / 100
            guild.box_modifier = box_modifier_pct / 100
            await s.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.GUILD_SETTINGS_UPDATED,
                session=s,
                last_win=f"{last_win_modifier_pct:g}",
                box=f"{box_modifier_pct:g}"
            )
            self.logger.info(
                f"Guild {self.guild_id} modifiers set to last win {last_win_modifier_pct}%, box {box_modifier_pct}%"
            )
            return guild

        if session:
            return await _update(session)

        async with self.db.transaction() as txn_session:
            guild = await _update(txn_session)

        self.recalc_client.notify(f"guild {self.guild_id} modifier update")
        return guild
