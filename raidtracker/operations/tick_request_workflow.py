"""
Tick Request Workflow

State machine for attendance claims awaiting officer approval.

    Requested --approve--> Approved   (attendance fact written)
    Requested --reject---> Rejected   (attendance fact removed if present)
    Approved / Rejected --request--> Requested   (claim reopened)

Every decision is a compare-and-set update conditioned on the claim still
being Requested, so two officers deciding the same claim at once cannot
both win: the loser gets NotFoundError and changes nothing. The claim
transition, ledger write and audit entry commit together; the external
attendance recalculation is only triggered after that commit.
"""

import asyncio
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from raidtracker.config import Config
from raidtracker.database.models import TickClaim, Character, Raid, AuditType
from raidtracker.data_models.actor import Actor
from raidtracker.data_models.claims import TickRequest, TickDecision, TickRemoval
from raidtracker.operations.attendance_ledger import AttendanceLedger
from raidtracker.operations.audit_log import AuditLog, format_ticks
from raidtracker.services.attendance_recalc import AttendanceRecalcClient
from raidtracker.utils.exceptions import NotFoundError, UnauthorizedError
from raidtracker.utils.logger import setup_logger

logger = setup_logger(__name__)


class TickRequestWorkflow:
    """
    Request, approve, reject and remove attendance ticks for one guild.

    Authorization is the caller's job; the workflow still refuses actors
    without the required role before touching the database.
    """

    def __init__(
        self,
        database,
        guild_id: int,
        ledger: Optional[AttendanceLedger] = None,
        audit_log: Optional[AuditLog] = None,
        recalc_client: Optional[AttendanceRecalcClient] = None
    ):
        self.db = database
        self.guild_id = guild_id
        self.ledger = ledger or AttendanceLedger(database, guild_id)
        self.audit_log = audit_log or AuditLog(database, guild_id)
        self.recalc_client = recalc_client or AttendanceRecalcClient()
        self.logger = setup_logger(f"{__name__}.TickRequestWorkflow")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def request(
        self,
        actor: Actor,
        character_id: int,
        raid_id: int,
        ticks: Iterable[int],
        session: Optional[AsyncSession] = None,
        max_retries: Optional[int] = None
    ) -> List[TickClaim]:
        """
        Create or reopen one claim per tick in Requested state.

        Args:
            actor: Character making the request
            character_id: Character the ticks are claimed for
            raid_id: Raid the ticks belong to
            ticks: Tick indexes (0-based)
            session: Optional existing database session
            max_retries: Attempts when a concurrent request inserts the same key

        Returns:
            The claims, one per distinct tick

        Raises:
            InvalidRequestError: If ids are unset or no ticks are given
            UnauthorizedError: If a non-officer requests for someone else
            NotFoundError: If the character or raid is not in this guild
        """
        payload = TickRequest(character_id=character_id, raid_id=raid_id, ticks=tuple(ticks or ()))
        if not actor.is_officer and actor.character_id != payload.character_id:
            raise UnauthorizedError("request ticks on behalf of another character")

        async def _request(session: AsyncSession) -> List[TickClaim]:
            await self._ensure_in_guild(session, payload.character_id, payload.raid_id)

            now = datetime.now(timezone.utc)
            claims = []
            for tick in payload.ticks:
                result = await session.execute(
                    select(TickClaim).where(
                        TickClaim.character_id == payload.character_id,
                        TickClaim.raid_id == payload.raid_id,
                        TickClaim.tick_index == tick
                    )
                )
                claim = result.scalar_one_or_none()

                if claim is None:
                    claim = TickClaim(
                        character_id=payload.character_id,
                        raid_id=payload.raid_id,
                        tick_index=tick,
                        requested_by=actor.character_id,
                        requested_at=now
                    )
                    session.add(claim)
                else:
                    # Reopen: the decision is discarded, any attendance fact stays
                    claim.requested_by = actor.character_id
                    claim.requested_at = now
                    claim.approved_by = None
                    claim.approved_at = None
                    claim.rejected_by = None
                    claim.rejected_at = None
                claims.append(claim)

            await session.flush()

            await self.audit_log.record(
                actor.character_id,
                AuditType.TICK_REQUESTED,
                to_character_id=payload.character_id,
                raid_id=payload.raid_id,
                ticks=format_ticks(payload.ticks),
                session=session
            )

            self.logger.info(
                f"Character {actor.character_id} requested ticks {list(payload.ticks)} "
                f"for character {payload.character_id} in raid {payload.raid_id}"
            )
            return claims

        if session:
            return await _request(session)

        if max_retries is None:
            max_retries = Config.REQUEST_MAX_RETRIES

        for attempt in range(max_retries):
            try:
                async with self.db.transaction() as txn_session:
                    return await _request(txn_session)
            except IntegrityError as e:
                if attempt == max_retries - 1:
                    self.logger.error(f"Tick request failed after {max_retries} attempts: {e}")
                    raise
                # Exponential backoff with cap at 1 second
                await asyncio.sleep(min(0.1 * (2 ** attempt), 1.0))
                self.logger.warning(
                    f"Tick request retry {attempt + 1} for character {payload.character_id}, raid {payload.raid_id}"
                )

    async def approve(
        self,
        actor: Actor,
        character_id: int,
        raid_id: int,
        tick: int,
        session: Optional[AsyncSession] = None
    ) -> TickClaim:
        """
        Approve a Requested claim and record the attendance fact.

        Raises:
            InvalidRequestError: If ids or tick are unset
            UnauthorizedError: If the actor is not an officer
            NotFoundError: If no Requested claim exists for the key
        """
        decision = TickDecision(character_id=character_id, raid_id=raid_id, tick=tick)
        if not actor.is_officer:
            raise UnauthorizedError("approve ticks")

        async def _approve(session: AsyncSession) -> TickClaim:
            await self._decide(session, decision, approved_by=actor.character_id)

            await self.ledger.record_attendance(
                decision.character_id, decision.raid_id, decision.tick, session=session
            )
            await self.ledger.normalize_tick_times(decision.raid_id, session=session)

            await self.audit_log.record(
                actor.character_id,
                AuditType.TICK_APPROVED,
                to_character_id=decision.character_id,
                raid_id=decision.raid_id,
                ticks=format_ticks([decision.tick]),
                session=session
            )

            self.logger.info(
                f"Tick {decision.tick} of raid {decision.raid_id} approved for character "
                f"{decision.character_id} by {actor.character_id}"
            )
            return await self._load_claim(session, decision)

        if session:
            # The caller owns the commit and the recalculation trigger
            return await _approve(session)

        async with self.db.transaction() as txn_session:
            claim = await _approve(txn_session)

        self.recalc_client.notify(f"approval of tick {decision.tick} in raid {decision.raid_id}")
        return claim

    async def reject(
        self,
        actor: Actor,
        character_id: int,
        raid_id: int,
        tick: int,
        session: Optional[AsyncSession] = None
    ) -> TickClaim:
        """
        Reject a Requested claim and remove any attendance fact for the key.

        Raises:
            InvalidRequestError: If ids or tick are unset
            UnauthorizedError: If the actor is not an officer
            NotFoundError: If no Requested claim exists for the key
        """
        decision = TickDecision(character_id=character_id, raid_id=raid_id, tick=tick)
        if not actor.is_officer:
            raise UnauthorizedError("reject ticks")

        async def _reject(session: AsyncSession) -> TickClaim:
            await self._decide(session, decision, rejected_by=actor.character_id)

            await self.ledger.remove_attendance(
                decision.character_id, decision.raid_id, [decision.tick],
                include_boxes=False, session=session
            )

            await self.audit_log.record(
                actor.character_id,
                AuditType.TICK_REJECTED,
                to_character_id=decision.character_id,
                raid_id=decision.raid_id,
                ticks=format_ticks([decision.tick]),
                session=session
            )

            self.logger.info(
                f"Tick {decision.tick} of raid {decision.raid_id} rejected for character "
                f"{decision.character_id} by {actor.character_id}"
            )
            return await self._load_claim(session, decision)

        if session:
            # The caller owns the commit and the recalculation trigger
            return await _reject(session)

        async with self.db.transaction() as txn_session:
            claim = await _reject(txn_session)

        self.recalc_client.notify(f"rejection of tick {decision.tick} in raid {decision.raid_id}")
        return claim

    async def remove_ticks(
        self,
        actor: Actor,
        character_id: int,
        raid_id: int,
        ticks: Iterable[int],
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Remove ticks from a player's whole roster (main and every box).

        Returns:
            Number of attendance facts removed
        """
        removal = TickRemoval(character_id=character_id, raid_id=raid_id, ticks=tuple(ticks or ()))
        if not actor.is_officer:
            raise UnauthorizedError("remove ticks")

        async def _remove(session: AsyncSession) -> int:
            await self._ensure_in_guild(session, removal.character_id, removal.raid_id)
            main_id = await self.ledger.resolver.resolve_main(removal.character_id, session=session)

            removed = await self.ledger.remove_attendance(
                removal.character_id, removal.raid_id, removal.ticks,
                include_boxes=True, session=session
            )

            await self.audit_log.record(
                actor.character_id,
                AuditType.TICKS_REMOVED,
                to_character_id=main_id,
                raid_id=removal.raid_id,
                ticks=format_ticks(removal.ticks),
                session=session
            )
            return removed

        if session:
            # The caller owns the commit and the recalculation trigger
            return await _remove(session)

        async with self.db.transaction() as txn_session:
            removed = await _remove(txn_session)

        self.recalc_client.notify(f"removal of ticks {list(removal.ticks)} in raid {removal.raid_id}")
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_claim(
        self,
        character_id: int,
        raid_id: int,
        tick: int,
        session: Optional[AsyncSession] = None
    ) -> Optional[TickClaim]:
        """Retrieve a claim by its key, or None."""
        decision = TickDecision(character_id=character_id, raid_id=raid_id, tick=tick)
        if session:
            return await self._load_claim(session, decision)
        async with self.db.get_session() as db_session:
            return await self._load_claim(db_session, decision)

    async def pending_claims(
        self,
        raid_id: Optional[int] = None,
        session: Optional[AsyncSession] = None
    ) -> List[TickClaim]:
        """Requested claims of the guild, oldest first."""
        async def _get(session: AsyncSession) -> List[TickClaim]:
            query = (
                select(TickClaim)
                .join(Character, Character.id == TickClaim.character_id)
                .where(
                    Character.guild_id == self.guild_id,
                    TickClaim.approved_by.is_(None),
                    TickClaim.rejected_by.is_(None)
                )
                .options(selectinload(TickClaim.character), selectinload(TickClaim.raid))
                .order_by(TickClaim.requested_at, TickClaim.id)
            )
            if raid_id is not None:
                query = query.where(TickClaim.raid_id == raid_id)
            result = await session.execute(query)
            return list(result.scalars().all())

        if session:
            return await _get(session)
        async with self.db.get_session() as db_session:
            return await _get(db_session)

    async def recent_decisions(
        self,
        skip: int = 0,
        take: int = 10,
        session: Optional[AsyncSession] = None
    ) -> List[TickClaim]:
        """Approved or rejected claims, most recent decision first."""
        async def _get(session: AsyncSession) -> List[TickClaim]:
            result = await session.execute(
                select(TickClaim)
                .join(Character, Character.id == TickClaim.character_id)
                .where(
                    Character.guild_id == self.guild_id,
                    or_(TickClaim.approved_by.isnot(None), TickClaim.rejected_by.isnot(None))
                )
                .options(
                    selectinload(TickClaim.character),
                    selectinload(TickClaim.raid),
                    selectinload(TickClaim.approver),
                    selectinload(TickClaim.rejecter)
                )
                .order_by(func.coalesce(TickClaim.approved_at, TickClaim.rejected_at).desc(), TickClaim.id.desc())
                .offset(skip)
                .limit(take)
            )
            return list(result.scalars().all())

        if session:
            return await _get(session)
        async with self.db.get_session() as db_session:
            return await _get(db_session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _decide(
        self,
        session: AsyncSession,
        decision: TickDecision,
        approved_by: Optional[int] = None,
        rejected_by: Optional[int] = None
    ) -> None:
        """Move a Requested claim to its decided state or raise NotFoundError."""
        now = datetime.now(timezone.utc)
        if approved_by is not None:
            values = {'approved_by': approved_by, 'approved_at': now}
        else:
            values = {'rejected_by': rejected_by, 'rejected_at': now}

        result = await session.execute(
            update(TickClaim)
            .where(
                TickClaim.character_id == decision.character_id,
                TickClaim.raid_id == decision.raid_id,
                TickClaim.tick_index == decision.tick,
                TickClaim.raid_id.in_(select(Raid.id).where(Raid.guild_id == self.guild_id)),
                TickClaim.approved_by.is_(None),
                TickClaim.rejected_by.is_(None)
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(
                "Tick claim",
                f"no pending claim for character {decision.character_id}, "
                f"raid {decision.raid_id}, tick {decision.tick}"
            )

    async def _load_claim(self, session: AsyncSession, decision: TickDecision) -> Optional[TickClaim]:
        result = await session.execute(
            select(TickClaim)
            .where(
                TickClaim.character_id == decision.character_id,
                TickClaim.raid_id == decision.raid_id,
                TickClaim.tick_index == decision.tick
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _ensure_in_guild(self, session: AsyncSession, character_id: int, raid_id: int) -> None:
        character = await session.get(Character, character_id)
        if character is None or character.guild_id != self.guild_id:
            raise NotFoundError("Character", str(character_id))
        raid = await session.get(Raid, raid_id)
        if raid is None or raid.guild_id != self.guild_id:
            raise NotFoundError("Raid", str(raid_id))
