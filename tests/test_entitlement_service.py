"""Tests for the read-side entitlement service."""

import logging

import pytest

from raidtracker.database.models import Character
from raidtracker.operations.attendance_ledger import AttendanceLedger
from raidtracker.operations.roster_operations import RosterOperations
from raidtracker.services.entitlement import EntitlementService
from raidtracker.utils.exceptions import NotFoundError, RosterConflictError


@pytest.fixture
def service(db, guild):
    return EntitlementService(db, guild.id)


@pytest.fixture
async def attended_raid(db, guild, roster, raid):
    """Thorin attends all three ticks (tick 2 on his box), Elrond only tick 0."""
    ledger = AttendanceLedger(db, guild.id)
    await ledger.record_attendance(roster.main.id, raid.id, 0)
    await ledger.record_attendance(roster.main.id, raid.id, 1)
    await ledger.record_attendance(roster.box.id, raid.id, 2)
    await ledger.record_attendance(roster.officer.id, raid.id, 0)
    return raid


class TestRollRanges:
    """Tests for roll candidates and the roll range line."""

    async def test_main_and_box_enter_once(self, service, roster):
        candidates = await service.roll_candidates([roster.main.id, roster.box.id])

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.character_id == roster.main.id
        assert candidate.ticket_count == 40
        assert candidate.box_count == 1
        assert candidate.ticks_since_last_win == 7

    async def test_generate_roll_range(self, service, roster):
        line = await service.generate_roll_range([roster.box.id, roster.officer.id])
        assert line == "elrond 1-1 | thorin 2-42"

    async def test_generate_roll_range_debug(self, service, roster):
        line = await service.generate_roll_range([roster.main.id], debug=True)
        assert line == "thorin 1-41 (att 40%, boxes 2, since win 7)"

    async def test_explicit_allocation_wins_over_attendance(self, db, guild, service):
        veteran = await db.create_character(guild.id, "Gandalf", "wizard", ticket_allocation=9, attendance_30=80)
        assert await service.generate_roll_range([veteran.id]) == "gandalf 1-10"

    async def test_empty_selection(self, service):
        assert await service.generate_roll_range([]) == ""


class TestCurrencySplit:
    """Tests for compute_meta and split."""

    async def test_compute_meta(self, service, roster, attended_raid):
        entries = await service.compute_meta(attended_raid.id)

        assert [(e.name, e.total_ticks, e.attended_ticks, e.awarded_tickets) for e in entries] == [
            ("elrond", 3, 1, 10),
            ("thorin", 3, 3, 100),
        ]
        assert entries[1].character_class == "warrior"
        assert entries[1].total_ticket_allocation == 100

    async def test_meta_for_raid_without_attendance(self, service, raid):
        assert await service.compute_meta(raid.id) == []

    async def test_meta_for_unknown_raid(self, service):
        with pytest.raises(NotFoundError):
            await service.compute_meta(424242)

    async def test_split_between_all_attendees(self, service, roster, attended_raid):
        shares = await service.split(attended_raid.id, 100)
        assert [(s.name, s.split_amount) for s in shares] == [("elrond", 9), ("thorin", 91)]

    async def test_split_with_box_selection_credits_main(self, service, roster, attended_raid):
        shares = await service.split(attended_raid.id, 100, selected_ids=[roster.box.id])
        assert [(s.name, s.split_amount) for s in shares] == [("thorin", 100)]


class TestDeletedMains:
    """Deleted mains are treated alike by both allocators and never dropped silently."""

    async def _soft_delete(self, db, character_id):
        async with db.transaction() as session:
            character = await session.get(Character, character_id)
            character.is_deleted = True

    async def test_main_with_boxes_cannot_be_deleted(self, db, guild, service, roster, officer):
        with pytest.raises(RosterConflictError):
            await RosterOperations(db, guild.id).delete_character(officer, roster.main.id)

        line = await service.generate_roll_range([roster.box.id, roster.officer.id])
        assert line == "elrond 1-1 | thorin 2-42"

    async def test_unlinked_box_rolls_on_its_own_after_main_is_deleted(self, db, guild, service, roster, officer):
        roster_ops = RosterOperations(db, guild.id)
        await roster_ops.unlink_box(officer, roster.box.id)
        await roster_ops.delete_character(officer, roster.main.id)

        line = await service.generate_roll_range([roster.box.id, roster.officer.id])
        assert line == "elrond 1-1 | gimli 2-2"

    async def test_deleted_main_is_logged_and_excluded_everywhere(
        self, db, service, roster, attended_raid, caplog
    ):
        await self._soft_delete(db, roster.main.id)

        with caplog.at_level(logging.WARNING):
            line = await service.generate_roll_range([roster.box.id, roster.officer.id])
            entries = await service.compute_meta(attended_raid.id)

        assert line == "elrond 1-1"
        assert [entry.name for entry in entries] == ["elrond"]
        skipped = [record.getMessage() for record in caplog.records if "Skipping deleted main thorin" in record.getMessage()]
        assert len(skipped) == 2

    async def test_unknown_selection_is_logged(self, service, roster, caplog):
        with caplog.at_level(logging.WARNING):
            line = await service.generate_roll_range([roster.officer.id, 424242])

        assert line == "elrond 1-1"
        assert any("424242" in record.getMessage() for record in caplog.records)
