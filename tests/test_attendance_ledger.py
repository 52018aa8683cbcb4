"""Tests for attendance facts and the per-raid views derived from them."""

from datetime import datetime, timedelta

from sqlalchemy import select

from raidtracker.database.models import AttendanceFact
from raidtracker.operations.attendance_ledger import AttendanceLedger


class TestRecordAndRemove:
    """Tests for record_attendance and remove_attendance."""

    async def test_duplicate_record_is_noop(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        assert await ledger.record_attendance(roster.main.id, raid.id, 0) is True
        assert await ledger.record_attendance(roster.main.id, raid.id, 0) is False
        assert await ledger.ticks_attended(roster.main.id, raid.id) == 1

    async def test_remove_without_boxes_only_touches_character(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.main.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 0)

        removed = await ledger.remove_attendance(roster.box.id, raid.id, [0], include_boxes=False)
        assert removed == 1
        assert await ledger.ticks_attended(roster.main.id, raid.id) == 1

    async def test_remove_cascades_to_whole_roster(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.main.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 1)
        await ledger.record_attendance(roster.officer.id, raid.id, 0)

        removed = await ledger.remove_attendance(roster.box.id, raid.id, {0})
        assert removed == 2
        assert await ledger.attended_ticks_by_main(raid.id) == {
            roster.main.id: {1},
            roster.officer.id: {0},
        }

    async def test_remove_nothing(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        assert await ledger.remove_attendance(roster.main.id, raid.id, []) == 0


class TestTotals:
    """Tests for total_ticks and ticks_attended."""

    async def test_total_ticks_uses_highest_index(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        for tick in (0, 2, 4):
            await ledger.record_attendance(roster.main.id, raid.id, tick)
        assert await ledger.total_ticks(raid.id) == 5

    async def test_total_ticks_single_tick(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.main.id, raid.id, 0)
        assert await ledger.total_ticks(raid.id) == 1

    async def test_total_ticks_without_attendance(self, db, guild, raid):
        ledger = AttendanceLedger(db, guild.id)
        assert await ledger.total_ticks(raid.id) == 0

    async def test_ticks_attended_counts_distinct_ticks_across_boxes(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.main.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 3)

        assert await ledger.ticks_attended(roster.main.id, raid.id) == 2
        assert await ledger.ticks_attended(roster.box.id, raid.id) == 2


class TestViews:
    """Tests for the matrix, mains_at_tick and raid summaries."""

    async def test_attendance_matrix(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.main.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 1)
        await ledger.record_attendance(roster.officer.id, raid.id, 2)

        matrix = await ledger.attendance_matrix(raid.id)

        assert matrix[roster.main.id] == {0: {"thorin"}, 1: {"thorin", "gimli"}, 2: set()}
        assert matrix[roster.officer.id] == {0: set(), 1: set(), 2: {"elrond"}}
        assert roster.box.id not in matrix

    async def test_mains_at_tick(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.box.id, raid.id, 0)
        await ledger.record_attendance(roster.officer.id, raid.id, 0)
        await ledger.record_attendance(roster.officer.id, raid.id, 1)

        mains = await ledger.mains_at_tick(raid.id, 0)
        assert [main.name for main in mains] == ["elrond", "thorin"]
        assert await ledger.mains_at_tick(raid.id, 5) == []

    async def test_raid_summaries(self, db, guild, roster, raid):
        empty_raid = await db.create_raid(guild.id, "Sleeper's Tomb", is_official=False)
        ledger = AttendanceLedger(db, guild.id)
        await ledger.record_attendance(roster.main.id, raid.id, 0)
        await ledger.record_attendance(roster.box.id, raid.id, 1)
        await ledger.record_attendance(roster.officer.id, raid.id, 1)

        summaries = {summary.raid_id: summary for summary in await ledger.raid_summaries()}

        assert summaries[raid.id].total_ticks == 2
        assert summaries[raid.id].total_mains == 2
        assert summaries[raid.id].is_official is True
        assert summaries[empty_raid.id].total_ticks == 0
        assert summaries[empty_raid.id].total_mains == 0
        assert summaries[empty_raid.id].is_official is False


class TestTickTimeNormalization:
    """Tests for normalize_tick_times."""

    async def test_groups_beyond_threshold_snap_to_earliest(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        start = datetime(2026, 3, 1, 20, 0, 0)
        await ledger.record_attendance(roster.main.id, raid.id, 0, recorded_at=start)
        await ledger.record_attendance(roster.officer.id, raid.id, 0, recorded_at=start + timedelta(hours=2))
        await ledger.record_attendance(roster.main.id, raid.id, 1, recorded_at=start + timedelta(hours=1))
        await ledger.record_attendance(roster.officer.id, raid.id, 1, recorded_at=start + timedelta(hours=1, minutes=30))

        assert await ledger.normalize_tick_times(raid.id) == 1

        async with db.get_session() as session:
            result = await session.execute(
                select(AttendanceFact.tick_index, AttendanceFact.recorded_at)
                .where(AttendanceFact.raid_id == raid.id)
                .order_by(AttendanceFact.tick_index, AttendanceFact.recorded_at)
            )
            rows = result.all()

        assert [recorded_at for tick, recorded_at in rows if tick == 0] == [start, start]
        assert [recorded_at for tick, recorded_at in rows if tick == 1] == [
            start + timedelta(hours=1),
            start + timedelta(hours=1, minutes=30),
        ]

    async def test_custom_threshold(self, db, guild, roster, raid):
        ledger = AttendanceLedger(db, guild.id)
        start = datetime(2026, 3, 1, 20, 0, 0)
        await ledger.record_attendance(roster.main.id, raid.id, 0, recorded_at=start)
        await ledger.record_attendance(roster.officer.id, raid.id, 0, recorded_at=start + timedelta(minutes=10))

        assert await ledger.normalize_tick_times(raid.id, threshold=timedelta(minutes=15)) == 0
        assert await ledger.normalize_tick_times(raid.id, threshold=timedelta(minutes=5)) == 1
