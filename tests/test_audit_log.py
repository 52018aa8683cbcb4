"""Tests for audit templates, token parsing and append-only storage."""

import pytest

from raidtracker.database.models import AuditEntry, AuditType
from raidtracker.operations.audit_log import AuditLog, format_ticks, parse_audit_message, token_safe


class TestFormatting:
    """Tests for the small rendering helpers."""

    def test_format_ticks(self):
        assert format_ticks([3]) == "tick 3"
        assert format_ticks([2, 0, 1]) == "ticks 0, 1, 2"

    def test_token_safe_strips_brackets(self):
        assert token_safe("Sword [of] Truth") == "Sword of Truth"
        assert token_safe(None) == "unknown"


class TestRecord:
    """Tests for AuditLog.record."""

    async def test_box_link_message_and_references(self, db, guild, roster):
        audit = AuditLog(db, guild.id)
        entry = await audit.record(
            roster.officer.id,
            AuditType.BOX_LINKED,
            from_character_id=roster.main.id,
            to_character_id=roster.box.id
        )

        assert entry.message == "un[elrond] linked tn[gimli] as a box of fn[thorin]"
        assert entry.guild_id == guild.id
        assert entry.from_character_id == roster.main.id
        assert entry.to_character_id == roster.box.id

    async def test_entries_are_newest_first_and_paginated(self, db, guild, roster, raid):
        audit = AuditLog(db, guild.id)
        for character in (roster.main, roster.box, roster.officer):
            await audit.record(roster.officer.id, AuditType.CHARACTER_DELETED, to_character_id=character.id)
        await audit.record(
            roster.officer.id, AuditType.TICK_APPROVED,
            to_character_id=roster.main.id, raid_id=raid.id, ticks=format_ticks([0])
        )

        first = await audit.entries(page=0, page_size=3)
        assert first.total_results == 4
        assert [entry.type for entry in first.entries] == [
            AuditType.TICK_APPROVED,
            AuditType.CHARACTER_DELETED,
            AuditType.CHARACTER_DELETED,
        ]
        assert first.entries[1].message == "un[elrond] deleted tn[elrond]"

        second = await audit.entries(page=1, page_size=3)
        assert [entry.message for entry in second.entries] == ["un[elrond] deleted tn[thorin]"]

        by_raid = await audit.entries(raid_id=raid.id)
        assert by_raid.total_results == 1

    async def test_entries_are_scoped_to_guild(self, db, guild, other_guild, roster):
        await AuditLog(db, guild.id).record(roster.officer.id, AuditType.CHARACTER_DELETED, to_character_id=roster.box.id)
        assert (await AuditLog(db, other_guild.id).entries()).total_results == 0

    async def test_entries_cannot_be_modified_or_deleted(self, db, guild, roster):
        entry = await AuditLog(db, guild.id).record(
            roster.officer.id, AuditType.CHARACTER_DELETED, to_character_id=roster.box.id
        )

        with pytest.raises(ValueError):
            async with db.transaction() as session:
                stored = await session.get(AuditEntry, entry.id)
                stored.message = "nothing happened"
                await session.flush()

        with pytest.raises(ValueError):
            async with db.transaction() as session:
                stored = await session.get(AuditEntry, entry.id)
                await session.delete(stored)
                await session.flush()

        page = await AuditLog(db, guild.id).entries()
        assert page.entries[0].message == "un[elrond] deleted tn[gimli]"


class TestParse:
    """Tests for parse_audit_message."""

    async def test_segments_carry_reference_ids(self, db, guild, roster, raid):
        item = await db.create_item("Cloak of Flames")
        entry = await AuditLog(db, guild.id).record(
            roster.officer.id,
            AuditType.LOOT_REASSIGNED,
            item_id=item.id,
            from_character_id=roster.box.id,
            to_character_id=roster.main.id,
            raid_id=raid.id
        )

        segments = parse_audit_message(entry)
        references = [(s.kind, s.text, s.ref_id) for s in segments if s.kind != 'text']

        assert references == [
            ('un', 'elrond', roster.officer.id),
            ('in', 'Cloak of Flames', item.id),
            ('fn', 'gimli', roster.box.id),
            ('tn', 'thorin', roster.main.id),
            ('rn', 'Plane of Fear', raid.id),
        ]
        assert "".join(s.text for s in segments) == "elrond moved Cloak of Flames from gimli to thorin in Plane of Fear"

    def test_plain_message_is_single_text_segment(self):
        entry = AuditEntry(message="nothing to link here")
        segments = parse_audit_message(entry)
        assert len(segments) == 1
        assert segments[0].kind == 'text'
