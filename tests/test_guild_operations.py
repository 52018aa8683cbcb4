"""Tests for admin guild settings."""

import pytest

from raidtracker.database.models import AuditType
from raidtracker.operations.audit_log import AuditLog
from raidtracker.operations.guild_operations import GuildOperations
from raidtracker.utils.exceptions import InvalidRequestError, UnauthorizedError


class TestUpdateModifiers:
    """Tests for GuildOperations.update_modifiers."""

    async def test_admin_updates_modifiers(self, db, guild, roster, admin, recalc_client, recalc_calls):
        ops = GuildOperations(db, guild.id, recalc_client=recalc_client)

        updated = await ops.update_modifiers(admin, 25, 50)
        await recalc_client.drain()

        assert updated.last_win_modifier == pytest.approx(0.25)
        assert updated.box_modifier == pytest.approx(0.5)
        assert len(recalc_calls) == 1

        entry = (await AuditLog(db, guild.id).entries()).entries[0]
        assert entry.type == AuditType.GUILD_SETTINGS_UPDATED
        assert entry.message == "un[elrond] set the last win modifier to 25% and the box modifier to 50%"

    async def test_officer_is_not_enough(self, db, guild, officer):
        with pytest.raises(UnauthorizedError):
            await GuildOperations(db, guild.id).update_modifiers(officer, 10, 10)

    @pytest.mark.parametrize("last_win, box", [(-1, 10), (10, 101), (None, 10)])
    async def test_out_of_range(self, db, guild, admin, last_win, box):
        with pytest.raises(InvalidRequestError):
            await GuildOperations(db, guild.id).update_modifiers(admin, last_win, box)
