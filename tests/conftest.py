"""
Shared fixtures: a fresh file-backed SQLite database per test, one guild,
a raid and a small roster (a main with one box, plus an officer).
"""

from types import SimpleNamespace

import httpx
import pytest

from raidtracker.config import Config
from raidtracker.database.database import Database
from raidtracker.database.models import OwnershipLink
from raidtracker.data_models.actor import Actor, Role
from raidtracker.services.attendance_recalc import AttendanceRecalcClient


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep logs in the test directory and the collaborator disabled by default."""
    monkeypatch.setattr(Config, 'LOG_DIR', str(tmp_path / 'logs'))
    monkeypatch.setattr(Config, 'ATTENDANCE_RECALC_URL', '')
    monkeypatch.setattr(Config, 'PASS_TOKEN_ITEM_ID', 0)


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'raid_tracker_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
async def guild(db):
    return await db.create_guild("Fellowship")


@pytest.fixture
async def other_guild(db):
    return await db.create_guild("Mordor")


@pytest.fixture
async def roster(db, guild):
    main = await db.create_character(
        guild.id, "Thorin", "warrior", base_ticket_allocation=100, attendance_30=40, ticks_since_last_win=7
    )
    box = await db.create_character(guild.id, "Gimli", "cleric", base_ticket_allocation=50)
    officer = await db.create_character(guild.id, "Elrond", "druid", base_ticket_allocation=30)

    async with db.transaction() as session:
        session.add(OwnershipLink(main_id=main.id, box_id=box.id))

    return SimpleNamespace(main=main, box=box, officer=officer)


@pytest.fixture
async def raid(db, guild):
    return await db.create_raid(guild.id, "Plane of Fear")


@pytest.fixture
def member(roster):
    return Actor(character_id=roster.main.id, role=Role.MEMBER)


@pytest.fixture
def officer(roster):
    return Actor(character_id=roster.officer.id, role=Role.OFFICER)


@pytest.fixture
def admin(roster):
    return Actor(character_id=roster.officer.id, role=Role.ADMIN)


@pytest.fixture
def recalc_calls():
    return []


@pytest.fixture
def recalc_client(recalc_calls):
    """Collaborator client backed by an in-memory transport recording each call."""
    def handler(request: httpx.Request) -> httpx.Response:
        recalc_calls.append(request)
        return httpx.Response(200, json={"updated": True})

    return AttendanceRecalcClient(
        url="http://attendance.test/recalculate",
        timeout=1,
        transport=httpx.MockTransport(handler)
    )
