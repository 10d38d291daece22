from datetime import datetime

import pytest

from sm_app.config import Settings
from sm_app.membership import MembershipService
from sm_app.service import ScheduleService
from sm_app.weeks import Clock
from sm_app.wiring import build_app
from tests.fakes import FakeSpreadsheet

LEADER = "lead@example.com"
MEMBER = "mika@example.com"
OUTSIDER = "someone@example.com"
ADMIN_EMAIL = "admin@example.com"

# Wednesday of ISO week 2025-W24
FIXED_NOW = datetime(2025, 6, 11, 12, 0)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        protect_surfaces=True,
        auto_protect_new_teams=True,
        refresh_settle_sec=0,
        admin_emails=(ADMIN_EMAIL,),
    )


@pytest.fixture
def now():
    return {"value": FIXED_NOW}


@pytest.fixture
def clock(settings, now):
    return Clock(settings, now_fn=lambda: now["value"])


@pytest.fixture
def ss():
    return FakeSpreadsheet()


@pytest.fixture
def cache_store():
    return {}


@pytest.fixture
def app(ss, settings, clock, cache_store):
    return build_app(ss, settings, cache_store=cache_store, clock=clock)


@pytest.fixture
def schedule(app):
    return ScheduleService(app)


@pytest.fixture
def membership(app, schedule):
    return MembershipService(app, schedule)


@pytest.fixture
def team(membership):
    res = membership.create_team(LEADER, "Alpha Squad", "1", "LD", display_name="Leader")
    assert res.success, res.message
    return res.data


@pytest.fixture
def team_with_member(membership, team):
    res = membership.join_team(MEMBER, team.join_code, "MK", display_name="Mika")
    assert res.success, res.message
    return team
