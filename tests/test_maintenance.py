from datetime import datetime

from sm_app.maintenance import ensure_future_week_blocks, rebuild_player_index, refresh_team_summaries
from sm_app.models import TeamRecord
from tests.conftest import MEMBER


def test_future_weeks_roll_forward(app, team, now, ss):
    ws = ss.worksheet(team.availability_sheet_name)
    first = ensure_future_week_blocks(app)
    assert first.success and first.data["created"] == {team.team_id: 0}

    now["value"] = datetime(2025, 6, 25, 8, 0)  # 2025-W26
    res = ensure_future_week_blocks(app)
    assert res.data["created"] == {team.team_id: 2}
    keys = [b.key for b in app.blocks.find_all_blocks(ws)]
    assert keys == [(2025, w) for w in range(24, 30)]
    assert len(ss.protected_ranges_for(ws.id)) == 1


def test_future_weeks_report_missing_surfaces(app, team):
    app.teams.insert(TeamRecord("TEAM_GHOST_1", "Ghost", "1", "", "GHOST123",
                                availability_sheet_name="TEAM_GHOST_1"))
    res = ensure_future_week_blocks(app)
    assert res.success
    assert "TEAM_GHOST_1" in res.data["failed"]
    assert res.data["created"] == {team.team_id: 0}


def test_rebuild_player_index_repairs_drift(app, team_with_member):
    team = team_with_member
    member = app.players.get_player(MEMBER)
    app.index.remove_entry(team.team_id, member.player_id)
    assert [e.initials for e in app.index.lookup(team.team_id)] == ["LD"]

    res = rebuild_player_index(app)
    assert res.success
    assert res.data.entries_created == 2
    assert sorted(e.initials for e in app.index.lookup(team.team_id)) == ["LD", "MK"]


def test_refresh_team_summaries(app, team):
    app.summaries.remove_team(team.team_id)
    assert app.summaries.read_all() == []
    res = refresh_team_summaries(app)
    assert res.data == {"refreshed": 1, "failed": []}
    [row] = app.summaries.read_all()
    assert row["teamId"] == team.team_id
    assert [r["initials"] for r in row["roster"]] == ["LD"]
