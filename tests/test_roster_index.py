import pytest

from sm_app.config import INDEX_SHEET
from sm_app.models import PlayerRecord, RosterEntry, TeamRecord, TeamSlot
from sm_app.roster_index import RosterIndex
from tests.fakes import FakeSpreadsheet


def entry(team, player, name, initials, role="player"):
    return RosterEntry(team, player, name, initials, role, "")


@pytest.fixture
def ss():
    return FakeSpreadsheet()


@pytest.fixture
def index(ss):
    return RosterIndex(ss)


def test_lookup_is_sorted_by_display_name(index):
    index.add_entry(entry("T1", "P2", "zoe", "ZO"))
    index.add_entry(entry("T1", "P1", "Adam", "AD"))
    index.add_entry(entry("T2", "P3", "Bea", "BE"))
    assert [e.player_id for e in index.lookup("T1")] == ["P1", "P2"]
    assert [e.player_id for e in index.lookup("T2")] == ["P3"]
    assert index.lookup("T9") == []


def test_remove_entry_deletes_first_match_only(index):
    index.add_entry(entry("T1", "P1", "Adam", "AD"))
    index.add_entry(entry("T1", "P1", "Adam", "AD"))
    assert index.remove_entry("T1", "P1")
    assert len(index.lookup("T1")) == 1
    assert not index.remove_entry("T1", "P404")


def test_update_entry_touches_every_team_of_the_player(index):
    index.add_entry(entry("T1", "P1", "Adam", "AD"))
    index.add_entry(entry("T2", "P1", "Adam", "AD"))
    index.add_entry(entry("T2", "P2", "Bea", "BE"))
    assert index.update_entry("P1", {"display_name": "Adam Smith", "discord_username": "adam#1"}) == 2
    assert {e.display_name for e in index.lookup("T1") + index.lookup("T2") if e.player_id == "P1"} == {"Adam Smith"}
    assert next(e for e in index.lookup("T2") if e.player_id == "P2").display_name == "Bea"


def test_update_entry_rejects_unknown_fields(index):
    with pytest.raises(ValueError):
        index.update_entry("P1", {"team_id": "T3"})


def test_remove_all_for_team(index):
    for i in range(3):
        index.add_entry(entry("T1", f"P{i}", f"n{i}", f"A{i}"))
    index.add_entry(entry("T2", "P9", "keep", "KP"))
    assert index.remove_all_for_team("T1") == 3
    assert index.lookup("T1") == []
    assert len(index.lookup("T2")) == 1


def test_token_in_use(index):
    index.add_entry(entry("T1", "P1", "Adam", "AB"))
    assert index.is_token_in_use_on_team("T1", "ab")
    assert not index.is_token_in_use_on_team("T1", "AB", exclude_player_id="P1")
    assert not index.is_token_in_use_on_team("T2", "AB")
    index.remove_entry("T1", "P1")
    assert not index.is_token_in_use_on_team("T1", "AB")


def test_missing_index_falls_back_to_slow_scan(ss):
    calls = []

    def slow(team_id):
        calls.append(team_id)
        return [entry(team_id, "P1", "Adam", "AB")]

    index = RosterIndex(ss, slow_roster=slow)
    assert index.is_token_in_use_on_team("T1", "AB")
    assert calls == ["T1"]
    assert not any(ws.title == INDEX_SHEET for ws in ss.worksheets())


def test_add_entry_failure_is_swallowed(ss, monkeypatch):
    index = RosterIndex(ss)

    def broken():
        raise RuntimeError("sheet gone")

    monkeypatch.setattr(index, "ensure_sheet", broken)
    assert index.add_entry(entry("T1", "P1", "Adam", "AB")) is False


def _player(pid, active, *slots):
    p = PlayerRecord(pid, f"{pid.lower()}@example.com", pid, is_active=active)
    for n, (team, initials) in enumerate(slots):
        setattr(p, f"team{n + 1}", TeamSlot(team, initials, "player", "2025-01-01"))
    return p


def test_rebuild_matches_active_memberships(ss):
    teams = {
        "T1": TeamRecord("T1", "One", "1", "", "ONEX1234", is_active=True),
        "T2": TeamRecord("T2", "Two", "1", "", "TWOX1234", is_active=True),
        "T3": TeamRecord("T3", "Gone", "1", "", "GONE1234", is_active=False),
    }
    players = [
        _player("P1", True, ("T1", "AA"), ("T2", "AB")),
        _player("P2", True, ("T1", "BB"), ("T3", "BC")),
        _player("P3", False, ("T1", "CC")),
        _player("P4", True),
    ]
    index = RosterIndex(ss)
    # stale rows the rebuild must wipe
    index.add_entry(entry("T1", "P3", "ghost", "CC"))
    index.add_entry(entry("T3", "P2", "ghost", "BC"))

    stats = index.rebuild_from_primary(players, teams.get, timestamp="2025-06-11T12:00:00")
    got = {(e.team_id, e.player_id) for t in teams for e in index.lookup(t)}
    assert got == {("T1", "P1"), ("T2", "P1"), ("T1", "P2")}
    assert (stats.players_processed, stats.entries_created, stats.teams_represented) == (3, 3, 2)
    assert ss.worksheet(INDEX_SHEET).cell_value(1, 7) == "2025-06-11T12:00:00"


def test_rebuild_equals_incremental_adds(ss):
    players = [_player("P1", True, ("T1", "AA")), _player("P2", True, ("T1", "BB"), ("T2", "BA"))]
    teams = {t: TeamRecord(t, t, "1", "", t + "XXXXX") for t in ("T1", "T2")}

    incremental = RosterIndex(FakeSpreadsheet())
    for p in players:
        for s in p.slots:
            if s.occupied:
                incremental.add_entry(RosterEntry(s.team_id, p.player_id, p.display_name, s.initials, s.role, ""))

    rebuilt = RosterIndex(ss)
    rebuilt.rebuild_from_primary(players, teams.get)
    for t in teams:
        assert rebuilt.lookup(t) == incremental.lookup(t)
