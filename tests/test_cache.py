import pytest

from sm_app.cache import (
    MISS, NULL_MARKER, TTLCache, force_refresh, player_email_key, player_id_key, player_keys,
    safe_invalidate, schedule_key, team_key, team_keys,
)


@pytest.fixture
def tick():
    return {"t": 1000.0}


@pytest.fixture
def cache(tick):
    return TTLCache({}, clock=lambda: tick["t"])


def test_put_then_get_before_expiry(cache, tick):
    cache.put("k", {"a": 1}, 30)
    tick["t"] += 29
    assert cache.get("k") == {"a": 1}


def test_entries_expire(cache, tick):
    cache.put("k", "v", 30)
    tick["t"] += 30
    assert cache.get("k") is MISS
    assert "k" not in cache.store


def test_remove_forces_a_miss(cache):
    cache.put("a", 1, 60)
    cache.put("b", 2, 60)
    cache.remove("a")
    assert cache.get("a") is MISS
    cache.remove_all(["b", "never-there"])
    assert cache.get("b") is MISS


def test_cached_values_are_copies(cache):
    value = {"roster": ["JS"]}
    cache.put("k", value, 60)
    value["roster"].append("MK")
    got = cache.get("k")
    got["roster"].append("ZZ")
    assert cache.get("k") == {"roster": ["JS"]}


def test_get_or_load_reads_backing_store_once(cache):
    calls = []

    def load():
        calls.append(1)
        return "row"

    assert cache.get_or_load("k", load, 60) == "row"
    assert cache.get_or_load("k", load, 60) == "row"
    assert len(calls) == 1


def test_null_marker_has_shorter_ttl(cache, tick):
    calls = []

    def load():
        calls.append(1)
        return None

    assert cache.get_or_load("k", load, 300, null_ttl_sec=60) is None
    assert cache.store["k"][1] == NULL_MARKER
    assert cache.get_or_load("k", load, 300, null_ttl_sec=60) is None
    assert len(calls) == 1
    tick["t"] += 61
    cache.get_or_load("k", load, 300, null_ttl_sec=60)
    assert len(calls) == 2


def test_force_refresh_invalidates_then_rereads(cache):
    cache.put("team", "old", 60)
    assert force_refresh(cache, ["team"], lambda: "fresh", settle_sec=0) == "fresh"
    assert cache.get("team") is MISS


def test_safe_invalidate_swallows_store_errors():
    class Broken(dict):
        def pop(self, *a):
            raise RuntimeError("store down")

    safe_invalidate(TTLCache(Broken()), ["x"])


def test_key_builders():
    assert team_key("T1", False) == "teamData_T1_incInactive_false"
    assert player_email_key(" Lead@Example.com ", True) == "playerData_email_lead@example.com_incInactive_true"
    assert player_id_key("P1", False) == "playerData_id_P1_incInactive_false"
    assert schedule_key("TEAM_T1", 2025, 4) == "scheduleData_TEAM_T1_2025_W4"
    assert set(team_keys("T1")) == {team_key("T1", True), team_key("T1", False)}
    assert len(player_keys("P1", "a@b.c")) == 4
    assert player_keys("P1") == [player_id_key("P1", True), player_id_key("P1", False)]
