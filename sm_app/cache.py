"""
Keyed TTL cache over an injected mapping.

Entries are `(expires_at, value)` pairs. The mapping is injected so tests can
hand in a plain dict; in the app it is one process-wide dict kept alive by
`st.cache_resource`, so every browser session sees the same entries.

Writers never update cached values in place. They remove every variant of
the affected key after their write succeeds and the next read rebuilds it.
"""
from __future__ import annotations
import copy
import time as _pytime
from typing import Any, Callable, Iterable, MutableMapping, Optional

import streamlit as st
from loguru import logger

from .utils import email_key


class _Miss:
    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()
NULL_MARKER = "__SM_NULL__"


@st.cache_resource(show_spinner=False)
def shared_store() -> dict:
    return {}


class TTLCache:
    def __init__(self, store: Optional[MutableMapping] = None,
                 clock: Callable[[], float] = _pytime.time):
        self.store = shared_store() if store is None else store
        self.clock = clock

    def get(self, key: str) -> Any:
        entry = self.store.get(key)
        if entry is None:
            return MISS
        expires_at, value = entry
        if self.clock() >= expires_at:
            self.store.pop(key, None)
            return MISS
        return copy.deepcopy(value)

    def put(self, key: str, value: Any, ttl_sec: float) -> None:
        self.store[key] = (self.clock() + ttl_sec, copy.deepcopy(value))

    def remove(self, key: str) -> None:
        self.store.pop(key, None)

    def remove_all(self, keys: Iterable[str]) -> None:
        for k in keys:
            self.store.pop(k, None)

    def get_or_load(self, key: str, loader: Callable[[], Any], ttl_sec: int,
                    null_ttl_sec: Optional[int] = None) -> Any:
        """Cached read; a None from the loader is remembered as a null marker for null_ttl_sec."""
        hit = self.get(key)
        if hit is not MISS:
            return None if hit == NULL_MARKER else hit
        value = loader()
        if value is None:
            if null_ttl_sec:
                self.put(key, NULL_MARKER, null_ttl_sec)
        else:
            self.put(key, value, ttl_sec)
        return value


def safe_invalidate(cache: TTLCache, keys: Iterable[str]) -> None:
    keys = list(keys)
    try:
        cache.remove_all(keys)
    except Exception as e:  # best effort, the write itself already succeeded
        logger.warning("cache invalidation failed for {}: {}", keys, e)


def force_refresh(cache: TTLCache, keys: Iterable[str], reread: Callable[[], Any],
                  settle_sec: float = 0.1) -> Any:
    """Invalidate, pause, and read again.

    The pause gives the sheet a moment to surface the write it just
    accepted; reads straight after a write sometimes return the old row.
    """
    safe_invalidate(cache, keys)
    if settle_sec:
        _pytime.sleep(settle_sec)
    return reread()


# ===== key builders =====
def _flag(include_inactive: bool) -> str:
    return "true" if include_inactive else "false"


def team_key(team_id: str, include_inactive: bool) -> str:
    return f"teamData_{team_id}_incInactive_{_flag(include_inactive)}"


def player_email_key(email: str, include_inactive: bool) -> str:
    return f"playerData_email_{email_key(email)}_incInactive_{_flag(include_inactive)}"


def player_id_key(player_id: str, include_inactive: bool) -> str:
    return f"playerData_id_{player_id}_incInactive_{_flag(include_inactive)}"


def schedule_key(sheet_name: str, year: int, week: int) -> str:
    return f"scheduleData_{sheet_name}_{year}_W{week}"


def team_keys(team_id: str) -> list[str]:
    return [team_key(team_id, True), team_key(team_id, False)]


def player_keys(player_id: str = "", email: str = "") -> list[str]:
    keys = []
    for flag in (True, False):
        if player_id:
            keys.append(player_id_key(player_id, flag))
        if email:
            keys.append(player_email_key(email, flag))
    return keys
