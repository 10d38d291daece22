"""
PLAYER_INDEX: one row per active (team, player) membership.

Reading a team's roster from here touches only the index rows instead of
every player record. The index is a copy, so every join, leave, profile
change and deactivation has to be mirrored into it; when that mirroring
fails the primary change still stands and `rebuild_from_primary` puts the
index back in line.
"""
from __future__ import annotations
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from .config import INDEX_HEADERS, INDEX_SHEET
from .models import PlayerRecord, RebuildStats, RosterEntry, TeamRecord
from .quotas import all_values, ensure_rows, get_or_create_sheet, open_sheet, rect_a1, retry_429, write_cells, write_rect
from .utils import normalize_token

_FIELD_COLS = {"display_name": 3, "initials": 4, "role": 5, "discord_username": 6}
REBUILD_STAMP_CELL = "G1"

SlowRoster = Callable[[str], List[RosterEntry]]


def _entry_from_row(row: List[str]) -> RosterEntry:
    row = list(row) + [""] * (6 - len(row))
    return RosterEntry(team_id=row[0], player_id=row[1], display_name=row[2],
                       initials=row[3], role=row[4], discord_username=row[5])


def _row_from_entry(e: RosterEntry) -> List[str]:
    return [e.team_id, e.player_id, e.display_name, e.initials, e.role, e.discord_username or ""]


def sort_roster(entries: Iterable[RosterEntry]) -> List[RosterEntry]:
    return sorted(entries, key=lambda e: ((e.display_name or "").casefold(), e.player_id))


class RosterIndex:
    def __init__(self, ss, slow_roster: Optional[SlowRoster] = None):
        self.ss = ss
        self.slow_roster = slow_roster

    def _sheet(self):
        return open_sheet(self.ss, INDEX_SHEET)

    def ensure_sheet(self):
        return get_or_create_sheet(self.ss, INDEX_SHEET, INDEX_HEADERS)

    def _rows(self, ws) -> List[List[str]]:
        vals = all_values(ws)
        return vals[1:] if len(vals) > 1 else []

    # ===== writes =====
    def add_entry(self, entry: RosterEntry) -> bool:
        try:
            ws = self.ensure_sheet()
            retry_429(ws.append_row, _row_from_entry(entry), value_input_option="RAW")
            logger.debug("index + {} on {}", entry.player_id, entry.team_id)
            return True
        except Exception as e:
            logger.warning("index add failed for {} on {}: {}", entry.player_id, entry.team_id, e)
            return False

    def remove_entry(self, team_id: str, player_id: str) -> bool:
        try:
            ws = self._sheet()
            if ws is None:
                logger.warning("{} missing, skipping index remove", INDEX_SHEET)
                return False
            for i, row in enumerate(self._rows(ws), start=2):
                e = _entry_from_row(row)
                if e.team_id == team_id and e.player_id == player_id:
                    retry_429(ws.delete_rows, i)
                    return True
            return False
        except Exception as e:
            logger.warning("index remove failed for {} on {}: {}", player_id, team_id, e)
            return False

    def update_entry(self, player_id: str, fields: Dict[str, str]) -> int:
        """Rewrite the given fields on every row of this player; returns rows touched."""
        unknown = set(fields) - set(_FIELD_COLS)
        if unknown:
            raise ValueError(f"Unknown index fields: {sorted(unknown)}")
        try:
            ws = self._sheet()
            if ws is None:
                return 0
            cells, touched = {}, 0
            for i, row in enumerate(self._rows(ws), start=2):
                if _entry_from_row(row).player_id != player_id:
                    continue
                touched += 1
                for name, value in fields.items():
                    cells[(i, _FIELD_COLS[name])] = value
            write_cells(ws, cells)
            return touched
        except Exception as e:
            logger.warning("index update failed for {}: {}", player_id, e)
            return 0

    def remove_all_for_team(self, team_id: str) -> int:
        try:
            ws = self._sheet()
            if ws is None:
                return 0
            hits = [i for i, row in enumerate(self._rows(ws), start=2) if _entry_from_row(row).team_id == team_id]
            for i in reversed(hits):
                retry_429(ws.delete_rows, i)
            return len(hits)
        except Exception as e:
            logger.warning("index purge failed for {}: {}", team_id, e)
            return 0

    # ===== reads =====
    def lookup(self, team_id: str) -> List[RosterEntry]:
        ws = None
        try:
            ws = self._sheet()
            if ws is not None:
                return sort_roster(e for e in map(_entry_from_row, self._rows(ws)) if e.team_id == team_id)
        except Exception as e:
            logger.warning("index read failed, scanning players instead: {}", e)
        if ws is None:
            logger.info("{} unavailable, scanning players for {}", INDEX_SHEET, team_id)
        return sort_roster(self.slow_roster(team_id)) if self.slow_roster else []

    def is_token_in_use_on_team(self, team_id: str, token: str, exclude_player_id: Optional[str] = None) -> bool:
        want = normalize_token(token)
        return any(
            e.initials.upper() == want and e.player_id != exclude_player_id
            for e in self.lookup(team_id)
        )

    # ===== recovery =====
    def rebuild_from_primary(self, players: Iterable[PlayerRecord],
                             team_lookup: Callable[[str], Optional[TeamRecord]],
                             timestamp: str = "") -> RebuildStats:
        entries: List[RosterEntry] = []
        processed = 0
        active_team: Dict[str, bool] = {}
        for p in players:
            if not p.is_active:
                continue
            processed += 1
            for slot in p.slots:
                if not slot.occupied:
                    continue
                if slot.team_id not in active_team:
                    team = team_lookup(slot.team_id)
                    active_team[slot.team_id] = bool(team and team.is_active)
                if not active_team[slot.team_id]:
                    continue
                entries.append(RosterEntry(slot.team_id, p.player_id, p.display_name,
                                           slot.initials, slot.role, p.discord_username))

        ws = self.ensure_sheet()
        if (ws.row_count or 0) > 1:
            retry_429(ws.batch_clear, [rect_a1(2, 1, ws.row_count, len(INDEX_HEADERS))])
        if entries:
            ensure_rows(ws, len(entries) + 1)
            write_rect(ws, 2, 1, [_row_from_entry(e) for e in entries])
        retry_429(ws.update, range_name=REBUILD_STAMP_CELL, values=[[timestamp]])

        stats = RebuildStats(
            players_processed=processed,
            entries_created=len(entries),
            teams_represented=len({e.team_id for e in entries}),
            timestamp=timestamp,
        )
        logger.info("index rebuilt: {} players, {} entries", processed, len(entries))
        return stats
