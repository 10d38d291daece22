from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .cache import MISS, NULL_MARKER, TTLCache, force_refresh, safe_invalidate, team_key, team_keys
from .config import (
    MAX_JOIN_CODE_LENGTH, MAX_TEAM_NAME_LENGTH, MIN_JOIN_CODE_LENGTH, MIN_TEAM_NAME_LENGTH,
    TEAM_HEADERS, TEAMS_SHEET, Settings,
)
from .errors import NotFoundError, ValidationError
from .models import TeamRecord
from .quotas import all_values, ensure_rows, get_or_create_sheet, retry_429, write_cells, write_rect
from .utils import bool_cell, collapse_spaces, new_join_code, split_list, to_int, truthy

# field -> 1-based column on the Teams sheet
TEAM_COLS = {
    "team_id": 1, "team_name": 2, "division": 3, "leader_email": 4, "join_code": 5,
    "created_date": 6, "last_active": 7, "max_players": 8, "is_active": 9, "is_public": 10,
    "player_count": 11, "player_list": 12, "initials_list": 13,
    "availability_sheet_name": 14, "logo_url": 15,
}
EDITABLE_FIELDS = set(TEAM_COLS) - {"team_id", "created_date"}


def _team_from_row(row: List[str]) -> TeamRecord:
    row = list(row) + [""] * (len(TEAM_HEADERS) - len(row))
    return TeamRecord(
        team_id=row[0], team_name=row[1], division=str(row[2]), leader_email=row[3],
        join_code=row[4], created_date=row[5], last_active=row[6],
        max_players=to_int(row[7], 10), is_active=truthy(row[8]), is_public=truthy(row[9]),
        player_count=to_int(row[10], 0), player_list=split_list(row[11]),
        initials_list=split_list(row[12]), availability_sheet_name=row[13], logo_url=row[14],
    )


def _cell(value: Any) -> str:
    if isinstance(value, bool):
        return bool_cell(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return "" if value is None else str(value)


def _row_from_team(t: TeamRecord) -> List[str]:
    return [_cell(getattr(t, f)) for f in sorted(TEAM_COLS, key=TEAM_COLS.get)]


class TeamRegistry:
    def __init__(self, ss, settings: Settings, cache: TTLCache):
        self.ss = ss
        self.settings = settings
        self.cache = cache

    def _sheet(self):
        return get_or_create_sheet(self.ss, TEAMS_SHEET, TEAM_HEADERS)

    def _scan(self) -> List[Tuple[int, TeamRecord]]:
        vals = all_values(self._sheet())
        return [(i, _team_from_row(r)) for i, r in enumerate(vals[1:], start=2) if r and r[0]]

    def _locate(self, team_id: str) -> Tuple[int, TeamRecord]:
        for row, team in self._scan():
            if team.team_id == team_id:
                return row, team
        raise NotFoundError(f"Team '{team_id}' not found.")

    # ===== reads =====
    def get_team(self, team_id: str, include_inactive: bool = False) -> Optional[TeamRecord]:
        if not team_id:
            return None
        key = team_key(team_id, include_inactive)
        hit = self.cache.get(key)
        if hit is not MISS:
            return None if hit == NULL_MARKER else hit

        found = next((t for _, t in self._scan() if t.team_id == team_id), None)
        if found is None:
            self.cache.put(key, NULL_MARKER, self.settings.null_ttl(self.settings.team_cache_ttl))
            return None
        if not found.is_active and not include_inactive:
            # the inactive record is cached under the other variant, nothing to remember here
            return None
        self.cache.put(key, found, self.settings.team_cache_ttl)
        return found

    def require_team(self, team_id: str, include_inactive: bool = False) -> TeamRecord:
        team = self.get_team(team_id, include_inactive)
        if team is None:
            raise NotFoundError(f"Team '{team_id}' not found or inactive.")
        return team

    def get_all_teams(self, include_inactive: bool = False) -> List[TeamRecord]:
        teams = [t for _, t in self._scan() if include_inactive or t.is_active]
        return sorted(teams, key=lambda t: t.team_name.casefold())

    def find_by_join_code(self, code: str) -> Optional[TeamRecord]:
        want = (code or "").strip().upper()
        return next((t for _, t in self._scan() if t.join_code.upper() == want), None)

    # ===== writes =====
    def invalidate(self, team_id: str) -> None:
        safe_invalidate(self.cache, team_keys(team_id))

    def check_new_team(self, team_name: str, division: str) -> str:
        name = collapse_spaces(team_name)
        if not (MIN_TEAM_NAME_LENGTH <= len(name) <= MAX_TEAM_NAME_LENGTH):
            raise ValidationError(
                f"Team name must be {MIN_TEAM_NAME_LENGTH}-{MAX_TEAM_NAME_LENGTH} characters.")
        if str(division) not in self.settings.allowed_divisions:
            raise ValidationError(
                f"Division must be one of {', '.join(self.settings.allowed_divisions)}.")
        if any(t.team_name.casefold() == name.casefold() for t in self.get_all_teams()):
            raise ValidationError(f"A team named '{name}' already exists.")
        return name

    def insert(self, team: TeamRecord) -> TeamRecord:
        ws = self._sheet()
        rows = all_values(ws)
        ensure_rows(ws, len(rows) + 1)
        write_rect(ws, len(rows) + 1, 1, [_row_from_team(team)])
        self.invalidate(team.team_id)
        logger.info("team {} '{}' stored", team.team_id, team.team_name)
        return team

    def update_fields(self, team_id: str, fields: Dict[str, Any]) -> None:
        bad = set(fields) - EDITABLE_FIELDS
        if bad:
            raise ValidationError(f"Cannot update team field(s): {', '.join(sorted(bad))}.")
        row, _ = self._locate(team_id)
        write_cells(self._sheet(), {(row, TEAM_COLS[f]): _cell(v) for f, v in fields.items()})
        self.invalidate(team_id)

    def update_team(self, team_id: str, fields: Dict[str, Any]) -> TeamRecord:
        if "division" in fields and str(fields["division"]) not in self.settings.allowed_divisions:
            raise ValidationError(f"Division must be one of {', '.join(self.settings.allowed_divisions)}.")
        if "max_players" in fields:
            n = to_int(fields["max_players"], 0)
            if not (1 <= n <= self.settings.max_players_per_team):
                raise ValidationError(f"Max players must be 1-{self.settings.max_players_per_team}.")
        self.update_fields(team_id, fields)
        return force_refresh(self.cache, team_keys(team_id),
                             lambda: self.get_team(team_id, include_inactive=True),
                             settle_sec=self.settings.refresh_settle_sec)

    def touch_last_active(self, team_id: str, timestamp: str) -> None:
        self.update_fields(team_id, {"last_active": timestamp})

    def write_roster_fields(self, team_id: str, players: List[str], initials: List[str]) -> None:
        self.update_fields(team_id, {
            "player_count": len(players), "player_list": players, "initials_list": initials,
        })

    def delete(self, team_id: str) -> None:
        row, _ = self._locate(team_id)
        retry_429(self._sheet().delete_rows, row)
        self.invalidate(team_id)

    # ===== join codes =====
    def unique_join_code(self, team_name: str, attempts: int = 10) -> str:
        taken = {t.join_code.upper() for _, t in self._scan()}
        for _ in range(attempts):
            code = new_join_code(team_name)
            if code not in taken:
                return code
        raise ValidationError("Could not generate a unique join code; try again.")

    def regenerate_join_code(self, team_id: str) -> str:
        team = self.require_team(team_id)
        code = self.unique_join_code(team.team_name)
        self.update_fields(team_id, {"join_code": code})
        return code

    def validate_join_code(self, code: str) -> TeamRecord:
        code = (code or "").strip().upper()
        if not (MIN_JOIN_CODE_LENGTH <= len(code) <= MAX_JOIN_CODE_LENGTH):
            raise ValidationError("Join code has the wrong length.")
        team = self.find_by_join_code(code)
        if team is None or not team.is_active:
            raise NotFoundError("Invalid join code.")
        if team.player_count >= team.max_players:
            raise ValidationError(f"Team '{team.team_name}' is full.")
        return team
