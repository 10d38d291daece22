"""SYSTEM_CACHE: one precomputed row per team (summary + roster JSON) for cheap list views."""
from __future__ import annotations
import json
from typing import Dict, List

from loguru import logger

from .config import SYSTEM_CACHE_HEADERS, SYSTEM_CACHE_SHEET
from .models import RosterEntry, TeamRecord
from .quotas import all_values, ensure_rows, get_or_create_sheet, retry_429, write_rect
from .utils import bool_cell, truthy


def roster_json(roster: List[RosterEntry]) -> str:
    return json.dumps([
        {
            "displayName": e.display_name,
            "initials": e.initials,
            "role": e.role,
            "googleEmail": None,
            "discordUsername": e.discord_username or None,
        }
        for e in roster
    ])


class TeamSummaryCache:
    def __init__(self, ss):
        self.ss = ss

    def _sheet(self):
        return get_or_create_sheet(self.ss, SYSTEM_CACHE_SHEET, SYSTEM_CACHE_HEADERS)

    def refresh_team(self, team: TeamRecord, roster: List[RosterEntry]) -> bool:
        try:
            ws = self._sheet()
            vals = all_values(ws)
            row_vals = [team.team_id, team.team_name, team.division, team.logo_url,
                        bool_cell(team.is_public), roster_json(roster)]
            row = next((i for i, r in enumerate(vals[1:], start=2) if r and r[0] == team.team_id), None)
            if row is None:
                row = max(len(vals), 1) + 1
                ensure_rows(ws, row)
            write_rect(ws, row, 1, [row_vals])
            logger.debug("summary cache refreshed for {}", team.team_id)
            return True
        except Exception as e:
            logger.warning("summary cache refresh failed for {}: {}", team.team_id, e)
            return False

    def remove_team(self, team_id: str) -> bool:
        try:
            ws = self._sheet()
            for i, r in enumerate(all_values(ws)[1:], start=2):
                if r and r[0] == team_id:
                    retry_429(ws.delete_rows, i)
                    return True
            return False
        except Exception as e:
            logger.warning("summary cache remove failed for {}: {}", team_id, e)
            return False

    def read_all(self) -> List[Dict]:
        out = []
        for r in all_values(self._sheet())[1:]:
            r = list(r) + [""] * (len(SYSTEM_CACHE_HEADERS) - len(r))
            if not r[0]:
                continue
            out.append({
                "teamId": r[0], "teamName": r[1], "division": r[2], "logoUrl": r[3],
                "isPublic": truthy(r[4]), "roster": json.loads(r[5] or "[]"),
            })
        return out
