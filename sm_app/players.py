from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from .cache import MISS, NULL_MARKER, TTLCache, player_email_key, player_id_key, player_keys, safe_invalidate
from .config import DAYS_PER_WEEK, MAX_DISPLAY_NAME_LENGTH, PLAYER_HEADERS, PLAYERS_SHEET, Settings
from .errors import NotFoundError, ValidationError
from .models import AvailabilityTemplate, PlayerRecord, RosterEntry, TeamSlot, VisualCell
from .quotas import all_values, ensure_rows, get_or_create_sheet, write_cells, write_rect
from .utils import bool_cell, collapse_spaces, email_key, is_valid_email, new_player_id, truthy

PLAYER_COLS = {
    "player_id": 1, "google_email": 2, "display_name": 3, "created_date": 4, "last_seen": 5,
    "is_active": 6, "discord_username": 15, "availability_template": 16,
}
# slot number -> first column of (team_id, initials, role, join_date)
SLOT_BASE_COL = {1: 7, 2: 11}


def _player_from_row(row: List[str]) -> PlayerRecord:
    row = list(row) + [""] * (len(PLAYER_HEADERS) - len(row))
    return PlayerRecord(
        player_id=row[0], google_email=row[1], display_name=row[2],
        created_date=row[3], last_seen=row[4], is_active=truthy(row[5]),
        team1=TeamSlot(row[6], row[7].upper(), row[8], row[9]),
        team2=TeamSlot(row[10], row[11].upper(), row[12], row[13]),
        discord_username=row[14], availability_template=row[15],
    )


def _row_from_player(p: PlayerRecord) -> List[str]:
    return [
        p.player_id, p.google_email, p.display_name, p.created_date, p.last_seen, bool_cell(p.is_active),
        p.team1.team_id, p.team1.initials, p.team1.role, p.team1.join_date,
        p.team2.team_id, p.team2.initials, p.team2.role, p.team2.join_date,
        p.discord_username, p.availability_template,
    ]


def template_json(t: AvailabilityTemplate) -> str:
    return json.dumps({
        "cells": [[c.row, c.col] for c in t.cells],
        "savedFrom": t.saved_from,
        "lastUpdated": t.last_updated,
    })


def parse_template(raw: str) -> AvailabilityTemplate:
    """Decode the stored JSON; anything unreadable is reported as corrupted."""
    try:
        data = json.loads(raw)
        cells = [VisualCell(int(r), int(c)) for r, c in data["cells"]]
        return AvailabilityTemplate(cells, str(data.get("savedFrom") or ""), str(data.get("lastUpdated") or ""))
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        logger.warning("unreadable availability template: {}", e)
        raise ValidationError("Template data corrupted. Please save a new template.") from e


def check_display_name(name: str) -> str:
    name = collapse_spaces(name)
    if not name or len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(f"Display name must be 1-{MAX_DISPLAY_NAME_LENGTH} characters.")
    return name


class PlayerRegistry:
    def __init__(self, ss, settings: Settings, cache: TTLCache):
        self.ss = ss
        self.settings = settings
        self.cache = cache

    def _sheet(self):
        return get_or_create_sheet(self.ss, PLAYERS_SHEET, PLAYER_HEADERS)

    def _scan(self) -> List[Tuple[int, PlayerRecord]]:
        vals = all_values(self._sheet())
        return [(i, _player_from_row(r)) for i, r in enumerate(vals[1:], start=2) if r and r[0]]

    def _locate(self, player_id: str) -> Tuple[int, PlayerRecord]:
        for row, p in self._scan():
            if p.player_id == player_id:
                return row, p
        raise NotFoundError(f"Player '{player_id}' not found.")

    # ===== reads =====
    def get_player(self, email_or_id: str, include_inactive: bool = False) -> Optional[PlayerRecord]:
        if not email_or_id:
            return None
        by_email = "@" in email_or_id
        key = (player_email_key if by_email else player_id_key)(email_or_id, include_inactive)
        hit = self.cache.get(key)
        if hit is not MISS:
            return None if hit == NULL_MARKER else hit

        want = email_key(email_or_id) if by_email else email_or_id
        found = next(
            (p for _, p in self._scan()
             if (email_key(p.google_email) if by_email else p.player_id) == want),
            None,
        )
        if found is None:
            self.cache.put(key, NULL_MARKER, self.settings.null_ttl(self.settings.player_cache_ttl))
            return None
        if not found.is_active and not include_inactive:
            return None
        self.cache.put(key, found, self.settings.player_cache_ttl)
        return found

    def require_player(self, email_or_id: str, include_inactive: bool = False) -> PlayerRecord:
        p = self.get_player(email_or_id, include_inactive)
        if p is None:
            raise NotFoundError("Player not found.")
        return p

    def get_all_players(self, include_inactive: bool = False, team_id: Optional[str] = None) -> List[PlayerRecord]:
        out = []
        for _, p in self._scan():
            if not (include_inactive or p.is_active):
                continue
            if team_id and p.slot_for(team_id) is None:
                continue
            out.append(p)
        return out

    def roster_from_players(self, team_id: str) -> List[RosterEntry]:
        """Full scan of the Players sheet; the slow path behind the roster index."""
        out = []
        for p in self.get_all_players(team_id=team_id):
            slot = p.slot_for(team_id)
            out.append(RosterEntry(team_id, p.player_id, p.display_name, slot.initials,
                                   slot.role, p.discord_username))
        return out

    # ===== writes =====
    def invalidate(self, player: PlayerRecord) -> None:
        safe_invalidate(self.cache, player_keys(player.player_id, player.google_email))

    def create_player(self, email: str, display_name: str, timestamp: str) -> PlayerRecord:
        if not is_valid_email(email):
            raise ValidationError("A valid Google email is required.")
        name = check_display_name(display_name)
        if any(email_key(p.google_email) == email_key(email) for _, p in self._scan()):
            raise ValidationError("A player with this email already exists.")
        player = PlayerRecord(
            player_id=new_player_id(name), google_email=email.strip(), display_name=name,
            created_date=timestamp, last_seen=timestamp, is_active=True,
        )
        ws = self._sheet()
        n = len(all_values(ws))
        ensure_rows(ws, n + 1)
        write_rect(ws, n + 1, 1, [_row_from_player(player)])
        self.invalidate(player)
        logger.info("player {} created", player.player_id)
        return player

    def _write(self, player_id: str, cells: Dict[int, Any]) -> PlayerRecord:
        row, player = self._locate(player_id)
        write_cells(self._sheet(), {(row, c): v for c, v in cells.items()})
        self.invalidate(player)
        return player

    def free_slot(self, player: PlayerRecord) -> Optional[int]:
        for n, slot in enumerate(player.slots[:self.settings.max_teams_per_player], start=1):
            if not slot.occupied:
                return n
        return None

    def assign_slot(self, player_id: str, slot_no: int, slot: TeamSlot) -> None:
        base = SLOT_BASE_COL[slot_no]
        self._write(player_id, {
            base: slot.team_id, base + 1: slot.initials, base + 2: slot.role, base + 3: slot.join_date,
        })

    def clear_slot(self, player_id: str, team_id: str) -> Optional[TeamSlot]:
        _, player = self._locate(player_id)
        for n, slot in enumerate(player.slots, start=1):
            if slot.team_id == team_id:
                base = SLOT_BASE_COL[n]
                self._write(player_id, {base: "", base + 1: "", base + 2: "", base + 3: ""})
                return slot
        return None

    def set_role(self, player_id: str, team_id: str, role: str) -> None:
        _, player = self._locate(player_id)
        for n, slot in enumerate(player.slots, start=1):
            if slot.team_id == team_id:
                self._write(player_id, {SLOT_BASE_COL[n] + 2: role})
                return
        raise NotFoundError(f"Player is not on team '{team_id}'.")

    def update_profile(self, player_id: str, display_name: Optional[str] = None,
                       discord_username: Optional[str] = None) -> None:
        cells: Dict[int, Any] = {}
        if display_name is not None:
            cells[PLAYER_COLS["display_name"]] = check_display_name(display_name)
        if discord_username is not None:
            cells[PLAYER_COLS["discord_username"]] = discord_username.strip()
        if not cells:
            raise ValidationError("Nothing to update.")
        self._write(player_id, cells)

    def set_active(self, player_id: str, active: bool) -> None:
        self._write(player_id, {PLAYER_COLS["is_active"]: bool_cell(active)})

    def touch_last_seen(self, player_id: str, timestamp: str) -> None:
        self._write(player_id, {PLAYER_COLS["last_seen"]: timestamp})

    # ===== availability templates =====
    def save_template(self, player_id: str, cells: List[VisualCell], saved_from: str,
                      timestamp: str) -> AvailabilityTemplate:
        if not cells:
            raise ValidationError("A template needs at least one time slot.")
        slots = self.settings.slots_per_block
        bad = [c for c in cells if not (0 <= c.row < slots and 0 <= c.col < DAYS_PER_WEEK)]
        if bad:
            raise ValidationError(f"{len(bad)} template slot(s) are outside the weekly grid.")
        template = AvailabilityTemplate(sorted(set(cells), key=lambda c: (c.row, c.col)),
                                        (saved_from or "").strip(), timestamp)
        self._write(player_id, {
            PLAYER_COLS["availability_template"]: template_json(template),
            PLAYER_COLS["last_seen"]: timestamp,
        })
        return template

    def load_template(self, player: PlayerRecord) -> AvailabilityTemplate:
        raw = (player.availability_template or "").strip()
        if not raw:
            raise NotFoundError("No template saved.")
        return parse_template(raw)
