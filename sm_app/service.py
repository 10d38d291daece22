from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .blocks import require_surface
from .errors import PermissionDeniedError, ScheduleError, ValidationError, boundary
from .models import (
    CellRef, OpResult, PlayerRecord, TeamRecord, TeamSchedule, TeamSlot, WeekGrid,
    WeeklyPayload,
)
from .permissions import EDIT_OWN_AVAILABILITY, VIEW_TEAM_SCHEDULE
from .schedule import check_action, check_payload_count, update_message
from .weeks import check_week, next_week, week_sequence
from .wiring import App


class ScheduleService:
    """Read and write entry points for team availability grids.

    Every public method returns an OpResult and never raises. Writes go
    identity -> player -> team slot -> permission -> gate -> grid -> cache.
    """

    def __init__(self, app: App):
        self.app = app

    # ===== guards =====
    def _identity(self, identity: Optional[str]) -> str:
        if not identity:
            raise PermissionDeniedError("You need to be signed in.")
        return identity

    def _require(self, identity: str, tag: str, scope_id: Optional[str]) -> None:
        if not self.app.check_permission(identity, tag, scope_id):
            raise PermissionDeniedError("You do not have permission to do that.")

    def _member_slot(self, identity: str, team_id: str) -> Tuple[PlayerRecord, TeamSlot]:
        player = self.app.players.require_player(identity)
        slot = player.slot_for(team_id)
        if slot is None:
            raise PermissionDeniedError("You are not a member of this team.")
        if not slot.initials:
            raise ValidationError("Your initials for this team are not set.")
        return player, slot

    # ===== grid helpers =====
    def _invalidate_sheet(self, ws) -> None:
        """Drop every cached week of a surface; rows shift when a block is inserted."""
        blocks = self.app.blocks.find_all_blocks(ws)
        self.app.grid.invalidate_weeks(ws.title, [b.key for b in blocks])

    def _week_grid(self, ws, year: int, week: int) -> WeekGrid:
        block = self.app.blocks.find_block(ws, year, week)
        if block is None:
            with self.app.gate.exclusive_write("Create week block", ws.title):
                block, created = self.app.blocks.ensure_block_status(ws, year, week)
            if created:
                self._invalidate_sheet(ws)
        return self.app.grid.read_week(ws, block)

    def _team_schedule(self, identity: str, team_id: str, year: int, week: int) -> TeamSchedule:
        team = self.app.teams.require_team(team_id)
        self._require(identity, VIEW_TEAM_SCHEDULE, team_id)
        check_week(year, week)
        ws = require_surface(self.app.ss, team.availability_sheet_name)
        grid = self._week_grid(ws, year, week)
        return TeamSchedule(
            team_id=team.team_id,
            team_name=team.team_name,
            grid=grid,
            roster=self.app.index.lookup(team_id),
            editable=bool(self.app.check_permission(identity, EDIT_OWN_AVAILABILITY, team_id)),
        )

    def _touch_team(self, team_id: str) -> None:
        try:
            self.app.teams.touch_last_active(team_id, self.app.clock.timestamp_now())
        except ScheduleError as e:
            logger.warning("last-active stamp failed for {}: {}", team_id, e)

    # ===== reads =====
    @boundary("getSchedule")
    def get_schedule(self, identity: Optional[str], team_id: str,
                     year: Optional[int] = None, week: Optional[int] = None) -> OpResult:
        identity = self._identity(identity)
        if year is None or week is None:
            year, week = self.app.clock.current_week()
        return OpResult.ok(self._team_schedule(identity, team_id, int(year), int(week)))

    @boundary("getScheduleRange")
    def get_schedule_range(self, identity: Optional[str], team_id: str, start: Tuple[int, int],
                           end: Optional[Tuple[int, int]] = None) -> OpResult:
        """Weeks start..end inclusive that already exist on the surface; missing weeks are skipped."""
        identity = self._identity(identity)
        team = self.app.teams.require_team(team_id)
        self._require(identity, VIEW_TEAM_SCHEDULE, team_id)
        end = end or next_week(*start)
        if tuple(end) < tuple(start):
            raise ValidationError("End week is before start week.")
        weeks = week_sequence(tuple(start), tuple(end), self.app.settings.max_range_weeks)

        ws = require_surface(self.app.ss, team.availability_sheet_name)
        blocks = self.app.blocks.find_all_blocks(ws)
        grids: List[WeekGrid] = []
        missing = []
        for y, w in weeks:
            block = self.app.blocks.find_block(ws, y, w, blocks)
            if block is None:
                missing.append((y, w))
                continue
            grids.append(self.app.grid.read_week(ws, block))
        if missing:
            logger.debug("range on {} skipped {} missing week(s)", team_id, len(missing))
        return OpResult.ok({
            "team_id": team.team_id,
            "team_name": team.team_name,
            "weeks": grids,
            "missing": missing,
            "roster": self.app.index.lookup(team_id),
            "editable": bool(self.app.check_permission(identity, EDIT_OWN_AVAILABILITY, team_id)),
        })

    @boundary("getMultipleSchedules")
    def get_multiple_schedules(self, identity: Optional[str], team_ids: Sequence[str],
                               year: Optional[int] = None, week: Optional[int] = None) -> OpResult:
        identity = self._identity(identity)
        if year is None or week is None:
            year, week = self.app.clock.current_week()
        schedules: Dict[str, TeamSchedule] = {}
        errors: Dict[str, str] = {}
        for team_id in dict.fromkeys(team_ids):
            try:
                schedules[team_id] = self._team_schedule(identity, team_id, int(year), int(week))
            except ScheduleError as e:
                errors[team_id] = str(e)
        msg = f"{len(errors)} team(s) could not be loaded." if errors else ""
        return OpResult.ok({"schedules": schedules, "errors": errors}, msg)

    # ===== writes =====
    @boundary("updateAvailability")
    def update_availability(self, identity: Optional[str], team_id: str, action: str,
                            selections: Sequence[CellRef]) -> OpResult:
        if not selections:
            raise ValidationError("No time slots specified.")
        action = check_action(action)
        identity = self._identity(identity)
        _, slot = self._member_slot(identity, team_id)
        self._require(identity, EDIT_OWN_AVAILABILITY, team_id)
        team = self.app.teams.require_team(team_id)
        ws = require_surface(self.app.ss, team.availability_sheet_name)

        with self.app.gate.exclusive_write("Update availability", ws.title):
            result = self.app.grid.batch_toggle(ws, selections, slot.initials, action)
        self.app.grid.invalidate_weeks(ws.title, result.weeks)
        if result.cells_modified:
            self._touch_team(team_id)

        logger.info("{} {} on {}: {} modified, {} invalid", slot.initials, action, team_id,
                    result.cells_modified, result.invalid_cells)
        return OpResult.ok(
            {"cells_modified": result.cells_modified, "invalid_cells": result.invalid_cells},
            update_message(slot.initials, action, result.cells_modified, result.invalid_cells),
        )

    @boundary("updateAvailabilityMultiWeek")
    def update_availability_multi_week(self, identity: Optional[str], team_id: str, action: str,
                                       payloads: Sequence[WeeklyPayload]) -> OpResult:
        if not payloads or not any(p.selections for p in payloads):
            raise ValidationError("No time slots specified.")
        check_payload_count(payloads, self.app.settings.max_range_weeks)
        action = check_action(action)
        identity = self._identity(identity)
        _, slot = self._member_slot(identity, team_id)
        self._require(identity, EDIT_OWN_AVAILABILITY, team_id)
        team = self.app.teams.require_team(team_id)
        ws = require_surface(self.app.ss, team.availability_sheet_name)

        with self.app.gate.exclusive_write("Update availability (multi-week)", ws.title):
            result = self.app.grid.batch_toggle_multi_week(ws, payloads, slot.initials, action)
        if result.created:
            self._invalidate_sheet(ws)
        else:
            self.app.grid.invalidate_weeks(ws.title, [(w.year, w.week) for w in result.weeks])
        if result.cells_modified:
            self._touch_team(team_id)

        return OpResult.ok(
            {
                "cells_modified": result.cells_modified,
                "invalid_cells": result.invalid_cells,
                "weeks": [
                    {"year": w.year, "week": w.week, "cells_modified": w.cells_modified,
                     "invalid_cells": w.invalid_cells, "error": w.error}
                    for w in result.weeks
                ],
            },
            update_message(slot.initials, action, result.cells_modified, result.invalid_cells),
        )

    # ===== maintenance hooks =====
    def clear_participant(self, surface_name: str, token: str, current_and_future_only: bool = True) -> int:
        ws = require_surface(self.app.ss, surface_name)
        with self.app.gate.exclusive_write("Remove participant", ws.title):
            cleared, touched = self.app.grid.clear_token(
                ws, token, current_and_future_only, today=self.app.clock.current_civil_date())
        self.app.grid.invalidate_weeks(ws.title, [b.key for b in touched])
        return cleared

    @boundary("removeParticipantFromSchedule")
    def remove_participant_from_schedule(self, surface_name: str, token: str,
                                         current_and_future_only: bool = True) -> OpResult:
        cleared = self.clear_participant(surface_name, token, current_and_future_only)
        return OpResult.ok({"cells_cleared": cleared}, f"Removed {token.strip().upper()} from {cleared} cell(s).")

    def sync_roster_fields(self, team_id: str) -> TeamRecord:
        """Copy the index roster onto the team row and its SYSTEM_CACHE summary."""
        self.app.teams.require_team(team_id, include_inactive=True)
        roster = self.app.index.lookup(team_id)
        self.app.teams.write_roster_fields(
            team_id, [e.display_name for e in roster], [e.initials for e in roster])
        team = self.app.teams.require_team(team_id, include_inactive=True)
        if team.is_active:
            self.app.summaries.refresh_team(team, roster)
        return team

    @boundary("syncTeamPlayerData")
    def sync_team_denormalized_fields(self, team_id: str) -> OpResult:
        team = self.sync_roster_fields(team_id)
        return OpResult.ok({"player_count": team.player_count, "initials": team.initials_list})

    @boundary("syncTeamAvailability")
    def sync_team_availability(self, team_id: str) -> OpResult:
        team = self.app.teams.require_team(team_id)
        valid = {e.initials for e in self.app.index.lookup(team_id) if e.initials}
        ws = require_surface(self.app.ss, team.availability_sheet_name)
        with self.app.gate.exclusive_write("Sync availability", ws.title):
            cleared, touched = self.app.grid.sync_tokens(ws, valid)
        self.app.grid.invalidate_weeks(ws.title, [b.key for b in touched])
        return OpResult.ok({"cells_cleared": cleared, "weeks_touched": len(touched)})
