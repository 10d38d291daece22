from __future__ import annotations
from typing import Any, Dict, Optional, Sequence

from loguru import logger

from .cache import force_refresh, player_keys
from .config import ARCHIVED_SUFFIX, ROLE_LEADER, ROLE_PLAYER
from .errors import (
    NotFoundError, PermissionDeniedError, ScheduleError, ValidationError, boundary, warn_consistency,
)
from .models import OpResult, PlayerRecord, RosterEntry, TeamRecord, TeamSlot, VisualCell
from .permissions import ADMIN, MANAGE_TEAM
from .players import check_display_name
from .quotas import open_sheet, retry_429
from .service import ScheduleService
from .utils import is_valid_initials, new_team_id, normalize_token, to_int
from .wiring import App


class MembershipService:
    """Team lifecycle and roster changes, keeping every denormalized copy in step.

    The Players sheet is the source of truth. After it changes, the roster
    index, the team row's PlayerList/InitialsList and the SYSTEM_CACHE
    summary are updated in that order; a failure in those copies is logged
    and left for the maintenance jobs to repair.
    """

    def __init__(self, app: App, schedule: Optional[ScheduleService] = None):
        self.app = app
        self.schedule = schedule or ScheduleService(app)

    # ===== helpers =====
    def _identity(self, identity: Optional[str]) -> str:
        if not identity:
            raise PermissionDeniedError("You need to be signed in.")
        return identity

    def _require(self, identity: str, tag: str, scope_id: Optional[str] = None) -> None:
        if not self.app.check_permission(identity, tag, scope_id):
            raise PermissionDeniedError("You do not have permission to do that.")

    def _check_initials(self, initials: str) -> str:
        token = normalize_token(initials)
        if not is_valid_initials(token, self.app.settings.initials_length):
            raise ValidationError(
                f"Initials must be exactly {self.app.settings.initials_length} letters or digits.")
        return token

    def _get_or_create_player(self, identity: str, display_name: Optional[str]) -> PlayerRecord:
        player = self.app.players.get_player(identity, include_inactive=True)
        if player is None:
            if not display_name:
                raise ValidationError("A display name is required for new players.")
            return self.app.players.create_player(identity, display_name, self.app.clock.timestamp_now())
        if not player.is_active:
            raise PermissionDeniedError("This player account is deactivated.")
        return player

    def _refreshed_player(self, player: PlayerRecord) -> Optional[PlayerRecord]:
        return force_refresh(self.app.cache, player_keys(player.player_id, player.google_email),
                             lambda: self.app.players.get_player(player.player_id),
                             settle_sec=self.app.settings.refresh_settle_sec)

    def _sync(self, team_id: str) -> None:
        try:
            self.schedule.sync_roster_fields(team_id)
        except ScheduleError as e:
            logger.warning("roster fields for {} left stale: {}", team_id, e)

    def _add_member(self, player: PlayerRecord, team: TeamRecord, initials: str, role: str) -> PlayerRecord:
        if player.slot_for(team.team_id):
            raise ValidationError(f"You are already on '{team.team_name}'.")
        slot_no = self.app.players.free_slot(player)
        if slot_no is None:
            raise ValidationError(
                f"Players can be on at most {self.app.settings.max_teams_per_player} teams.")
        if self.app.index.is_token_in_use_on_team(team.team_id, initials, exclude_player_id=player.player_id):
            raise ValidationError(f"Initials '{initials}' are already used on this team.")

        now = self.app.clock.timestamp_now()
        self.app.players.assign_slot(player.player_id, slot_no, TeamSlot(team.team_id, initials, role, now))
        self.app.index.add_entry(RosterEntry(team.team_id, player.player_id, player.display_name,
                                             initials, role, player.discord_username))
        self._sync(team.team_id)
        logger.info("{} joined {} as {} ({})", player.player_id, team.team_id, initials, role)
        return self._refreshed_player(player) or player

    # ===== teams =====
    @boundary("createTeam")
    def create_team(self, identity: Optional[str], team_name: str, division: str, initials: str,
                    display_name: Optional[str] = None, max_players: Optional[int] = None,
                    is_public: bool = False, logo_url: str = "") -> OpResult:
        identity = self._identity(identity)
        name = self.app.teams.check_new_team(team_name, division)
        token = self._check_initials(initials)
        limit = self.app.settings.max_players_per_team
        cap = to_int(max_players, limit) if max_players is not None else limit
        if not (1 <= cap <= limit):
            raise ValidationError(f"Max players must be 1-{limit}.")
        player = self._get_or_create_player(identity, display_name)
        if self.app.players.free_slot(player) is None:
            raise ValidationError(
                f"Players can be on at most {self.app.settings.max_teams_per_player} teams.")

        team_id = new_team_id(name)
        now = self.app.clock.timestamp_now()
        ws, _ = self.app.blocks.provision_surface(self.app.ss, team_id, name, self.app.clock.current_week())
        if self.app.settings.protect_surfaces and self.app.settings.auto_protect_new_teams:
            self.app.gate.protect_surface(ws)

        team = TeamRecord(
            team_id=team_id, team_name=name, division=str(division), leader_email=identity.strip(),
            join_code=self.app.teams.unique_join_code(name), created_date=now, last_active=now,
            max_players=cap, is_active=True, is_public=bool(is_public), player_count=0,
            availability_sheet_name=ws.title, logo_url=logo_url or "",
        )
        self.app.teams.insert(team)
        self._add_member(player, team, token, ROLE_LEADER)
        team = self.app.teams.require_team(team_id)
        return OpResult.ok(team, f"Team '{name}' created. Join code: {team.join_code}")

    @boundary("updateTeam")
    def update_team(self, identity: Optional[str], team_id: str, fields: Dict[str, Any]) -> OpResult:
        identity = self._identity(identity)
        self._require(identity, MANAGE_TEAM, team_id)
        blocked = set(fields) & {"join_code", "player_count", "player_list", "initials_list",
                                 "availability_sheet_name", "is_active", "leader_email"}
        if blocked:
            raise ValidationError(f"These fields cannot be edited here: {', '.join(sorted(blocked))}.")
        if "team_name" in fields:
            current = self.app.teams.require_team(team_id)
            if fields["team_name"].strip().casefold() != current.team_name.casefold():
                fields = {**fields, "team_name": self.app.teams.check_new_team(
                    fields["team_name"], fields.get("division", current.division))}
        team = self.app.teams.update_team(team_id, fields)
        self._sync(team_id)
        return OpResult.ok(team, "Team updated.")

    @boundary("regenerateJoinCode")
    def regenerate_join_code(self, identity: Optional[str], team_id: str) -> OpResult:
        identity = self._identity(identity)
        self._require(identity, MANAGE_TEAM, team_id)
        code = self.app.teams.regenerate_join_code(team_id)
        return OpResult.ok({"join_code": code}, f"New join code: {code}")

    @boundary("archiveTeam")
    def archive_team(self, identity: Optional[str], team_id: str) -> OpResult:
        identity = self._identity(identity)
        self._require(identity, MANAGE_TEAM, team_id)
        team = self.app.teams.require_team(team_id)

        fields: Dict[str, Any] = {"is_active": False}
        ws = open_sheet(self.app.ss, team.availability_sheet_name)
        if ws is not None:
            stamp = self.app.clock.current_civil_date().strftime("%Y%m%d")
            archived = f"{team.availability_sheet_name}{ARCHIVED_SUFFIX}{stamp}"
            retry_429(ws.update_title, archived)
            fields["availability_sheet_name"] = archived
        else:
            logger.warning("archiving {} without a surface '{}'", team_id, team.availability_sheet_name)
        self.app.teams.update_fields(team_id, fields)

        released = 0
        for p in self.app.players.get_all_players(include_inactive=True, team_id=team_id):
            if self.app.players.clear_slot(p.player_id, team_id):
                released += 1
        self.app.index.remove_all_for_team(team_id)
        self.app.summaries.remove_team(team_id)
        self._sync(team_id)
        logger.info("team {} archived, {} player(s) released", team_id, released)
        return OpResult.ok({"players_released": released,
                            "availability_sheet_name": fields.get("availability_sheet_name")},
                           f"Team '{team.team_name}' archived.")

    @boundary("deleteTeam")
    def hard_delete_team(self, identity: Optional[str], team_id: str) -> OpResult:
        identity = self._identity(identity)
        self._require(identity, ADMIN)
        team = self.app.teams.require_team(team_id, include_inactive=True)
        if team.is_active:
            raise ValidationError("Archive the team before deleting it.")
        ws = open_sheet(self.app.ss, team.availability_sheet_name)
        if ws is not None:
            retry_429(self.app.ss.del_worksheet, ws)
        self.app.teams.delete(team_id)
        self.app.summaries.remove_team(team_id)
        logger.info("team {} deleted", team_id)
        return OpResult.ok({"team_id": team_id}, f"Team '{team.team_name}' deleted.")

    # ===== players =====
    @boundary("joinTeam")
    def join_team(self, identity: Optional[str], join_code: str, initials: str,
                  display_name: Optional[str] = None) -> OpResult:
        identity = self._identity(identity)
        team = self.app.teams.validate_join_code(join_code)
        token = self._check_initials(initials)
        player = self._get_or_create_player(identity, display_name)
        player = self._add_member(player, team, token, ROLE_PLAYER)
        return OpResult.ok(player, f"Joined '{team.team_name}' as {token}.")

    @boundary("leaveTeam")
    def leave_team(self, identity: Optional[str], team_id: str) -> OpResult:
        identity = self._identity(identity)
        player = self.app.players.require_player(identity)
        slot = player.slot_for(team_id)
        if slot is None:
            raise ValidationError("You are not a member of this team.")
        if slot.role == ROLE_LEADER:
            raise ValidationError(
                "Team leaders cannot leave their team. Hand over leadership first, or archive the team.")
        team = self.app.teams.require_team(team_id, include_inactive=True)

        self.app.players.clear_slot(player.player_id, team_id)
        self.app.players.touch_last_seen(player.player_id, self.app.clock.timestamp_now())
        self.app.index.remove_entry(team_id, player.player_id)
        self._sync(team_id)

        cleared = 0
        if slot.initials and team.is_active:
            try:
                cleared = self.schedule.clear_participant(team.availability_sheet_name, slot.initials)
            except ScheduleError as e:
                logger.warning("could not clear {} from {}: {}", slot.initials, team_id, e)
        self._refreshed_player(player)
        return OpResult.ok({"cells_cleared": cleared}, f"Left '{team.team_name}'.")

    @boundary("transferLeadership")
    def transfer_leadership(self, identity: Optional[str], team_id: str, new_leader_id: str) -> OpResult:
        identity = self._identity(identity)
        self._require(identity, MANAGE_TEAM, team_id)
        new_leader = self.app.players.require_player(new_leader_id)
        if new_leader.slot_for(team_id) is None:
            raise NotFoundError("The new leader is not on this team.")
        demoted = 0
        for entry in self.app.index.lookup(team_id):
            if entry.role != ROLE_LEADER or entry.player_id == new_leader.player_id:
                continue
            try:
                self.app.players.set_role(entry.player_id, team_id, ROLE_PLAYER)
                demoted += 1
            except NotFoundError:
                warn_consistency("transfer_leadership",
                                 f"former leader {entry.player_id} has no slot on {team_id}")
        if not demoted:
            warn_consistency("transfer_leadership", f"no former leader found on {team_id}")
        self.app.players.set_role(new_leader.player_id, team_id, ROLE_LEADER)
        self.app.teams.update_fields(team_id, {"leader_email": new_leader.google_email})
        self._rebuild_team_roles(team_id)
        self._sync(team_id)
        return OpResult.ok({"leader": new_leader.player_id}, f"{new_leader.display_name} now leads the team.")

    def _rebuild_team_roles(self, team_id: str) -> None:
        # the index keys rows by (team, player); re-add with the fresh roles
        self.app.index.remove_all_for_team(team_id)
        for p in self.app.players.get_all_players(team_id=team_id):
            slot = p.slot_for(team_id)
            self.app.index.add_entry(RosterEntry(team_id, p.player_id, p.display_name,
                                                 slot.initials, slot.role, p.discord_username))

    @boundary("updatePlayerProfile")
    def update_profile(self, identity: Optional[str], display_name: Optional[str] = None,
                       discord_username: Optional[str] = None) -> OpResult:
        identity = self._identity(identity)
        player = self.app.players.require_player(identity)
        fields: Dict[str, str] = {}
        if display_name is not None:
            fields["display_name"] = check_display_name(display_name)
        if discord_username is not None:
            fields["discord_username"] = discord_username.strip()
        self.app.players.update_profile(player.player_id, **fields)
        if fields:
            self.app.index.update_entry(player.player_id, fields)
        for slot in player.slots:
            if slot.occupied:
                self._sync(slot.team_id)
        return OpResult.ok(self._refreshed_player(player), "Profile updated.")

    @boundary("deactivatePlayer")
    def deactivate_player(self, identity: Optional[str], player_id: str) -> OpResult:
        identity = self._identity(identity)
        player = self.app.players.require_player(player_id, include_inactive=True)
        if player.google_email.strip().lower() != identity.strip().lower():
            self._require(identity, ADMIN)
        self.app.players.set_active(player.player_id, False)
        for slot in player.slots:
            if slot.occupied:
                self.app.index.remove_entry(slot.team_id, player.player_id)
                self._sync(slot.team_id)
        self.app.players.invalidate(player)
        return OpResult.ok({"player_id": player.player_id}, "Player deactivated.")

    @boundary("saveAvailabilityTemplate")
    def save_availability_template(self, identity: Optional[str], cells: Sequence[VisualCell],
                                   saved_from: str = "") -> OpResult:
        """Store the player's weekly pattern; cells use (slot index, day index)."""
        identity = self._identity(identity)
        player = self.app.players.require_player(identity)
        template = self.app.players.save_template(
            player.player_id, list(cells), saved_from, self.app.clock.timestamp_now())
        logger.info("{} saved a template with {} slot(s)", player.player_id, len(template.cells))
        return OpResult.ok({"template": template}, "Availability template saved!")

    @boundary("loadAvailabilityTemplate")
    def load_availability_template(self, identity: Optional[str]) -> OpResult:
        identity = self._identity(identity)
        player = self.app.players.require_player(identity)
        return OpResult.ok({"template": self.app.players.load_template(player)}, "Template loaded!")
