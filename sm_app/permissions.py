from __future__ import annotations
from typing import Callable, Optional

from .config import ROLE_LEADER, Settings
from .players import PlayerRegistry
from .teams import TeamRegistry
from .utils import email_key

VIEW_TEAM_SCHEDULE = "VIEW_TEAM_SCHEDULE"
EDIT_OWN_AVAILABILITY = "EDIT_OWN_AVAILABILITY"
MANAGE_TEAM = "MANAGE_TEAM"
ADMIN = "ADMIN"

PermissionCheck = Callable[[Optional[str], str, Optional[str]], bool]


class MembershipPermissions:
    """Default authorisation: admins by email, everything else by team slot."""

    def __init__(self, settings: Settings, players: PlayerRegistry, teams: TeamRegistry):
        self.admins = {email_key(e) for e in settings.admin_emails}
        self.players = players
        self.teams = teams

    def __call__(self, identity: Optional[str], tag: str, scope_id: Optional[str] = None) -> bool:
        if not identity:
            return False
        if email_key(identity) in self.admins:
            return True
        if tag == ADMIN:
            return False

        player = self.players.get_player(identity)
        slot = player.slot_for(scope_id) if (player and scope_id) else None
        if tag == VIEW_TEAM_SCHEDULE:
            if slot is not None:
                return True
            team = self.teams.get_team(scope_id) if scope_id else None
            return bool(team and team.is_public)
        if tag == EDIT_OWN_AVAILABILITY:
            return slot is not None
        if tag == MANAGE_TEAM:
            return slot is not None and slot.role == ROLE_LEADER
        return False
