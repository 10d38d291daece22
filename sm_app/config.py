from __future__ import annotations
from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# ===== workbook layout =====
TEAMS_SHEET = "Teams"
PLAYERS_SHEET = "Players"
INDEX_SHEET = "PLAYER_INDEX"
SYSTEM_CACHE_SHEET = "SYSTEM_CACHE"
TEAM_TAB_PREFIX = "TEAM_"
ARCHIVED_SUFFIX = "_ARCHIVED_"

# ===== grid surface columns (1-based, gspread style) =====
YEAR_COL = 1
MONTH_COL = 2
WEEK_COL = 3
TIME_COL = 4
DAYS_START_COL = 5
DAYS_PER_WEEK = 7
DAY_ABBREV = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
HEADER_ROW = 1
FIRST_BLOCK_ROW = 2
ROW_GROWTH_CHUNK = 200

# ===== colours =====
WEEKDAY_COLOR = "#FFFFFF"
WEEKEND_COLOR = "#FFF2CC"
ONE_PLAYER_COLOR = "#FFCCE5"
TWO_TO_THREE_COLOR = "#FFFFCC"
FOUR_PLUS_COLOR = "#CCFFCC"
HEADER_BG = "#4A86E8"
HEADER_FG = "#FFFFFF"

# ===== registry columns (0-based offsets into a row) =====
TEAM_HEADERS = [
    "TeamID", "TeamName", "Division", "LeaderEmail", "JoinCode", "CreatedDate",
    "LastActive", "MaxPlayers", "IsActive", "IsPublic", "PlayerCount",
    "PlayerList", "InitialsList", "AvailabilitySheetName", "LogoURL",
]
PLAYER_HEADERS = [
    "PlayerID", "GoogleEmail", "DisplayName", "CreatedDate", "LastSeen", "IsActive",
    "Team1ID", "Team1Initials", "Team1Role", "Team1JoinDate",
    "Team2ID", "Team2Initials", "Team2Role", "Team2JoinDate",
    "DiscordUsername", "AvailabilityTemplate",
]
INDEX_HEADERS = ["TeamID", "PlayerID", "PlayerDisplayName", "PlayerInitials", "PlayerRole", "PlayerDiscordUsername"]
SYSTEM_CACHE_HEADERS = ["TeamID", "TeamName", "Division", "LogoURL", "IsPublic", "RosterJSON"]

ROLE_LEADER = "team_leader"
ROLE_PLAYER = "player"

# ===== guardrails =====
MIN_TEAM_NAME_LENGTH = 3
MAX_TEAM_NAME_LENGTH = 50
MAX_DISPLAY_NAME_LENGTH = 50
JOIN_CODE_PREFIX_LENGTH = 4
JOIN_CODE_SUFFIX_LENGTH = 4
MIN_JOIN_CODE_LENGTH = 6
MAX_JOIN_CODE_LENGTH = 10


def _default_slots() -> Tuple[str, ...]:
    return tuple(f"{h:02d}:{m:02d}" for h in range(18, 24) for m in (0, 30))[:11]


class Settings(BaseSettings):
    """Runtime settings, read from SM_* environment variables or `.env`."""

    spreadsheet_url: str = Field("", description="Workbook holding teams, players and team tabs.")
    service_account_file: Optional[str] = Field(None, description="Service-account JSON used outside Streamlit.")

    timezone: str = Field("Europe/Berlin", description="The single civil calendar all weeks are computed in.")
    time_slots: Tuple[str, ...] = Field(default_factory=_default_slots)

    max_weeks_per_team: int = Field(4, ge=1)
    max_players_per_team: int = Field(10, ge=1)
    max_teams_per_player: int = Field(2, ge=1, le=2)
    initials_length: int = Field(2, ge=1)
    allowed_divisions: Tuple[str, ...] = ("1", "2", "3")

    player_cache_ttl: int = Field(300, ge=1, description="Seconds a positive player lookup stays cached.")
    team_cache_ttl: int = Field(300, ge=1)
    schedule_cache_ttl: int = Field(300, ge=1)
    refresh_settle_sec: float = Field(0.1, ge=0, description="Pause between invalidate and re-read.")
    max_range_weeks: int = Field(104, ge=1)

    apply_color_coding: bool = False
    protect_surfaces: bool = True
    auto_protect_new_teams: bool = True
    protection_editors: Tuple[str, ...] = ()
    admin_emails: Tuple[str, ...] = ()

    log_level: str = Field("INFO", description="DEBUG, INFO, WARNING, ERROR or CRITICAL.")

    model_config = SettingsConfigDict(
        env_prefix="SM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @property
    def slots_per_block(self) -> int:
        return len(self.time_slots)

    @property
    def last_day_col(self) -> int:
        return DAYS_START_COL + DAYS_PER_WEEK - 1

    @staticmethod
    def null_ttl(ttl: int) -> int:
        # confirmed-absent entries expire faster than hits
        return max(1, ttl // 5)


def load_settings(**overrides) -> Settings:
    settings = Settings(**overrides)
    level = settings.log_level.upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        level = "INFO"
    if level != settings.log_level:
        settings = settings.model_copy(update={"log_level": level})
    return settings
