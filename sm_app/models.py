from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class WeekBlock:
    year: int
    week: int
    start_row: int
    end_row: int

    @property
    def key(self) -> Tuple[int, int]:
        return (self.year, self.week)

    @property
    def rows(self) -> range:
        return range(self.start_row, self.end_row + 1)

    def contains_row(self, row: int) -> bool:
        return self.start_row <= row <= self.end_row


@dataclass
class BlockValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CellRef:
    row: int
    col: int


@dataclass(frozen=True)
class VisualCell:
    """(slot index, day index) inside a week block, both 0-based."""
    row: int
    col: int


@dataclass
class WeeklyPayload:
    year: int
    week: int
    selections: List[VisualCell]


@dataclass
class AvailabilityTemplate:
    """A player's reusable weekly pattern, stored as JSON on their Players row."""
    cells: List[VisualCell]
    saved_from: str = ""
    last_updated: str = ""


@dataclass
class ToggleOutcome:
    modified: bool
    invalid: bool = False


@dataclass
class BatchResult:
    cells_modified: int = 0
    invalid_cells: int = 0
    modified_refs: List[CellRef] = field(default_factory=list)
    weeks: List[Tuple[int, int]] = field(default_factory=list)


@dataclass
class WeekResult:
    year: int
    week: int
    cells_modified: int = 0
    invalid_cells: int = 0
    start_row: Optional[int] = None
    error: Optional[str] = None


@dataclass
class MultiWeekResult:
    weeks: List[WeekResult] = field(default_factory=list)
    created: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def cells_modified(self) -> int:
        return sum(w.cells_modified for w in self.weeks)

    @property
    def invalid_cells(self) -> int:
        return sum(w.invalid_cells for w in self.weeks)


@dataclass
class WeekGrid:
    year: int
    week: int
    start_row: int
    time_slots: List[str]
    days: List[str]
    cells: List[List[str]]


@dataclass
class TeamRecord:
    team_id: str
    team_name: str
    division: str
    leader_email: str
    join_code: str
    created_date: str = ""
    last_active: str = ""
    max_players: int = 10
    is_active: bool = True
    is_public: bool = False
    player_count: int = 0
    player_list: List[str] = field(default_factory=list)
    initials_list: List[str] = field(default_factory=list)
    availability_sheet_name: str = ""
    logo_url: str = ""


@dataclass
class TeamSlot:
    team_id: str = ""
    initials: str = ""
    role: str = ""
    join_date: str = ""

    @property
    def occupied(self) -> bool:
        return bool(self.team_id)


@dataclass
class PlayerRecord:
    player_id: str
    google_email: str
    display_name: str
    created_date: str = ""
    last_seen: str = ""
    is_active: bool = True
    team1: TeamSlot = field(default_factory=TeamSlot)
    team2: TeamSlot = field(default_factory=TeamSlot)
    discord_username: str = ""
    availability_template: str = ""

    @property
    def slots(self) -> List[TeamSlot]:
        return [self.team1, self.team2]

    def slot_for(self, team_id: str) -> Optional[TeamSlot]:
        for s in self.slots:
            if s.team_id and s.team_id == team_id:
                return s
        return None


@dataclass(frozen=True)
class RosterEntry:
    team_id: str
    player_id: str
    display_name: str
    initials: str
    role: str
    discord_username: str = ""


@dataclass
class RebuildStats:
    players_processed: int
    entries_created: int
    teams_represented: int
    timestamp: str


@dataclass
class TeamSchedule:
    team_id: str
    team_name: str
    grid: WeekGrid
    roster: List[RosterEntry]
    editable: bool


@dataclass
class OpResult:
    success: bool
    message: str = ""
    data: Any = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "OpResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, error_kind: str = "error", error_detail: Optional[str] = None,
             timestamp: Optional[str] = None) -> "OpResult":
        return cls(success=False, message=message, error_kind=error_kind,
                   error_detail=error_detail, timestamp=timestamp)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success, "message": self.message, "data": self.data,
            "errorKind": self.error_kind, "errorDetail": self.error_detail,
            "timestamp": self.timestamp,
        }
