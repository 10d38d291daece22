"""
ISO-week arithmetic and grid coordinate math.

Everything here is pure except `Clock`, which reads the wall clock in the
one configured timezone. Weeks follow ISO-8601: week 1 contains Jan 4 and
weeks start on Monday, so the ISO year of a week can differ from the
calendar year of some of its days.
"""
from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple

from dateutil import tz

from .config import DAYS_START_COL, DAYS_PER_WEEK, Settings
from .errors import ValidationError
from .models import CellRef, WeekBlock

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


# ===== ISO weeks =====
def weeks_in_year(year: int) -> int:
    return date(year, 12, 28).isocalendar()[1]


def check_week(year: int, week: int) -> None:
    if not (1 <= int(week) <= weeks_in_year(int(year))):
        raise ValidationError(f"Week {week} does not exist in {year}.")


def monday_of(year: int, week: int) -> date:
    check_week(year, week)
    return date.fromisocalendar(int(year), int(week), 1)


def iso_week_number(d: date) -> int:
    return d.isocalendar()[1]


def iso_year_week(d: date) -> Tuple[int, int]:
    iso = d.isocalendar()
    return iso[0], iso[1]


def next_week(year: int, week: int) -> Tuple[int, int]:
    return iso_year_week(monday_of(year, week) + timedelta(days=7))


def week_sequence(start: Tuple[int, int], end: Tuple[int, int], max_weeks: int = 104) -> List[Tuple[int, int]]:
    """Inclusive run of weeks from start to end, never longer than max_weeks."""
    check_week(*start)
    check_week(*end)
    out: List[Tuple[int, int]] = []
    cur = start
    while len(out) < max_weeks:
        out.append(cur)
        if cur == end or cur > end:
            break
        cur = next_week(*cur)
    return out


def month_label(year: int, week: int) -> str:
    return MONTH_NAMES[monday_of(year, week).month - 1]


# ===== grid coordinates =====
def day_col(day_index: int) -> int:
    return DAYS_START_COL + day_index


def is_day_col(col: int) -> bool:
    return DAYS_START_COL <= col < DAYS_START_COL + DAYS_PER_WEEK


def is_weekend_col(col: int) -> bool:
    return col - DAYS_START_COL >= 5


def in_data_region(block: WeekBlock, row: int, col: int) -> bool:
    return block.contains_row(row) and is_day_col(col)


def visual_in_bounds(block: WeekBlock, vrow: int, vcol: int) -> bool:
    return 0 <= vrow < (block.end_row - block.start_row + 1) and 0 <= vcol < DAYS_PER_WEEK


def visual_to_abs(block: WeekBlock, vrow: int, vcol: int) -> CellRef:
    return CellRef(block.start_row + vrow, day_col(vcol))


def clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


# ===== time source =====
class Clock:
    def __init__(self, settings: Settings, now_fn: Optional[Callable[[], datetime]] = None):
        self.zone = tz.gettz(settings.timezone)
        if self.zone is None:
            raise ValidationError(f"Unknown timezone '{settings.timezone}'.")
        self._now_fn = now_fn

    def now(self) -> datetime:
        if self._now_fn is not None:
            dt = self._now_fn()
            return dt.astimezone(self.zone) if dt.tzinfo else dt.replace(tzinfo=self.zone)
        return datetime.now(self.zone)

    def timestamp_now(self) -> str:
        return self.now().isoformat()

    def current_civil_date(self) -> date:
        return self.now().date()

    def current_week(self) -> Tuple[int, int]:
        return iso_year_week(self.current_civil_date())
