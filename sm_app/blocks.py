"""
Week blocks on a team's grid surface.

Row 1 is a static header (Year | Month | Week # | Time | Mon..Sun). Below
it each ISO week owns `len(time_slots)` consecutive rows: the first row
carries year, month name and week number, every row carries its time
label, and the seven day columns hold the availability tokens. Blocks are
kept in ascending (year, week) order with no gaps between them.
"""
from __future__ import annotations
from typing import List, Optional, Tuple

from loguru import logger

from .config import (
    DAY_ABBREV, DAYS_START_COL, DAYS_PER_WEEK, FIRST_BLOCK_ROW, HEADER_BG, HEADER_FG,
    HEADER_ROW, MONTH_COL, ROW_GROWTH_CHUNK, TIME_COL, WEEK_COL, WEEKDAY_COLOR,
    WEEKEND_COLOR, YEAR_COL, Settings,
)
from .errors import NotFoundError
from .models import BlockValidation, WeekBlock, WeekGrid
from .quotas import ensure_rows, open_sheet, read_open_rows, read_rect, retry_429, rect_a1, write_rect
from .utils import background, to_int
from .weeks import check_week, month_label, next_week, weeks_in_year

HEADER_LABELS = ["Year", "Month", "Week #", "Time", *DAY_ABBREV]


def _year_like(v) -> Optional[int]:
    n = to_int(v, -1)
    return n if 1900 <= n <= 9999 else None


class WeekBlockStore:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.slots = list(settings.time_slots)
        self.span = len(self.slots)
        self.last_col = DAYS_START_COL + DAYS_PER_WEEK - 1

    # ===== lookup =====
    def find_all_blocks(self, ws) -> List[WeekBlock]:
        meta = read_open_rows(ws, FIRST_BLOCK_ROW, YEAR_COL, WEEK_COL)
        blocks: List[WeekBlock] = []
        for offset, row in enumerate(meta):
            year, week = _year_like(row[YEAR_COL - 1]), to_int(row[WEEK_COL - 1], 0)
            if year is None or not (1 <= week <= weeks_in_year(year)):
                continue
            start = FIRST_BLOCK_ROW + offset
            blocks.append(WeekBlock(year, week, start, start + self.span - 1))
        blocks.sort(key=lambda b: b.start_row)
        return blocks

    def find_block(self, ws, year: int, week: int,
                   blocks: Optional[List[WeekBlock]] = None) -> Optional[WeekBlock]:
        for b in (self.find_all_blocks(ws) if blocks is None else blocks):
            if b.year == int(year) and b.week == int(week):
                return b
        return None

    def block_for_row(self, blocks: List[WeekBlock], row: int) -> Optional[WeekBlock]:
        for b in blocks:
            if b.contains_row(row):
                return b
        return None

    # ===== creation =====
    def _block_rows(self, year: int, week: int) -> List[list]:
        rows = []
        for i, slot in enumerate(self.slots):
            meta = [year, month_label(year, week), week] if i == 0 else ["", "", ""]
            rows.append(meta + [slot] + [""] * DAYS_PER_WEEK)
        return rows

    def ensure_block_status(self, ws, year: int, week: int) -> Tuple[WeekBlock, bool]:
        """Find or create the block; the flag says whether rows were added."""
        check_week(year, week)
        blocks = self.find_all_blocks(ws)
        found = self.find_block(ws, year, week, blocks)
        if found:
            return found, False

        later = [b for b in blocks if b.key > (int(year), int(week))]
        values = self._block_rows(int(year), int(week))
        if later:
            start = later[0].start_row
            retry_429(ws.insert_rows, values, row=start, value_input_option="RAW")
        else:
            start = blocks[-1].end_row + 1 if blocks else FIRST_BLOCK_ROW
            ensure_rows(ws, start + self.span - 1, chunk=ROW_GROWTH_CHUNK)
            write_rect(ws, start, YEAR_COL, values)
        block = WeekBlock(int(year), int(week), start, start + self.span - 1)
        logger.info("created block {}-W{} at rows {}-{} on '{}'",
                    year, week, block.start_row, block.end_row, ws.title)
        return block, True

    def ensure_block(self, ws, year: int, week: int) -> WeekBlock:
        return self.ensure_block_status(ws, year, week)[0]

    def ensure_weeks(self, ws, start: Tuple[int, int], count: int) -> List[WeekBlock]:
        out, cur = [], start
        for _ in range(count):
            out.append(self.ensure_block(ws, *cur))
            cur = next_week(*cur)
        return out

    # ===== validation =====
    def validate_block_structure(self, ws, start_row: int) -> BlockValidation:
        errors: List[str] = []
        try:
            header = read_rect(ws, HEADER_ROW, YEAR_COL, HEADER_ROW, self.last_col)[0]
            for col, want in zip(range(YEAR_COL, self.last_col + 1), HEADER_LABELS):
                if header[col - 1].strip() != want:
                    errors.append(f"Header column {col} is '{header[col - 1]}', expected '{want}'.")

            rows = read_rect(ws, start_row, YEAR_COL, start_row + self.span - 1, self.last_col)
            first = rows[0]
            year = _year_like(first[YEAR_COL - 1])
            week = to_int(first[WEEK_COL - 1], 0)
            if year is None:
                errors.append(f"Row {start_row}: year '{first[YEAR_COL - 1]}' is not a year.")
            elif not (1 <= week <= weeks_in_year(year)):
                errors.append(f"Row {start_row}: week '{first[WEEK_COL - 1]}' is not a valid ISO week.")
            elif first[MONTH_COL - 1].strip() and first[MONTH_COL - 1].strip() != month_label(year, week):
                errors.append(f"Row {start_row}: month '{first[MONTH_COL - 1]}' does not match {year}-W{week}.")

            for i, (row, slot) in enumerate(zip(rows, self.slots)):
                r = start_row + i
                if row[TIME_COL - 1].strip() != slot:
                    errors.append(f"Row {r}: time '{row[TIME_COL - 1]}', expected '{slot}'.")
                if i and any(v.strip() for v in row[YEAR_COL - 1:WEEK_COL]):
                    errors.append(f"Row {r}: metadata inside block body (overlapping block?).")
            end_row = start_row + self.span - 1
            if (ws.row_count or 0) < end_row:
                errors.append(f"Sheet ends at row {ws.row_count}; block needs rows {start_row}-{end_row}.")
            if (ws.col_count or 0) < self.last_col:
                errors.append(f"Sheet has {ws.col_count} columns; block needs {self.last_col}.")
        except Exception as e:
            errors.append(f"Could not read block at row {start_row}: {e}")
        return BlockValidation(is_valid=not errors, errors=errors)

    # ===== reads =====
    def read_block(self, ws, block: WeekBlock) -> WeekGrid:
        rows = read_rect(ws, block.start_row, TIME_COL, block.end_row, self.last_col)
        return WeekGrid(
            year=block.year, week=block.week, start_row=block.start_row,
            time_slots=[r[0] for r in rows],
            days=list(DAY_ABBREV),
            cells=[r[1:] for r in rows],
        )

    # ===== surfaces =====
    def provision_surface(self, ss, sheet_name: str, team_name: str,
                          start: Tuple[int, int]) -> Tuple[object, List[WeekBlock]]:
        weeks = self.settings.max_weeks_per_team
        ws = retry_429(ss.add_worksheet, title=sheet_name,
                       rows=FIRST_BLOCK_ROW + weeks * self.span + ROW_GROWTH_CHUNK,
                       cols=self.last_col)
        write_rect(ws, HEADER_ROW, YEAR_COL, [HEADER_LABELS])
        retry_429(ws.batch_format, [{
            "range": rect_a1(HEADER_ROW, YEAR_COL, HEADER_ROW, self.last_col),
            "format": {**background(HEADER_BG), "textFormat": {"bold": True, "foregroundColor": background(HEADER_FG)["backgroundColor"]}},
        }])
        retry_429(ws.freeze, rows=HEADER_ROW)
        blocks = self.ensure_weeks(ws, start, weeks)
        self.initialize_grid_colors(ws, blocks)
        logger.info("provisioned '{}' for team '{}' with {} blocks", sheet_name, team_name, len(blocks))
        return ws, blocks

    def initialize_grid_colors(self, ws, blocks: List[WeekBlock]) -> None:
        weekend_start = DAYS_START_COL + 5
        formats = []
        for b in blocks:
            formats.append({"range": rect_a1(b.start_row, DAYS_START_COL, b.end_row, weekend_start - 1),
                            "format": background(WEEKDAY_COLOR)})
            formats.append({"range": rect_a1(b.start_row, weekend_start, b.end_row, self.last_col),
                            "format": background(WEEKEND_COLOR)})
        if formats:
            retry_429(ws.batch_format, formats)


def require_surface(ss, name: str):
    ws = open_sheet(ss, name) if name else None
    if ws is None:
        raise NotFoundError(f"Availability sheet '{name}' not found.")
    return ws
