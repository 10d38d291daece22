from __future__ import annotations
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from gspread.exceptions import APIError
from loguru import logger

from .blocks import WeekBlockStore
from .cache import TTLCache, safe_invalidate, schedule_key
from .config import (
    DAYS_START_COL, FOUR_PLUS_COLOR, ONE_PLAYER_COLOR, TWO_TO_THREE_COLOR,
    WEEKDAY_COLOR, WEEKEND_COLOR, Settings,
)
from .errors import ScheduleError, ValidationError, warn_consistency
from .models import (
    BatchResult, CellRef, MultiWeekResult, ToggleOutcome, WeekBlock, WeekGrid,
    WeekResult, WeeklyPayload,
)
from .quotas import read_rect, rect_a1, retry_429, write_cells
from .utils import background, join_tokens, normalize_token, parse_tokens
from .weeks import (
    clamp, in_data_region, is_day_col, is_weekend_col, iso_year_week,
    visual_in_bounds, visual_to_abs,
)

ADD = "add"
REMOVE = "remove"
ACTIONS = (ADD, REMOVE)


def check_action(action: str) -> str:
    a = (action or "").strip().lower()
    if a not in ACTIONS:
        raise ValidationError(f"Unknown action '{action}'. Use 'add' or 'remove'.")
    return a


def check_token(token: str) -> str:
    t = normalize_token(token)
    if not t:
        raise ValidationError("Initials are required.")
    return t


def apply_token(cell_value: str, token: str, action: str) -> Optional[str]:
    """New cell text, or None when the cell already is in the requested state."""
    tokens = parse_tokens(cell_value)
    if action == ADD:
        if token in tokens:
            return None
        tokens.add(token)
    else:
        if token not in tokens:
            return None
        tokens.discard(token)
    return join_tokens(tokens)


def color_for(count: int, col: int) -> str:
    if count <= 0:
        return WEEKEND_COLOR if is_weekend_col(col) else WEEKDAY_COLOR
    if count == 1:
        return ONE_PLAYER_COLOR
    if count <= 3:
        return TWO_TO_THREE_COLOR
    return FOUR_PLUS_COLOR


def check_payload_count(payloads: Sequence[WeeklyPayload], max_weeks: int) -> None:
    if len(payloads) > max_weeks:
        raise ValidationError(f"Too many weeks in one update: {len(payloads)} (max {max_weeks}).")


def _plural(n: int, one: str, many: str) -> str:
    return one if n == 1 else many


def update_message(token: str, action: str, modified: int, invalid: int) -> str:
    total = modified + invalid
    if modified == 0:
        if invalid and invalid == total:
            return f"No changes made. All {total} selected {_plural(total, 'slot is', 'slots are')} not in a valid availability grid."
        state = "already present in" if action == ADD else "not found in"
        msg = f"No changes made. Your initials ({token}) were {state} the selected time slots."
    elif action == ADD:
        msg = f"Added your availability ({token}) to {modified} time {_plural(modified, 'slot', 'slots')}."
    else:
        msg = f"Removed your availability ({token}) from {modified} time {_plural(modified, 'slot', 'slots')}."
    if invalid:
        msg += f" {invalid} {_plural(invalid, 'slot was', 'slots were')} skipped (invalid location)."
    return msg


class AvailabilityGrid:
    def __init__(self, store: WeekBlockStore, settings: Settings, cache: TTLCache):
        self.store = store
        self.settings = settings
        self.cache = cache

    # ===== single cell =====
    def toggle_cell(self, ws, row: int, col: int, token: str, action: str,
                    blocks: Optional[List[WeekBlock]] = None) -> ToggleOutcome:
        action, token = check_action(action), check_token(token)
        blocks = self.store.find_all_blocks(ws) if blocks is None else blocks
        block = self.store.block_for_row(blocks, row)
        if block is None or not in_data_region(block, row, col):
            return ToggleOutcome(modified=False, invalid=True)

        current = read_rect(ws, row, col, row, col)[0][0]
        new = apply_token(current, token, action)
        if new is None:
            return ToggleOutcome(modified=False)
        write_cells(ws, {(row, col): new})
        self.apply_colors(ws, {(row, col): new})
        return ToggleOutcome(modified=True)

    # ===== one week, absolute coordinates =====
    def batch_toggle(self, ws, selections: Sequence[CellRef], token: str, action: str) -> BatchResult:
        if not selections:
            raise ValidationError("No time slots specified.")
        action, token = check_action(action), check_token(token)
        blocks = self.store.find_all_blocks(ws)

        result = BatchResult()
        valid: List[CellRef] = []
        for sel in selections:
            block = self.store.block_for_row(blocks, sel.row)
            if block is None or not is_day_col(sel.col):
                result.invalid_cells += 1
            else:
                valid.append(sel)
        if not valid:
            return result

        r0, r1 = min(s.row for s in valid), max(s.row for s in valid)
        c0, c1 = min(s.col for s in valid), max(s.col for s in valid)
        grid = read_rect(ws, r0, c0, r1, c1)

        changes: Dict[Tuple[int, int], str] = {}
        for sel in valid:
            cur = grid[sel.row - r0][sel.col - c0]
            new = apply_token(cur, token, action)
            if new is None:
                continue
            grid[sel.row - r0][sel.col - c0] = new
            changes[(sel.row, sel.col)] = new
            result.cells_modified += 1
            result.modified_refs.append(sel)
            week = self.store.block_for_row(blocks, sel.row).key
            if week not in result.weeks:
                result.weeks.append(week)

        write_cells(ws, changes)
        self.apply_colors(ws, changes)
        return result

    # ===== many weeks, visual coordinates =====
    def batch_toggle_multi_week(self, ws, payloads: Sequence[WeeklyPayload], token: str,
                                action: str) -> MultiWeekResult:
        if not payloads or not any(p.selections for p in payloads):
            raise ValidationError("No time slots specified.")
        check_payload_count(payloads, self.settings.max_range_weeks)
        action, token = check_action(action), check_token(token)

        out = MultiWeekResult()
        blocks = self.store.find_all_blocks(ws)
        for payload in payloads:
            wr = WeekResult(year=payload.year, week=payload.week)
            out.weeks.append(wr)
            if not payload.selections:
                continue
            try:
                block = self.store.find_block(ws, payload.year, payload.week, blocks)
                if block is None:
                    block = self.store.ensure_block(ws, payload.year, payload.week)
                    out.created.append(block.key)
                    blocks = self.store.find_all_blocks(ws)
                wr.start_row = block.start_row
                self._toggle_week(ws, block, payload, token, action, wr)
            except (ScheduleError, APIError) as e:
                logger.warning("week {}-W{} skipped: {}", payload.year, payload.week, e)
                wr.error = str(e)
                wr.invalid_cells = len(payload.selections) - wr.cells_modified
        return out

    def _toggle_week(self, ws, block: WeekBlock, payload: WeeklyPayload, token: str,
                     action: str, wr: WeekResult) -> None:
        span_rows = block.end_row - block.start_row
        valid = []
        for v in payload.selections:
            if visual_in_bounds(block, v.row, v.col):
                valid.append(v)
            else:
                wr.invalid_cells += 1
        if not valid:
            return

        vr0 = clamp(min(v.row for v in valid), 0, span_rows)
        vr1 = clamp(max(v.row for v in valid), 0, span_rows)
        vc0 = clamp(min(v.col for v in valid), 0, 6)
        vc1 = clamp(max(v.col for v in valid), 0, 6)
        top_left = visual_to_abs(block, vr0, vc0)
        bottom_right = visual_to_abs(block, vr1, vc1)
        grid = read_rect(ws, top_left.row, top_left.col, bottom_right.row, bottom_right.col)

        changes: Dict[Tuple[int, int], str] = {}
        for v in valid:
            cur = grid[v.row - vr0][v.col - vc0]
            new = apply_token(cur, token, action)
            if new is None:
                continue
            grid[v.row - vr0][v.col - vc0] = new
            ref = visual_to_abs(block, v.row, v.col)
            changes[(ref.row, ref.col)] = new
        write_cells(ws, changes)
        wr.cells_modified += len(changes)
        self.apply_colors(ws, changes)

    # ===== bulk clean-up =====
    def _rewrite_blocks(self, ws, blocks: Iterable[WeekBlock], keep) -> Tuple[int, List[WeekBlock], Dict[str, int]]:
        """Drop every token for which keep(token) is False; one read and one write per block."""
        cleared, touched, dropped = 0, [], {}
        last_col = self.store.last_col
        for b in blocks:
            grid = read_rect(ws, b.start_row, DAYS_START_COL, b.end_row, last_col)
            changes = {}
            for i, row in enumerate(grid):
                for j, val in enumerate(row):
                    tokens = parse_tokens(val)
                    kept = {t for t in tokens if keep(t)}
                    if kept == tokens:
                        continue
                    for t in tokens - kept:
                        dropped[t] = dropped.get(t, 0) + 1
                    changes[(b.start_row + i, DAYS_START_COL + j)] = join_tokens(kept)
            if changes:
                write_cells(ws, changes)
                self.apply_colors(ws, changes)
                cleared += len(changes)
                touched.append(b)
        return cleared, touched, dropped

    def clear_token(self, ws, token: str, current_and_future_only: bool = True,
                    today: Optional[date] = None) -> Tuple[int, List[WeekBlock]]:
        token = check_token(token)
        blocks = self.store.find_all_blocks(ws)
        if current_and_future_only:
            cutoff = iso_year_week(today or date.today())
            blocks = [b for b in blocks if b.key >= cutoff]
        cleared, touched, _ = self._rewrite_blocks(ws, blocks, lambda t: t != token)
        logger.info("cleared {} from {} cell(s) on '{}'", token, cleared, ws.title)
        return cleared, touched

    def sync_tokens(self, ws, valid_tokens: Set[str]) -> Tuple[int, List[WeekBlock]]:
        valid = {normalize_token(t) for t in valid_tokens}
        blocks = self.store.find_all_blocks(ws)
        cleared, touched, dropped = self._rewrite_blocks(ws, blocks, lambda t: t in valid)
        for t, n in sorted(dropped.items()):
            warn_consistency("sync_tokens", f"stale initials '{t}' removed from {n} cell(s) on '{ws.title}'")
        return cleared, touched

    # ===== reads + cache =====
    def read_week(self, ws, block: WeekBlock) -> WeekGrid:
        key = schedule_key(ws.title, block.year, block.week)
        return self.cache.get_or_load(key, lambda: self.store.read_block(ws, block),
                                      ttl_sec=self.settings.schedule_cache_ttl)

    def invalidate_weeks(self, sheet_name: str, weeks: Iterable[Tuple[int, int]]) -> None:
        safe_invalidate(self.cache, [schedule_key(sheet_name, y, w) for (y, w) in weeks])

    # ===== presentation =====
    def apply_colors(self, ws, cells: Dict[Tuple[int, int], str]) -> None:
        if not self.settings.apply_color_coding or not cells:
            return
        try:
            formats = [
                {"range": rect_a1(r, c, r, c), "format": background(color_for(len(parse_tokens(v)), c))}
                for (r, c), v in sorted(cells.items())
            ]
            retry_429(ws.batch_format, formats)
        except Exception as e:
            logger.warning("colour pass failed on '{}': {}", ws.title, e)
