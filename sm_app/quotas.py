import time as _pytime
from typing import Dict, List, Optional, Sequence

import gspread
import gspread.utils as a1
from gspread import WorksheetNotFound
from gspread.exceptions import APIError
from loguru import logger

from .errors import BackingStoreError
from .utils import pad_rows


def _is_quota_error(e: Exception) -> bool:
    s = str(e).lower()
    return "429" in s or "quota exceeded" in s or "rate limit" in s


def retry_429(fn, *args, retries: int = 5, backoff: float = 0.8, **kwargs):
    for i in range(retries):
        try:
            return fn(*args, **kwargs)
        except APIError as e:
            if _is_quota_error(e):
                logger.debug("quota hit on {}, retry {}", getattr(fn, "__name__", fn), i + 1)
                _pytime.sleep(backoff * (2 ** i))
                continue
            raise BackingStoreError(f"Sheets API error: {e}") from e
    try:
        return fn(*args, **kwargs)
    except APIError as e:
        raise BackingStoreError(f"Sheets API error: {e}") from e


def rect_a1(r0: int, c0: int, r1: int, c1: int) -> str:
    return f"{a1.rowcol_to_a1(r0, c0)}:{a1.rowcol_to_a1(r1, c1)}"


def safe_batch_get(ws, ranges: Sequence[str]) -> list:
    return retry_429(ws.batch_get, list(ranges), major_dimension="ROWS")


def read_rect(ws, r0: int, c0: int, r1: int, c1: int) -> List[List[str]]:
    if r1 < r0 or c1 < c0:
        return []
    block = safe_batch_get(ws, [rect_a1(r0, c0, r1, c1)])[0]
    return pad_rows(block, r1 - r0 + 1, c1 - c0 + 1)


def read_open_rows(ws, start_row: int, c0: int, c1: int) -> List[List[str]]:
    """Rows from start_row down to the last non-empty one, e.g. A2:C.

    Open-ended so it does not depend on ws.row_count, which can lag behind an
    insert_rows made through the same handle.
    """
    col0 = a1.rowcol_to_a1(1, c0)[:-1]
    col1 = a1.rowcol_to_a1(1, c1)[:-1]
    block = safe_batch_get(ws, [f"{col0}{start_row}:{col1}"])[0]
    return pad_rows(block, len(block or []), c1 - c0 + 1)


def write_rect(ws, r0: int, c0: int, values: List[List], raw: bool = True) -> None:
    if not values:
        return
    r1 = r0 + len(values) - 1
    c1 = c0 + max(len(r) for r in values) - 1
    retry_429(ws.update, range_name=rect_a1(r0, c0, r1, c1), values=values,
              value_input_option="RAW" if raw else "USER_ENTERED")


def write_cells(ws, cells: Dict, raw: bool = True) -> None:
    """{(row, col): value} -> one batch_update call."""
    if not cells:
        return
    data = []
    for (r, c), v in sorted(cells.items()):
        ref = a1.rowcol_to_a1(r, c)
        data.append({"range": f"{ref}:{ref}", "values": [[v]]})
    retry_429(ws.batch_update, data, value_input_option="RAW" if raw else "USER_ENTERED")


def ensure_rows(ws, needed: int, chunk: int = 200) -> None:
    have = ws.row_count or 0
    if needed > have:
        retry_429(ws.add_rows, max(needed - have, chunk))


def all_values(ws) -> List[List[str]]:
    return retry_429(ws.get_all_values)


def open_sheet(ss, title: str) -> Optional["gspread.Worksheet"]:
    try:
        return retry_429(ss.worksheet, title)
    except WorksheetNotFound:
        return None


def get_or_create_sheet(ss, title: str, headers: List[str], rows: int = 1000) -> "gspread.Worksheet":
    ws = open_sheet(ss, title)
    if ws is not None:
        return ws
    try:
        ws = retry_429(ss.add_worksheet, title=title, rows=rows, cols=max(len(headers), 8))
    except BackingStoreError as e:
        if "already exists" in str(e).lower():
            return retry_429(ss.worksheet, title)
        raise
    write_rect(ws, 1, 1, [headers])
    logger.info("created sheet '{}'", title)
    return ws
