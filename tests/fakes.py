"""In-memory stand-ins for the slice of gspread's Spreadsheet / Worksheet the app uses.

Reads trim trailing blanks the way the Sheets API does, writes outside the
grid fail, and a sheet with protected ranges rejects writes unless the
protection has been lifted first.
"""
import itertools
import re
from typing import Dict, List, Optional, Tuple

from gspread.exceptions import APIError, WorksheetNotFound
from gspread.utils import a1_to_rowcol

_A1 = re.compile(r"^([A-Z]*)(\d*)$")


class FakeResponse:
    def __init__(self, code: int, message: str):
        self.status_code = code
        self.text = message
        self._body = {"error": {"code": code, "message": message, "status": "FAKE"}}

    def json(self):
        return self._body


def api_error(code: int, message: str) -> APIError:
    return APIError(FakeResponse(code, message))


def _ref(ref: str) -> Tuple[Optional[int], Optional[int]]:
    m = _A1.match(ref.strip().upper())
    if not m:
        raise api_error(400, f"Unable to parse range: {ref}")
    letters, digits = m.groups()
    col = a1_to_rowcol(f"{letters}1")[1] if letters else None
    return (int(digits) if digits else None), col


def _trim(block: List[List[str]]) -> List[List[str]]:
    out = []
    for row in block:
        row = list(row)
        while row and row[-1] == "":
            row.pop()
        out.append(row)
    while out and not out[-1]:
        out.pop()
    return out


class FakeWorksheet:
    def __init__(self, spreadsheet: "FakeSpreadsheet", sheet_id: int, title: str, rows: int, cols: int):
        self.spreadsheet = spreadsheet
        self.id = sheet_id
        self.title = title
        self.row_count = rows
        self.col_count = cols
        self._rows: List[List[str]] = [[""] * cols for _ in range(rows)]
        self.reads = 0
        self.writes = 0
        self.formats: List[dict] = []
        self.frozen_rows = 0

    # ===== helpers =====
    def _range(self, rng: str) -> Tuple[int, int, int, int]:
        start, _, end = rng.split("!")[-1].partition(":")
        r0, c0 = _ref(start)
        r0, c0 = r0 or 1, c0 or 1
        if not end:
            return r0, c0, r0, c0
        r1, c1 = _ref(end)
        return r0, c0, r1 or self.row_count, c1 or self.col_count

    def _check_writable(self) -> None:
        ss = self.spreadsheet
        if ss.enforce_protection and ss.protected_ranges_for(self.id):
            raise api_error(403, f"You are trying to edit a protected cell or object on '{self.title}'.")

    def _set(self, row: int, col: int, value) -> None:
        if row > self.row_count or col > self.col_count:
            raise api_error(400, f"Range ({self.title}!R{row}C{col}) exceeds grid limits.")
        if isinstance(value, bool):
            value = "TRUE" if value else "FALSE"
        self._rows[row - 1][col - 1] = "" if value is None else str(value)

    def _last_row(self) -> int:
        for i in range(len(self._rows), 0, -1):
            if any(v != "" for v in self._rows[i - 1]):
                return i
        return 0

    def cell_value(self, row: int, col: int) -> str:
        """Test helper, does not count as a read."""
        return self._rows[row - 1][col - 1]

    def poke(self, row: int, col: int, value) -> None:
        """Test helper: edit a cell as a human would, ignoring protection."""
        self._set(row, col, value)

    # ===== reads =====
    def get_all_values(self, **kwargs) -> List[List[str]]:
        self.reads += 1
        last = self._last_row()
        rows = self._rows[:last]
        width = max((len(r) for r in _trim(rows)), default=0)
        return [list(r[:width]) for r in rows]

    def batch_get(self, ranges, major_dimension=None, **kwargs):
        self.reads += 1
        out = []
        for rng in ranges:
            r0, c0, r1, c1 = self._range(rng)
            r1, c1 = min(r1, self.row_count), min(c1, self.col_count)
            block = [self._rows[r - 1][c0 - 1:c1] for r in range(r0, r1 + 1)]
            out.append(_trim(block))
        return out

    # ===== writes =====
    def update(self, values=None, range_name=None, value_input_option=None, **kwargs):
        self._check_writable()
        r0, c0, _, _ = self._range(range_name or "A1")
        for i, row in enumerate(values or []):
            for j, v in enumerate(row):
                self._set(r0 + i, c0 + j, v)
        self.writes += 1
        return {"updatedRange": range_name}

    def batch_update(self, data, value_input_option=None, **kwargs):
        self._check_writable()
        for item in data:
            r0, c0, _, _ = self._range(item["range"])
            for i, row in enumerate(item["values"]):
                for j, v in enumerate(row):
                    self._set(r0 + i, c0 + j, v)
        self.writes += 1
        return {"totalUpdatedCells": sum(len(r) for d in data for r in d["values"])}

    def append_row(self, values, value_input_option=None, **kwargs):
        self._check_writable()
        target = self._last_row() + 1
        if target > self.row_count:
            self._grow(target - self.row_count)
        for j, v in enumerate(values):
            self._set(target, j + 1, v)
        self.writes += 1

    def insert_rows(self, values, row: int = 1, value_input_option=None, **kwargs):
        self._check_writable()
        new = []
        for vals in values:
            if len(vals) > self.col_count:
                raise api_error(400, "Row is wider than the sheet.")
            new.append([("" if v is None else str(v)) for v in vals] + [""] * (self.col_count - len(vals)))
        self._rows[row - 1:row - 1] = new
        self.row_count += len(new)
        self.writes += 1

    def delete_rows(self, start_index: int, end_index: Optional[int] = None):
        self._check_writable()
        end = end_index or start_index
        del self._rows[start_index - 1:end]
        self.row_count -= end - start_index + 1
        self.writes += 1

    def add_rows(self, rows: int):
        self._check_writable()
        self._grow(rows)

    def _grow(self, n: int) -> None:
        self._rows.extend([""] * self.col_count for _ in range(n))
        self.row_count += n

    def batch_clear(self, ranges):
        self._check_writable()
        for rng in ranges:
            r0, c0, r1, c1 = self._range(rng)
            for r in range(r0, min(r1, self.row_count) + 1):
                for c in range(c0, min(c1, self.col_count) + 1):
                    self._rows[r - 1][c - 1] = ""
        self.writes += 1

    def batch_format(self, formats):
        self.formats.extend(formats)

    def freeze(self, rows=None, cols=None):
        self.frozen_rows = rows or 0

    def update_title(self, title: str):
        if any(ws.title == title for ws in self.spreadsheet.worksheets() if ws is not self):
            raise api_error(400, f'A sheet with the name "{title}" already exists.')
        self.title = title


class FakeSpreadsheet:
    def __init__(self, enforce_protection: bool = True):
        self.id = "fake-spreadsheet"
        self.enforce_protection = enforce_protection
        self.fail_restore = False
        self.protection_log: List[Tuple[str, str]] = []
        self._sheets: List[FakeWorksheet] = []
        self._sheet_ids = itertools.count(1)
        self._range_ids = itertools.count(100)
        self._protected: Dict[int, dict] = {}

    def worksheets(self) -> List[FakeWorksheet]:
        return list(self._sheets)

    def worksheet(self, title: str) -> FakeWorksheet:
        for ws in self._sheets:
            if ws.title == title:
                return ws
        raise WorksheetNotFound(title)

    def add_worksheet(self, title: str, rows: int = 100, cols: int = 26, index=None) -> FakeWorksheet:
        if any(ws.title == title for ws in self._sheets):
            raise api_error(400, f'A sheet with the name "{title}" already exists.')
        ws = FakeWorksheet(self, next(self._sheet_ids), title, rows, cols)
        self._sheets.append(ws)
        return ws

    def del_worksheet(self, ws: FakeWorksheet) -> None:
        self._sheets = [s for s in self._sheets if s.id != ws.id]
        self._protected = {k: v for k, v in self._protected.items() if v["range"]["sheetId"] != ws.id}

    def _title(self, sheet_id: int) -> str:
        return next((ws.title for ws in self._sheets if ws.id == sheet_id), f"#{sheet_id}")

    def protected_ranges_for(self, sheet_id: int) -> List[dict]:
        return [p for p in self._protected.values() if p["range"]["sheetId"] == sheet_id]

    def list_protected_ranges(self, sheetid: int) -> List[dict]:
        return [dict(p, requestingUserCanEdit=True) for p in self.protected_ranges_for(sheetid)]

    def batch_update(self, body: dict) -> dict:
        for req in body.get("requests", []):
            if "addProtectedRange" in req:
                if self.fail_restore:
                    raise api_error(500, "Internal error while adding protection.")
                pr = dict(req["addProtectedRange"]["protectedRange"])
                pr["protectedRangeId"] = next(self._range_ids)
                self._protected[pr["protectedRangeId"]] = pr
                self.protection_log.append(("add", self._title(pr["range"]["sheetId"])))
            elif "deleteProtectedRange" in req:
                pr = self._protected.pop(req["deleteProtectedRange"]["protectedRangeId"])
                self.protection_log.append(("delete", self._title(pr["range"]["sheetId"])))
            else:
                raise api_error(400, f"Unsupported request: {sorted(req)}")
        return {"spreadsheetId": self.id, "replies": []}
