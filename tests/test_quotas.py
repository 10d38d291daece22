import pytest

from sm_app import quotas
from sm_app.errors import BackingStoreError
from sm_app.quotas import get_or_create_sheet, read_open_rows, read_rect, retry_429, write_cells
from tests.fakes import FakeSpreadsheet, api_error


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(quotas._pytime, "sleep", lambda s: None)


def test_retry_429_backs_off_then_succeeds():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise api_error(429, "Quota exceeded for quota metric 'Read requests'")
        return "ok"

    assert retry_429(flaky) == "ok"
    assert len(calls) == 3


def test_retry_429_wraps_other_api_errors():
    def broken():
        raise api_error(500, "Internal error")

    with pytest.raises(BackingStoreError):
        retry_429(broken)


def test_retry_429_gives_up_after_retries():
    def always():
        raise api_error(429, "Quota exceeded")

    with pytest.raises(BackingStoreError):
        retry_429(always, retries=2)


def test_read_rect_pads_trimmed_cells():
    ws = FakeSpreadsheet().add_worksheet("S", rows=5, cols=5)
    ws.poke(1, 1, "a")
    assert read_rect(ws, 1, 1, 2, 3) == [["a", "", ""], ["", "", ""]]


def test_read_open_rows_stops_at_last_value():
    ws = FakeSpreadsheet().add_worksheet("S", rows=50, cols=5)
    ws.poke(4, 2, "x")
    rows = read_open_rows(ws, 2, 1, 3)
    assert rows == [["", "", ""], ["", "", ""], ["", "x", ""]]


def test_write_cells_is_one_call_and_raw():
    ws = FakeSpreadsheet().add_worksheet("S", rows=5, cols=5)
    write_cells(ws, {(1, 1): "01", (3, 2): "JS"})
    assert ws.writes == 1
    assert ws.cell_value(1, 1) == "01" and ws.cell_value(3, 2) == "JS"


def test_get_or_create_sheet_writes_headers_once():
    ss = FakeSpreadsheet()
    ws = get_or_create_sheet(ss, "Teams", ["TeamID", "TeamName"])
    assert ws.cell_value(1, 2) == "TeamName"
    assert get_or_create_sheet(ss, "Teams", ["ignored"]) is ws
