"""Tests for ingestkit_tables.reader.

``.xlsx`` cases run against real workbooks built with openpyxl; ``.xls``
cases patch the ``xlrd`` module used by the reader.
"""

from __future__ import annotations

import io
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.errors import ErrorCode, TableIngestException
from ingestkit_tables.reader import SpreadsheetReader

# xlrd cell type constants
EMPTY, TEXT, NUMBER, DATE, BOOLEAN, ERROR, BLANK = range(7)


@pytest.fixture
def reader(test_config) -> SpreadsheetReader:
    return SpreadsheetReader(test_config)


@pytest.fixture
def mock_xlrd():
    with patch("ingestkit_tables.reader.xlrd") as mocked:
        mocked.XL_CELL_EMPTY = EMPTY
        mocked.XL_CELL_TEXT = TEXT
        mocked.XL_CELL_NUMBER = NUMBER
        mocked.XL_CELL_DATE = DATE
        mocked.XL_CELL_BOOLEAN = BOOLEAN
        mocked.XL_CELL_ERROR = ERROR
        mocked.XL_CELL_BLANK = BLANK
        yield mocked


def _cell(ctype: int, value=""):
    return SimpleNamespace(ctype=ctype, value=value)


def _make_book(grid, name="Sheet1", fail_at_row=None):
    """Mock xlrd Book with a single sheet holding *grid* (rows of cells)."""
    sheet = MagicMock()
    sheet.name = name
    sheet.nrows = len(grid)
    sheet.ncols = max((len(r) for r in grid), default=0)

    def _cell_at(r, c):
        if r == fail_at_row:
            raise RuntimeError("truncated record")
        row = grid[r]
        return row[c] if c < len(row) else _cell(EMPTY)

    sheet.cell = _cell_at

    book = MagicMock()
    book.nsheets = 1
    book.sheet_by_index.return_value = sheet
    book.datemode = 0
    book.sheet_names.return_value = [name]
    return book


# ---------------------------------------------------------------------------
# .xlsx
# ---------------------------------------------------------------------------


class TestReadXlsx:
    def test_headers_and_rows(self, reader, xlsx_bytes):
        data = xlsx_bytes([["Ad", "Yas"], ["Ali", 30], ["Ayşe", 25]])
        sheet = reader.read(data, "people.xlsx")
        assert sheet.sheet_name == "Sheet1"
        assert sheet.sheet_index == 0
        assert sheet.headers == ["Ad", "Yas"]
        assert sheet.rows == [["Ali", 30], ["Ayşe", 25]]
        assert sheet.warnings == []

    def test_accepts_stream(self, reader, xlsx_bytes):
        stream = io.BytesIO(xlsx_bytes([["A"], [1]]))
        assert reader.read(stream, "a.xlsx").rows == [[1]]

    def test_native_types(self, reader, xlsx_bytes):
        data = xlsx_bytes(
            [
                ["Tarih", "Gun", "Aktif", "Tutar"],
                [datetime(2024, 1, 5, 9, 30), date(2024, 2, 1), True, 12.5],
            ]
        )
        row = reader.read(data, "a.xlsx").rows[0]
        assert row[0] == datetime(2024, 1, 5, 9, 30)
        assert row[1] == datetime(2024, 2, 1)
        assert isinstance(row[1], datetime)
        assert row[2] is True
        assert row[3] == 12.5

    def test_error_cells_become_empty_text(self, reader, xlsx_bytes):
        data = xlsx_bytes([["A", "B"], ["#N/A", 1]])
        assert reader.read(data, "a.xlsx").rows == [["", 1]]

    def test_formula_without_cached_value_is_blank(self, reader, xlsx_bytes):
        data = xlsx_bytes([["A", "B"], [1, "=A2*2"]])
        assert reader.read(data, "a.xlsx").rows[0][1] is None

    def test_blank_header_cells(self, reader, xlsx_bytes):
        data = xlsx_bytes([["Ad", None, "Yas"], ["Ali", "x", 30]])
        assert reader.read(data, "a.xlsx").headers == ["Ad", "Column2", "Yas"]

    def test_width_is_rightmost_populated_column(self, reader, xlsx_bytes):
        data = xlsx_bytes([["A", "B"], ["x", None, None, "z"], ["y"]])
        sheet = reader.read(data, "a.xlsx")
        assert sheet.headers == ["A", "B", "Column3", "Column4"]
        assert sheet.rows == [["x", None, None, "z"], ["y", None, None, None]]

    def test_numeric_headers_as_text(self, reader, xlsx_bytes):
        data = xlsx_bytes([[2023, 2024], [1, 2]])
        assert reader.read(data, "a.xlsx").headers == ["2023", "2024"]

    def test_blank_rows_skipped(self, reader, xlsx_bytes):
        data = xlsx_bytes([["A"], [1], [None], [2]])
        assert reader.read(data, "a.xlsx").rows == [[1], [2]]

    def test_blank_rows_kept_when_configured(self, xlsx_bytes):
        reader = SpreadsheetReader(TableIngestConfig(skip_blank_rows=False))
        data = xlsx_bytes([["A"], [1], [None], [2]])
        assert reader.read(data, "a.xlsx").rows == [[1], [None], [2]]

    def test_header_only(self, reader, xlsx_bytes):
        sheet = reader.read(xlsx_bytes([["A", "B"]]), "a.xlsx")
        assert sheet.headers == ["A", "B"]
        assert sheet.rows == []
        assert not sheet.is_empty

    def test_empty_sheet(self, reader, xlsx_bytes):
        sheet = reader.read(xlsx_bytes([]), "a.xlsx")
        assert sheet.is_empty
        assert sheet.rows == []
        assert [w.code for w in sheet.warnings] == [ErrorCode.W_SHEET_EMPTY]

    def test_selects_sheet_by_index(self, reader, xlsx_bytes):
        data = xlsx_bytes([["Main"], [0]], extra_sheets=2)
        sheet = reader.read(data, "a.xlsx", sheet_index=2)
        assert sheet.sheet_name == "Extra2"
        assert sheet.headers == ["Other2"]
        assert sheet.rows == [[2]]

    def test_default_sheet_index_from_config(self, xlsx_bytes):
        reader = SpreadsheetReader(TableIngestConfig(default_sheet_index=1))
        data = xlsx_bytes([["Main"], [0]], extra_sheets=1)
        assert reader.read(data, "a.xlsx").sheet_name == "Extra1"

    @pytest.mark.parametrize("index", [1, -1])
    def test_sheet_index_out_of_range(self, reader, xlsx_bytes, index):
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(xlsx_bytes([["A"]]), "a.xlsx", sheet_index=index)
        assert exc_info.value.code == ErrorCode.E_PARSE_SHEET_INDEX

    def test_sheet_names(self, reader, xlsx_bytes):
        data = xlsx_bytes([["A"]], title="Satislar", extra_sheets=2)
        assert reader.sheet_names(data, "a.xlsx") == ["Satislar", "Extra1", "Extra2"]


class TestXlsxFailures:
    def test_corrupt_bytes(self, reader):
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"this is not a zip archive", "broken.xlsx")
        assert exc_info.value.code == ErrorCode.E_PARSE_CORRUPT

    def test_encrypted_container(self, reader):
        data = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 512
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(data, "secret.xlsx")
        assert exc_info.value.code == ErrorCode.E_PARSE_PASSWORD

    def test_bad_extension(self, reader):
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"a,b\n1,2\n", "data.csv")
        assert exc_info.value.code == ErrorCode.E_SECURITY_BAD_EXTENSION

    def test_workbook_closed(self, reader, xlsx_bytes):
        data = xlsx_bytes([["A"], [1]])
        with patch("ingestkit_tables.reader.openpyxl.load_workbook") as load:
            wb = MagicMock()
            wb.worksheets = []
            load.return_value = wb
            with pytest.raises(TableIngestException):
                reader.read(data, "a.xlsx")
        wb.close.assert_called_once()


# ---------------------------------------------------------------------------
# .xls
# ---------------------------------------------------------------------------


class TestReadXls:
    def test_cell_types(self, reader, mock_xlrd):
        mock_xlrd.xldate_as_datetime.return_value = datetime(2024, 1, 1)
        book = _make_book(
            [
                [_cell(TEXT, "Ad"), _cell(TEXT, "Yas"), _cell(TEXT, "Aktif"),
                 _cell(TEXT, "Tarih"), _cell(TEXT, "Tutar"), _cell(TEXT, "Hata")],
                [_cell(TEXT, "Ali"), _cell(NUMBER, 30.0), _cell(BOOLEAN, 1),
                 _cell(DATE, 45292.0), _cell(NUMBER, 12.5), _cell(ERROR, 42)],
            ]
        )
        mock_xlrd.open_workbook.return_value = book

        sheet = reader.read(b"xls-bytes", "legacy.xls")

        mock_xlrd.open_workbook.assert_called_once_with(file_contents=b"xls-bytes")
        assert sheet.headers == ["Ad", "Yas", "Aktif", "Tarih", "Tutar", "Hata"]
        assert sheet.rows == [["Ali", 30, True, datetime(2024, 1, 1), 12.5, ""]]
        assert isinstance(sheet.rows[0][1], int)
        mock_xlrd.xldate_as_datetime.assert_called_once_with(45292.0, 0)
        book.release_resources.assert_called_once()

    def test_bad_date_keeps_serial(self, reader, mock_xlrd):
        mock_xlrd.xldate_as_datetime.side_effect = ValueError("negative date")
        mock_xlrd.open_workbook.return_value = _make_book(
            [[_cell(TEXT, "Tarih")], [_cell(DATE, -5.0)]]
        )
        assert reader.read(b"x", "a.xls").rows == [[-5.0]]

    def test_empty_and_blank_cells(self, reader, mock_xlrd):
        mock_xlrd.open_workbook.return_value = _make_book(
            [
                [_cell(TEXT, "A"), _cell(TEXT, "B")],
                [_cell(EMPTY), _cell(BLANK)],
                [_cell(TEXT, "x"), _cell(BLANK)],
            ]
        )
        assert reader.read(b"x", "a.xls").rows == [["x", None]]

    def test_sheet_names(self, reader, mock_xlrd):
        book = _make_book([[_cell(TEXT, "A")]], name="Veri")
        mock_xlrd.open_workbook.return_value = book
        assert reader.sheet_names(b"x", "a.xls") == ["Veri"]
        book.release_resources.assert_called_once()

    def test_sheet_index_out_of_range(self, reader, mock_xlrd):
        book = _make_book([[_cell(TEXT, "A")]])
        mock_xlrd.open_workbook.return_value = book
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"x", "a.xls", sheet_index=3)
        assert exc_info.value.code == ErrorCode.E_PARSE_SHEET_INDEX
        book.release_resources.assert_called_once()

    def test_corrupt(self, reader, mock_xlrd):
        mock_xlrd.open_workbook.side_effect = Exception("Unsupported format")
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"x", "a.xls")
        assert exc_info.value.code == ErrorCode.E_PARSE_CORRUPT

    def test_encrypted(self, reader, mock_xlrd):
        mock_xlrd.open_workbook.side_effect = Exception("Workbook is encrypted")
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"x", "a.xls")
        assert exc_info.value.code == ErrorCode.E_PARSE_PASSWORD

    def test_failure_mid_sheet_keeps_rows(self, reader, mock_xlrd, caplog):
        mock_xlrd.open_workbook.return_value = _make_book(
            [
                [_cell(TEXT, "A")],
                [_cell(NUMBER, 1.0)],
                [_cell(NUMBER, 2.0)],
                [_cell(NUMBER, 3.0)],
            ],
            fail_at_row=2,
        )
        with caplog.at_level("WARNING", logger="ingestkit_tables"):
            sheet = reader.read(b"x", "a.xls")
        assert sheet.rows == [[1]]
        assert [w.code for w in sheet.warnings] == [ErrorCode.W_ROWS_PARTIAL]
        assert "Stopped reading" in caplog.text

    def test_failure_in_header_row(self, reader, mock_xlrd):
        mock_xlrd.open_workbook.return_value = _make_book(
            [[_cell(TEXT, "A")], [_cell(NUMBER, 1.0)]], fail_at_row=0
        )
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"x", "a.xls")
        assert exc_info.value.code == ErrorCode.E_PARSE_CORRUPT

    def test_real_xlrd_rejects_garbage(self, reader):
        with pytest.raises(TableIngestException) as exc_info:
            reader.read(b"definitely not a workbook", "a.xls")
        assert exc_info.value.code == ErrorCode.E_PARSE_CORRUPT
