"""Tests for ingestkit_tables.conversion."""

from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal

import pytest

from ingestkit_tables.conversion import (
    CellKind,
    ParamType,
    cell_kind,
    convert_cell,
    display_text,
    excel_serial_to_datetime,
    is_blank,
    param_type_for,
    parse_date_text,
    parse_decimal_text,
    parse_int_text,
)


class TestCellKind:
    @pytest.mark.parametrize(
        "value, kind",
        [
            (None, CellKind.NULL),
            (float("nan"), CellKind.NULL),
            (True, CellKind.BOOL),
            (False, CellKind.BOOL),
            (7, CellKind.INTEGER),
            (7.5, CellKind.FLOAT),
            (Decimal("7.5"), CellKind.FLOAT),
            (datetime(2024, 1, 5), CellKind.DATETIME),
            (date(2024, 1, 5), CellKind.DATETIME),
            ("abc", CellKind.TEXT),
            ("", CellKind.TEXT),
        ],
    )
    def test_kinds(self, value, kind):
        assert cell_kind(value) is kind


class TestDisplayText:
    def test_integral_float(self):
        assert display_text(3.0) == "3"

    def test_fractional_float(self):
        assert display_text(3.5) == "3.5"

    def test_other_values(self):
        assert display_text(12) == "12"
        assert display_text("x") == "x"

    def test_blank(self):
        assert is_blank(None)
        assert is_blank("   ")
        assert is_blank(float("nan"))
        assert not is_blank(0)
        assert not is_blank(False)


class TestTextParsers:
    def test_int_text(self):
        assert parse_int_text(" 42 ") == 42
        assert parse_int_text("-7") == -7
        assert parse_int_text("12.5") is None
        assert parse_int_text(str(2**31)) is None
        assert parse_int_text(str(-(2**31))) == -(2**31)

    def test_decimal_text(self):
        assert parse_decimal_text("12,5") == Decimal("12.5")
        assert parse_decimal_text("1.5e2") == Decimal("150")
        assert parse_decimal_text(".5") == Decimal("0.5")
        assert parse_decimal_text("1,234.5") is None
        assert parse_decimal_text("NaN") is None
        assert parse_decimal_text("abc") is None

    def test_date_text_formats(self):
        assert parse_date_text("2024-01-05") == datetime(2024, 1, 5)
        assert parse_date_text("05.01.2024") == datetime(2024, 1, 5)
        assert parse_date_text("05/01/2024") == datetime(2024, 1, 5)
        assert parse_date_text("2024-01-05T10:30:00") == datetime(2024, 1, 5, 10, 30)

    def test_date_text_rejects_numbers(self):
        assert parse_date_text("2024") is None
        assert parse_date_text("12,5") is None
        assert parse_date_text("45292") is None

    def test_date_text_rejects_words(self):
        assert parse_date_text("not-a-date") is None
        assert parse_date_text("") is None

    @pytest.mark.parametrize("text", ["12-345", "3 4", "1st", "10-200", "12:30 1500"])
    def test_date_text_rejects_codes(self, text):
        assert parse_date_text(text) is None

    def test_date_text_flexible_needs_year(self):
        assert parse_date_text("5 Jan 2024") == datetime(2024, 1, 5)
        assert parse_date_text("Jan 5") is None

    def test_date_text_custom_formats(self):
        assert parse_date_text("2024|01|05", ["%Y|%m|%d"]) == datetime(2024, 1, 5)

    def test_excel_serial(self):
        assert excel_serial_to_datetime(45292) == datetime(2024, 1, 1)
        assert excel_serial_to_datetime(45292.5) == datetime(2024, 1, 1, 12, 0)

    def test_excel_serial_out_of_range(self):
        assert excel_serial_to_datetime(3_000_000) is None
        assert excel_serial_to_datetime(math.inf) is None


class TestConvertBoolean:
    def test_turkish_yes(self):
        assert convert_cell("evet", ParamType.BOOLEAN) is True

    def test_unknown_word_is_null(self):
        assert convert_cell("maybe", ParamType.BOOLEAN) is None

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("Hayır", False),
            ("hayir", False),
            ("TRUE", True),
            ("no", False),
            ("Y", True),
            ("n", False),
            (1, True),
            (0, False),
            (1.0, True),
            (True, True),
            (False, False),
            (2, None),
        ],
    )
    def test_tokens(self, value, expected):
        assert convert_cell(value, ParamType.BOOLEAN) is expected


class TestConvertDatetime:
    def test_passthrough(self):
        value = datetime(2024, 1, 5, 8, 15)
        assert convert_cell(value, ParamType.DATETIME) == value

    def test_date_widened(self):
        assert convert_cell(date(2024, 1, 5), ParamType.DATETIME) == datetime(2024, 1, 5)

    def test_serial_number(self):
        assert convert_cell(45292, ParamType.DATETIME) == datetime(2024, 1, 1)

    def test_serial_text(self):
        assert convert_cell("45292", ParamType.DATETIME) == datetime(2024, 1, 1)

    def test_text(self):
        assert convert_cell("05.01.2024", ParamType.DATETIME) == datetime(2024, 1, 5)

    def test_garbage_is_null(self):
        assert convert_cell("not-a-date", ParamType.DATETIME) is None

    def test_part_code_is_null(self):
        assert convert_cell("12-345", ParamType.DATETIME) is None

    def test_bool_has_no_date_form(self):
        assert convert_cell(True, ParamType.DATETIME) is None


class TestConvertInteger:
    def test_passthrough(self):
        assert convert_cell(42, ParamType.INTEGER) == 42

    def test_out_of_range(self):
        assert convert_cell(2**31, ParamType.INTEGER) is None

    def test_float_rounds(self):
        assert convert_cell(3.6, ParamType.INTEGER) == 4

    def test_text(self):
        assert convert_cell(" 12 ", ParamType.INTEGER) == 12
        assert convert_cell("12.5", ParamType.INTEGER) is None
        assert convert_cell("abc", ParamType.INTEGER) is None

    def test_infinite_float(self):
        assert convert_cell(math.inf, ParamType.INTEGER) is None


class TestConvertDecimal:
    def test_comma_separator(self):
        assert convert_cell("12,5", ParamType.DECIMAL) == Decimal("12.5")

    def test_float_keeps_short_repr(self):
        assert convert_cell(1.1, ParamType.DECIMAL) == Decimal("1.1")

    def test_integer(self):
        assert convert_cell(7, ParamType.DECIMAL) == Decimal(7)

    def test_overflow(self):
        assert convert_cell(10**16, ParamType.DECIMAL) is None
        assert convert_cell("1e17", ParamType.DECIMAL) is None

    def test_garbage(self):
        assert convert_cell("abc", ParamType.DECIMAL) is None


class TestConvertString:
    def test_integral_float(self):
        assert convert_cell(3.0, ParamType.STRING) == "3"

    def test_values(self):
        assert convert_cell(12, ParamType.STRING) == "12"
        assert convert_cell("abc", ParamType.STRING) == "abc"
        assert convert_cell(True, ParamType.STRING) == "True"

    def test_datetime(self):
        value = convert_cell(datetime(2024, 1, 5), ParamType.STRING)
        assert value == "2024-01-05 00:00:00"


class TestConvertNulls:
    @pytest.mark.parametrize("target", list(ParamType))
    @pytest.mark.parametrize("value", [None, "", "   ", float("nan")])
    def test_blank_is_null(self, value, target):
        assert convert_cell(value, target) is None

    def test_accepts_plain_string_target(self):
        assert convert_cell("5", "integer") == 5


class TestParamTypeFor:
    @pytest.mark.parametrize(
        "sql_type, expected",
        [
            ("bit", ParamType.BOOLEAN),
            ("int", ParamType.INTEGER),
            ("INTEGER", ParamType.INTEGER),
            ("decimal(18,2)", ParamType.DECIMAL),
            ("NUMERIC(10, 4)", ParamType.DECIMAL),
            ("datetime2", ParamType.DATETIME),
            ("nvarchar(255)", ParamType.STRING),
            ("NVARCHAR(MAX)", ParamType.STRING),
            ("TEXT", ParamType.STRING),
            ("xml", ParamType.STRING),
        ],
    )
    def test_mapping(self, sql_type, expected):
        assert param_type_for(sql_type) is expected
