"""Tests for ingestkit_tables.naming."""

from __future__ import annotations

import re

import pytest

from ingestkit_tables.config import TableNamePolicy
from ingestkit_tables.errors import ErrorCode, TableIngestException
from ingestkit_tables.naming import (
    clean_headers,
    clean_name,
    column_letter,
    resolve_table_name,
    unique_name,
)

_LEGAL = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_MESSY_HEADERS = [
    "Doğum Tarihi",
    "",
    "   ",
    None,
    "123abc",
    "Price ($)",
    "İşlem Tutarı",
    "ŞUBE / BÖLGE",
    "Café crème",
    "%%%",
    "日本語",
    "__private__",
    "a" * 150,
    "a" * 99 + " b",
    "Ad",
    "ad",
    "AD ",
    "Id",
    "tab\tseparated\nheader",
]


class TestCleanName:
    def test_turkish_header(self):
        assert clean_name("Doğum Tarihi") == "Dogum_Tarihi"

    def test_blank_header(self):
        assert clean_name("") == "Column_1"
        assert clean_name("   ") == "Column_1"
        assert clean_name(None) == "Column_1"

    def test_all_turkish_letters(self):
        assert clean_name("çÇğĞıİöÖşŞüÜ") == "cCgGiIoOsSuU"

    def test_dotted_capital_i(self):
        assert clean_name("İşlem Tutarı") == "Islem_Tutari"

    def test_other_accents_dropped(self):
        assert clean_name("Café crème") == "Cafe_creme"

    def test_whitespace_runs_collapse(self):
        assert clean_name("  Müşteri   Adı ") == "Musteri_Adi"
        assert clean_name("tab\tseparated\nheader") == "tab_separated_header"

    def test_illegal_characters(self):
        assert clean_name("Price ($)") == "Price"
        assert clean_name("ŞUBE / BÖLGE") == "SUBE_BOLGE"

    def test_leading_digit_prefixed(self):
        assert clean_name("123abc") == "Col_123abc"
        assert clean_name("2024") == "Col_2024"

    def test_nothing_legal_left(self):
        assert clean_name("%%%") == "Column_1"
        assert clean_name("日本語") == "Column_1"

    def test_underscores_trimmed(self):
        assert clean_name("__private__") == "private"

    def test_truncated_to_100(self):
        assert clean_name("a" * 150) == "a" * 100

    def test_truncation_never_leaves_trailing_underscore(self):
        assert clean_name("a" * 99 + " b") == "a" * 99

    def test_custom_max_length(self):
        assert clean_name("abcdef", max_length=3) == "abc"

    @pytest.mark.parametrize("raw", _MESSY_HEADERS)
    def test_fixed_point(self, raw):
        once = clean_name(raw)
        assert clean_name(once) == once

    @pytest.mark.parametrize("raw", _MESSY_HEADERS)
    def test_output_is_legal_identifier(self, raw):
        name = clean_name(raw)
        assert _LEGAL.match(name)
        assert 0 < len(name) <= 100


class TestUniqueName:
    def test_duplicate_gets_suffix(self):
        used: set[str] = set()
        assert unique_name("Ad", used) == "Ad"
        assert unique_name("Ad", used) == "Ad_1"
        assert used == {"Ad", "Ad_1"}

    def test_collisions_are_case_insensitive(self):
        used: set[str] = set()
        assert unique_name("Ad", used) == "Ad"
        assert unique_name("ad", used) == "ad_1"
        assert unique_name("AD", used) == "AD_2"

    def test_suffix_skips_names_already_taken(self):
        used: set[str] = set()
        names = [unique_name(h, used) for h in ["Ad", "Ad_1", "Ad"]]
        assert names == ["Ad", "Ad_1", "Ad_2"]

    def test_suffix_respects_length_limit(self):
        used: set[str] = set()
        unique_name("x" * 120, used)
        second = unique_name("x" * 120, used)
        assert second == "x" * 98 + "_1"
        assert len(second) == 100


class TestCleanHeaders:
    def test_two_identical_headers(self):
        assert clean_headers(["Ad", "Ad"]) == ["Ad", "Ad_1"]

    def test_identity_name_is_reserved(self):
        assert clean_headers(["Id", "Name"]) == ["Id_1", "Name"]
        assert clean_headers(["ID"]) == ["ID_1"]

    def test_custom_reserved(self):
        assert clean_headers(["RowId"], reserved=("RowId",)) == ["RowId_1"]

    def test_blank_headers_stay_unique(self):
        assert clean_headers(["", "", "x"]) == ["Column_1", "Column_1_1", "x"]

    def test_messy_headers_unique_and_legal(self):
        names = clean_headers(_MESSY_HEADERS)
        assert len(names) == len(_MESSY_HEADERS)
        assert len({n.casefold() for n in names}) == len(names)
        for name in names:
            assert _LEGAL.match(name)
            assert len(name) <= 100

    def test_order_is_stable(self):
        headers = ["B", "A", "B", "A"]
        assert clean_headers(headers) == clean_headers(list(headers))
        assert clean_headers(headers) == ["B", "A", "B_1", "A_1"]


class TestColumnLetter:
    @pytest.mark.parametrize(
        "index, letter",
        [
            (0, "A"),
            (1, "B"),
            (25, "Z"),
            (26, "AA"),
            (27, "AB"),
            (701, "ZZ"),
            (702, "AAA"),
        ],
    )
    def test_letters(self, index, letter):
        assert column_letter(index) == letter


class TestResolveTableName:
    def test_defaults_to_file_stem(self):
        assert resolve_table_name(None, "Satış Raporu.xlsx") == "Satis_Raporu"

    def test_blank_request_uses_file_stem(self):
        assert resolve_table_name("   ", "/tmp/report.xls") == "report"

    def test_normalized_policy_cleans(self):
        assert resolve_table_name("Sales 2024", "x.xlsx") == "Sales_2024"

    def test_normalized_names_merge(self):
        a = resolve_table_name("Sales-2024", "a.xlsx", TableNamePolicy.NORMALIZED)
        b = resolve_table_name("Sales 2024", "b.xlsx", TableNamePolicy.NORMALIZED)
        assert a == b == "Sales_2024"

    def test_exact_policy_keeps_name(self):
        name = resolve_table_name("  Sales 2024 ", "x.xlsx", TableNamePolicy.EXACT)
        assert name == "Sales 2024"

    def test_exact_policy_accepts_string_value(self):
        assert resolve_table_name("Sales 2024", "x.xlsx", "exact") == "Sales 2024"

    def test_exact_policy_still_cleans_file_stem(self):
        assert resolve_table_name(None, "my file.xlsx", TableNamePolicy.EXACT) == "my_file"

    def test_exact_policy_rejects_long_names(self):
        with pytest.raises(TableIngestException) as exc_info:
            resolve_table_name("x" * 129, "x.xlsx", TableNamePolicy.EXACT)
        assert exc_info.value.code == ErrorCode.E_TABLE_NAME_INVALID
