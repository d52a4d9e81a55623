"""Column type inference for the schema analyzer.

Every non-null value in a column is classified by its string form, in the
fixed priority order boolean -> date/time -> integer -> decimal -> string,
so a value matching several patterns is counted once.  The first type whose
share of non-null values exceeds the confidence threshold wins, checked in
the order ``bit`` > ``datetime2`` > ``int`` > ``decimal(18,2)``.  Otherwise
the column falls back to ``nvarchar(n)`` sized by the longest value.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.conversion import (
    INFERENCE_BOOL_TOKENS,
    display_text,
    is_blank,
    parse_bool_text,
    parse_date_text,
    parse_decimal_text,
    parse_int_text,
)
from ingestkit_tables.models import ColumnTypeAnalysis
from ingestkit_tables.naming import transliterate

logger = logging.getLogger("ingestkit_tables")

SQL_BIT = "bit"
SQL_DATETIME = "datetime2"
SQL_INT = "int"
SQL_DECIMAL = "decimal(18,2)"
SQL_DEFAULT_STRING = "nvarchar(255)"
SQL_MAX_STRING = "nvarchar(max)"

_DATE_HINTS = (
    "tarih",
    "date",
    "zaman",
    "time",
    "baslangic",
    "bitis",
    "start",
    "end",
    "dogum",
    "birth",
)
# Headers are transliterated first, so "ode" alone would also match "code".
_AMOUNT_HINTS = (
    "tutar",
    "amount",
    "fiyat",
    "price",
    "ucret",
    "fee",
    "maliyet",
    "cost",
    "para",
    "money",
    "odeme",
    "odenecek",
    "odendiginde",
    "pay",
    "oran",
    "rate",
    "yuzde",
    "percent",
)


def classify_value(value: Any, date_formats: Sequence[str]) -> str:
    """Return ``"bool"``, ``"date"``, ``"int"``, ``"decimal"`` or ``"string"``."""
    text = display_text(value).strip()
    if parse_bool_text(text, INFERENCE_BOOL_TOKENS) is not None:
        return "bool"
    if parse_date_text(text, date_formats) is not None:
        return "date"
    if parse_int_text(text) is not None:
        return "int"
    if parse_decimal_text(text) is not None:
        return "decimal"
    return "string"


def string_type_for(max_length: int, tiers: Sequence[int]) -> str:
    """Smallest ``nvarchar`` tier that fits *max_length*."""
    for tier in sorted(tiers):
        if max_length <= tier:
            return f"nvarchar({tier})"
    return SQL_MAX_STRING


def name_type_hint(column_name: str | None) -> str | None:
    """SQL type suggested by a header alone, or ``None``.

    Date-like headers (``Tarih``, ``Doğum``, ``Date``...) suggest
    ``datetime2``; amount-like headers (``Tutar``, ``Fiyat``, ``Price``...)
    suggest ``decimal(18,2)``.
    """
    if not column_name:
        return None
    lowered = transliterate(column_name).lower()
    if any(hint in lowered for hint in _DATE_HINTS):
        return SQL_DATETIME
    if any(hint in lowered for hint in _AMOUNT_HINTS):
        return SQL_DECIMAL
    return None


def infer_column_type(
    values: Sequence[Any],
    column_name: str | None = None,
    config: TableIngestConfig | None = None,
) -> ColumnTypeAnalysis:
    """Infer the SQL type of one column from all of its values.

    Args:
        values: Every cell of the column, nulls included.
        column_name: Header text; only consulted when name hints are on.
        config: Thresholds, string tiers, date formats and the
            ``name_type_hints`` switch.  Defaults apply when omitted.

    Returns:
        The chosen type, its confidence and the counts behind it.
    """
    config = config or TableIngestConfig()
    total = len(values)
    non_null = [v for v in values if not is_blank(v)]

    counts = {"bool": 0, "date": 0, "int": 0, "decimal": 0, "string": 0}
    max_length = 0
    for value in non_null:
        counts[classify_value(value, config.date_formats)] += 1
        max_length = max(max_length, len(display_text(value).strip()))

    analysis = ColumnTypeAnalysis(
        column_name=column_name or "",
        sql_type=SQL_DEFAULT_STRING,
        confidence=0.0,
        total_count=total,
        non_null_count=len(non_null),
        null_count=total - len(non_null),
        bool_count=counts["bool"],
        date_count=counts["date"],
        int_count=counts["int"],
        decimal_count=counts["decimal"],
        string_count=counts["string"],
        max_length=max_length,
    )

    n = len(non_null)

    if config.name_type_hints:
        hinted = name_type_hint(column_name)
        if hinted is not None:
            matched = counts["date"] if hinted == SQL_DATETIME else (
                counts["int"] + counts["decimal"]
            )
            analysis.sql_type = hinted
            analysis.confidence = matched / n if n else 0.0
            analysis.name_hint_applied = True
            return analysis

    if n == 0:
        return analysis

    threshold = config.type_confidence_threshold
    for key, sql_type in (
        ("bool", SQL_BIT),
        ("date", SQL_DATETIME),
        ("int", SQL_INT),
        ("decimal", SQL_DECIMAL),
    ):
        ratio = counts[key] / n
        if ratio > threshold:
            analysis.sql_type = sql_type
            analysis.confidence = ratio
            return analysis

    analysis.sql_type = string_type_for(max_length, config.string_length_tiers)
    analysis.confidence = counts["string"] / n
    return analysis


def analyze_columns(
    headers: Sequence[str],
    rows: Sequence[Sequence[Any]],
    config: TableIngestConfig | None = None,
) -> list[ColumnTypeAnalysis]:
    """Infer a type for every header.  Short rows count as trailing nulls."""
    config = config or TableIngestConfig()
    analyses = []
    for index, header in enumerate(headers):
        column = [row[index] if index < len(row) else None for row in rows]
        analysis = infer_column_type(column, header, config)
        logger.debug(
            "Column %d inferred as %s (confidence=%.2f, non_null=%d)",
            index,
            analysis.sql_type,
            analysis.confidence,
            analysis.non_null_count,
        )
        analyses.append(analysis)
    return analyses
