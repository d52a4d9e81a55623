"""Cell classification and the per-cell conversion table.

Every value read from a spreadsheet is one of a small set of cell kinds
(``CellKind``).  Every target column maps to one parameter type
(``ParamType``).  ``convert_cell`` looks up the converter registered for the
``(kind, target)`` pair and returns the converted value, or ``None`` when the
value cannot be represented in the target type.  It never raises.

The text parsers defined here (booleans, dates, integers, decimals) are also
used by the schema analyzer, so inference and loading agree on what parses.
"""

from __future__ import annotations

import logging
import math
import re
import warnings
from collections.abc import Callable, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

import pandas as pd

from ingestkit_tables.config import DEFAULT_DATE_FORMATS

logger = logging.getLogger("ingestkit_tables")

INT_MIN = -(2**31)
INT_MAX = 2**31 - 1

# decimal(18,2) leaves 16 digits before the point.
DECIMAL_LIMIT = Decimal(10) ** 16

# Excel serials for 0001-01-01 and 9999-12-31 (1900 date system).
_SERIAL_MIN = -693593
_SERIAL_MAX = 2958465

# Booleans recognised while inferring a column type.  Digits are left out so
# a column of 0/1 flags still reads as integers.
INFERENCE_BOOL_TOKENS: dict[str, bool] = {
    "true": True,
    "false": False,
    "yes": True,
    "no": False,
    "evet": True,
    "hayır": False,
    "hayir": False,
}

# Booleans accepted when loading into a bit column.
BOOL_TOKENS: dict[str, bool] = {
    **INFERENCE_BOOL_TOKENS,
    "y": True,
    "n": False,
    "1": True,
    "0": False,
}

_INT_TEXT_RE = re.compile(r"^[+-]?\d+$")
_DECIMAL_TEXT_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_PLAIN_NUMBER_RE = re.compile(r"^[+-]?\d+([.,]\d+)?$")
_HAS_DIGIT_RE = re.compile(r"\d")
_YEAR_RE = re.compile(r"(?<!\d)\d{4}(?!\d)")

# Earliest year the flexible parser accepts (SQL Server `datetime` floor).
MIN_FLEXIBLE_YEAR = 1753


class CellKind(str, Enum):
    """Kind of a raw cell value as produced by the reader."""

    NULL = "null"
    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    BOOL = "bool"
    DATETIME = "datetime"


class ParamType(str, Enum):
    """Parameter type bound for a target column."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATETIME = "datetime"
    BOOLEAN = "boolean"


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def cell_kind(value: Any) -> CellKind:
    """Classify a raw cell value.  ``bool`` is checked before ``int``."""
    if value is None:
        return CellKind.NULL
    if isinstance(value, bool):
        return CellKind.BOOL
    if isinstance(value, int):
        return CellKind.INTEGER
    if isinstance(value, float):
        return CellKind.NULL if math.isnan(value) else CellKind.FLOAT
    if isinstance(value, Decimal):
        return CellKind.NULL if value.is_nan() else CellKind.FLOAT
    if isinstance(value, (datetime, date)):
        return CellKind.DATETIME
    return CellKind.TEXT


def display_text(value: Any) -> str:
    """String form of a cell value.

    Integral floats drop their ``.0`` so ``3.0`` reads as ``"3"``.
    """
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def is_blank(value: Any) -> bool:
    """True for ``None``, NaN and strings that are empty after trimming."""
    if cell_kind(value) is CellKind.NULL:
        return True
    return not display_text(value).strip()


def parse_bool_text(text: str, tokens: dict[str, bool] = BOOL_TOKENS) -> bool | None:
    return tokens.get(text.strip().lower())


def parse_int_text(text: str) -> int | None:
    """Parse a strict integer literal within the 32-bit range."""
    text = text.strip()
    if not _INT_TEXT_RE.match(text):
        return None
    number = int(text)
    if INT_MIN <= number <= INT_MAX:
        return number
    return None


def parse_decimal_text(text: str) -> Decimal | None:
    """Parse a finite decimal literal.

    A single comma with no dot is read as the decimal separator
    (``"12,5"`` -> ``12.5``).
    """
    text = text.strip()
    if text.count(",") == 1 and "." not in text:
        text = text.replace(",", ".")
    if not _DECIMAL_TEXT_RE.match(text):
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def parse_date_text(
    text: str, formats: Sequence[str] = DEFAULT_DATE_FORMATS
) -> datetime | None:
    """Parse a calendar date/time string.

    Plain numbers never parse as dates here; numeric serials are handled by
    :func:`excel_serial_to_datetime`.  Explicit *formats* are tried first,
    then pandas' flexible parser.  The flexible parser only accepts texts
    that spell out a four-digit year of at least ``MIN_FLEXIBLE_YEAR``, so
    codes such as ``12-345`` or ``3 4`` stay text.
    """
    text = text.strip()
    if not text or not _HAS_DIGIT_RE.search(text) or _PLAIN_NUMBER_RE.match(text):
        return None

    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    year = _YEAR_RE.search(text)
    if year is None or int(year.group()) < MIN_FLEXIBLE_YEAR:
        return None

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed) or parsed.year != int(year.group()):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert(None)
    return parsed.to_pydatetime()


def excel_serial_to_datetime(serial: float) -> datetime | None:
    """Convert an Excel serial day number (1900 system) to a datetime."""
    if not math.isfinite(serial) or not _SERIAL_MIN <= serial <= _SERIAL_MAX:
        return None
    try:
        parsed = pd.to_datetime(serial, unit="D", origin="1899-12-30", errors="coerce")
    except (ValueError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


# ---------------------------------------------------------------------------
# Converters, one per (CellKind, ParamType) pair
# ---------------------------------------------------------------------------


def _to_string(value: Any, formats: Sequence[str]) -> str:
    return display_text(value)


def _datetime_passthrough(value: Any, formats: Sequence[str]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _number_to_datetime(value: Any, formats: Sequence[str]) -> datetime | None:
    return excel_serial_to_datetime(float(value))


def _text_to_datetime(value: Any, formats: Sequence[str]) -> datetime | None:
    text = display_text(value).strip()
    if _PLAIN_NUMBER_RE.match(text):
        return excel_serial_to_datetime(float(text.replace(",", ".")))
    return parse_date_text(text, formats)


def _int_passthrough(value: Any, formats: Sequence[str]) -> int | None:
    return value if INT_MIN <= value <= INT_MAX else None


def _number_to_int(value: Any, formats: Sequence[str]) -> int | None:
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
    elif not math.isfinite(value):
        return None
    return _int_passthrough(int(round(value)), formats)


def _text_to_int(value: Any, formats: Sequence[str]) -> int | None:
    return parse_int_text(display_text(value))


def _number_to_decimal(value: Any, formats: Sequence[str]) -> Decimal | None:
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        number = Decimal(repr(value))
    else:
        number = Decimal(value)
    if not number.is_finite() or abs(number) >= DECIMAL_LIMIT:
        return None
    return number


def _text_to_decimal(value: Any, formats: Sequence[str]) -> Decimal | None:
    number = parse_decimal_text(display_text(value))
    if number is None or abs(number) >= DECIMAL_LIMIT:
        return None
    return number


def _bool_passthrough(value: Any, formats: Sequence[str]) -> bool:
    return value


def _to_bool(value: Any, formats: Sequence[str]) -> bool | None:
    return parse_bool_text(display_text(value))


Converter = Callable[[Any, Sequence[str]], Any]

_CONVERTERS: dict[tuple[CellKind, ParamType], Converter] = {
    # datetime target
    (CellKind.DATETIME, ParamType.DATETIME): _datetime_passthrough,
    (CellKind.INTEGER, ParamType.DATETIME): _number_to_datetime,
    (CellKind.FLOAT, ParamType.DATETIME): _number_to_datetime,
    (CellKind.TEXT, ParamType.DATETIME): _text_to_datetime,
    # integer target
    (CellKind.INTEGER, ParamType.INTEGER): _int_passthrough,
    (CellKind.FLOAT, ParamType.INTEGER): _number_to_int,
    (CellKind.TEXT, ParamType.INTEGER): _text_to_int,
    # decimal target
    (CellKind.INTEGER, ParamType.DECIMAL): _number_to_decimal,
    (CellKind.FLOAT, ParamType.DECIMAL): _number_to_decimal,
    (CellKind.TEXT, ParamType.DECIMAL): _text_to_decimal,
    # boolean target
    (CellKind.BOOL, ParamType.BOOLEAN): _bool_passthrough,
    (CellKind.INTEGER, ParamType.BOOLEAN): _to_bool,
    (CellKind.FLOAT, ParamType.BOOLEAN): _to_bool,
    (CellKind.TEXT, ParamType.BOOLEAN): _to_bool,
    (CellKind.DATETIME, ParamType.BOOLEAN): _to_bool,
    # string target
    (CellKind.TEXT, ParamType.STRING): _to_string,
    (CellKind.INTEGER, ParamType.STRING): _to_string,
    (CellKind.FLOAT, ParamType.STRING): _to_string,
    (CellKind.BOOL, ParamType.STRING): _to_string,
    (CellKind.DATETIME, ParamType.STRING): _to_string,
}


def convert_cell(
    value: Any,
    target: ParamType,
    date_formats: Sequence[str] = DEFAULT_DATE_FORMATS,
) -> Any:
    """Convert a raw cell value into the native type *target* expects.

    Returns ``None`` for nulls, blank strings, pairs with no registered
    converter (e.g. a boolean into a date column) and values that fail to
    convert.
    """
    kind = cell_kind(value)
    if kind is CellKind.NULL or is_blank(value):
        return None

    converter = _CONVERTERS.get((kind, ParamType(target)))
    if converter is None:
        return None
    try:
        return converter(value, date_formats)
    except (ValueError, TypeError, ArithmeticError) as exc:
        logger.debug(
            "Conversion %s -> %s failed: %s", kind.value, target, type(exc).__name__
        )
        return None


_PARAM_TYPES: dict[str, ParamType] = {
    "bit": ParamType.BOOLEAN,
    "boolean": ParamType.BOOLEAN,
    "int": ParamType.INTEGER,
    "integer": ParamType.INTEGER,
    "bigint": ParamType.INTEGER,
    "smallint": ParamType.INTEGER,
    "tinyint": ParamType.INTEGER,
    "decimal": ParamType.DECIMAL,
    "numeric": ParamType.DECIMAL,
    "money": ParamType.DECIMAL,
    "float": ParamType.DECIMAL,
    "real": ParamType.DECIMAL,
    "datetime2": ParamType.DATETIME,
    "datetime": ParamType.DATETIME,
    "smalldatetime": ParamType.DATETIME,
    "date": ParamType.DATETIME,
}


def param_type_for(sql_type: str) -> ParamType:
    """Map a declared SQL type such as ``"decimal(18,2)"`` to a ParamType."""
    base = sql_type.split("(", 1)[0].strip().lower()
    return _PARAM_TYPES.get(base, ParamType.STRING)
