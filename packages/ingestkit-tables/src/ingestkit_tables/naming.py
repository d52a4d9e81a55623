"""Header-to-identifier naming rules.

Turns free-text spreadsheet headers (mostly Turkish business terms) into
unique, SQL-legal column identifiers, and resolves the physical name of a
dynamic table from a requested name or the uploaded file name.
"""

from __future__ import annotations

import os
import re
import unicodedata
from collections.abc import Iterable

from ingestkit_tables.config import TableNamePolicy
from ingestkit_tables.errors import ErrorCode, TableIngestException

MAX_IDENTIFIER_LENGTH = 100

# SQL Server's sysname limit; exact-policy table names are not cleaned.
MAX_TABLE_NAME_LENGTH = 128

_TURKISH = str.maketrans("çÇğĞıİöÖşŞüÜ", "cCgGiIoOsSuU")

_WHITESPACE_RE = re.compile(r"\s+")
_ILLEGAL_RE = re.compile(r"[^A-Za-z0-9_]")
_UNDERSCORES_RE = re.compile(r"_+")
_LEGAL_START_RE = re.compile(r"[A-Za-z_]")


def transliterate(text: str) -> str:
    """Map Turkish letters to ASCII and drop remaining combining accents."""
    text = text.translate(_TURKISH)
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def clean_name(raw: str | None, max_length: int = MAX_IDENTIFIER_LENGTH) -> str:
    """Clean a raw header for use as a DB identifier.

    Rules:
    1. Trim and transliterate Turkish letters (and other accents) to ASCII
    2. Replace whitespace runs, then any non ``[A-Za-z0-9_]`` character, with ``_``
    3. Collapse consecutive underscores, strip leading/trailing underscores
    4. Prefix ``Col_`` when the result starts with a digit
    5. ``Column_1`` when nothing is left
    6. Truncate to *max_length*

    The result is a fixed point: ``clean_name(clean_name(x)) == clean_name(x)``.
    """
    name = transliterate((raw or "").strip())
    name = _WHITESPACE_RE.sub("_", name)
    name = _ILLEGAL_RE.sub("_", name)
    name = _UNDERSCORES_RE.sub("_", name).strip("_")

    if name and name[0].isdigit():
        name = f"Col_{name}"
    if not name:
        name = "Column_1"
    if not _LEGAL_START_RE.match(name):
        name = f"Col_{name}"

    # Truncation can expose a trailing underscore.
    return name[:max_length].rstrip("_")


def unique_name(
    raw: str | None,
    used_names: set[str],
    max_length: int = MAX_IDENTIFIER_LENGTH,
) -> str:
    """Clean *raw* and make it unique against *used_names*.

    Collisions are compared case-insensitively and resolved by appending
    ``_1``, ``_2``, ... while keeping the total length within *max_length*.
    The chosen name is added to *used_names*.
    """
    base = clean_name(raw, max_length)
    taken = {n.casefold() for n in used_names}

    candidate = base
    counter = 0
    while candidate.casefold() in taken:
        counter += 1
        suffix = f"_{counter}"
        candidate = base[: max_length - len(suffix)].rstrip("_") + suffix

    used_names.add(candidate)
    return candidate


def clean_headers(
    headers: Iterable[str | None],
    reserved: Iterable[str] = ("Id",),
    max_length: int = MAX_IDENTIFIER_LENGTH,
) -> list[str]:
    """Return clean, unique names for *headers* in header order.

    Names in *reserved* (the identity column) are never handed out.
    """
    used: set[str] = set(reserved)
    return [unique_name(h, used, max_length) for h in headers]


def column_letter(index: int) -> str:
    """Spreadsheet column letter for a 0-based index (0 -> A, 26 -> AA)."""
    letters = ""
    while index >= 0:
        letters = chr(ord("A") + index % 26) + letters
        index = index // 26 - 1
    return letters


def resolve_table_name(
    requested: str | None,
    file_name: str,
    policy: TableNamePolicy = TableNamePolicy.NORMALIZED,
    max_length: int = MAX_IDENTIFIER_LENGTH,
) -> str:
    """Resolve the physical table name for an upload.

    Without a requested name the file name's stem is cleaned, whatever the
    policy.  With one, ``normalized`` cleans it like a column header so two
    uploads whose names clean to the same identifier land in the same
    table; ``exact`` keeps it verbatim (trimmed).

    Raises:
        TableIngestException: ``E_TABLE_NAME_INVALID`` when an exact name
            is too long.
    """
    if requested is None or not requested.strip():
        stem = os.path.splitext(os.path.basename(file_name))[0]
        return clean_name(stem, max_length)

    if TableNamePolicy(policy) is TableNamePolicy.NORMALIZED:
        return clean_name(requested, max_length)

    name = requested.strip()
    if len(name) > MAX_TABLE_NAME_LENGTH:
        raise TableIngestException(
            code=ErrorCode.E_TABLE_NAME_INVALID,
            message=(
                f"Table name is {len(name)} characters long; "
                f"the limit is {MAX_TABLE_NAME_LENGTH}"
            ),
            stage="naming",
        )
    return name
