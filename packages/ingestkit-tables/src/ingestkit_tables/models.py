"""Pydantic data models for ingestkit-tables.

This module defines the data model layer shared by the reader, the schema
analyzer, the materializer, and the router: the deterministic ``IngestKey``,
the reader's ``SheetData`` artifact, per-column analysis and schema models,
the persisted ``TableDescriptor``, and the caller-facing result models.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from ingestkit_tables.errors import IngestError


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


class IngestKey(BaseModel):
    """Deterministic key for deduplication.

    Combines content hash, source URI, parser version, and optional tenant ID
    into a single SHA-256 digest that callers can use to detect duplicate
    uploads of the same file.
    """

    content_hash: str
    source_uri: str
    parser_version: str
    tenant_id: str | None = None

    @property
    def key(self) -> str:
        """Deterministic string key for dedup lookups."""
        parts = [self.content_hash, self.source_uri, self.parser_version]
        if self.tenant_id:
            parts.append(self.tenant_id)
        return hashlib.sha256("|".join(parts).encode()).hexdigest()


# ---------------------------------------------------------------------------
# Reader artifact
# ---------------------------------------------------------------------------


class SheetData(BaseModel):
    """Header row and data rows read from one worksheet.

    Cell values keep their native scalar type: ``None``, ``str``, ``int``,
    ``float``, ``bool`` or ``datetime``.  Rows may be shorter than
    ``headers``; missing trailing cells are treated as nulls downstream.
    """

    sheet_name: str
    sheet_index: int
    headers: list[str] = []
    rows: list[list[Any]] = []
    warnings: list[IngestError] = []

    @property
    def is_empty(self) -> bool:
        return not self.headers


# ---------------------------------------------------------------------------
# Schema analysis
# ---------------------------------------------------------------------------


class ColumnTypeAnalysis(BaseModel):
    """Inferred SQL type for one column with the counts behind it."""

    column_name: str
    sql_type: str
    confidence: float
    total_count: int
    non_null_count: int
    null_count: int
    bool_count: int = 0
    date_count: int = 0
    int_count: int = 0
    decimal_count: int = 0
    string_count: int = 0
    max_length: int = 0
    name_hint_applied: bool = False


class ColumnSpec(BaseModel):
    """A physical column of a dynamic table (identity column excluded)."""

    name: str
    sql_type: str
    source_header: str | None = None


class MaterializeResult(BaseModel):
    """Outcome of one materializer run."""

    table_name: str
    created: bool
    columns: list[ColumnSpec]
    rows_inserted: int
    cells_nulled: int = 0
    batches: int = 0
    warnings: list[IngestError] = []


class TableSnapshot(BaseModel):
    """Read-back view of a dynamic table.

    ``rows`` holds one page (at most the read-back limit) starting after
    ``offset`` rows, in identity order, with values aligned to ``columns``.
    SQL NULL is surfaced as ``None``.  ``truncated`` is True when more rows
    follow the page.
    """

    table_name: str
    columns: list[str]
    rows: list[list[Any]]
    total_rows: int
    offset: int = 0
    truncated: bool = False


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class TableDescriptor(BaseModel):
    """Persisted bookkeeping row for one dynamic table."""

    table_name: str
    file_name: str | None = None
    description: str | None = None
    uploaded_by: str | None = None
    upload_date: datetime
    processed_date: datetime | None = None
    row_count: int = 0
    column_count: int = 0
    is_processed: bool = False


# ---------------------------------------------------------------------------
# Caller-facing results
# ---------------------------------------------------------------------------


class AnalysisResult(BaseModel):
    """Side-effect-free preview of how a sheet would be materialized."""

    file_name: str
    sheet_name: str | None = None
    sheet_names: list[str] = []
    headers: list[str] = []
    column_letters: list[str] = []
    clean_names: list[str] = []
    columns: list[ColumnTypeAnalysis] = []
    preview_rows: list[list[Any]] = []
    total_rows: int = 0
    warnings: list[str] = []
    errors: list[str] = []
    error_details: list[IngestError] = []


class IngestionResult(BaseModel):
    """Final result returned after ingesting a spreadsheet."""

    success: bool
    message: str
    file_name: str
    sheet_name: str | None = None

    table_name: str | None = None
    table_created: bool = False
    rows_inserted: int = 0
    total_rows: int = 0
    column_count: int = 0
    columns: list[ColumnTypeAnalysis] = []
    column_names: list[str] = []
    cells_nulled: int = 0

    ingest_key: str | None = None
    ingest_run_id: str

    errors: list[str] = []
    warnings: list[str] = []
    error_details: list[IngestError] = []

    processing_time_seconds: float
