"""Normalized error codes and structured error model for the ingestkit-tables pipeline.

``IngestError`` is a Pydantic model (data structure), not a Python exception.
To raise errors in control flow, use ``TableIngestException`` which wraps the
model and exposes its fields as properties.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Normalized error codes for the ingestkit-tables pipeline.

    Codes prefixed with ``E_`` are errors; codes prefixed with ``W_`` are
    non-fatal warnings.  Values equal their names so they are stable strings
    suitable for metrics and alerting.
    """

    # Input rejection
    E_SECURITY_BAD_EXTENSION = "E_SECURITY_BAD_EXTENSION"
    E_SECURITY_TOO_LARGE = "E_SECURITY_TOO_LARGE"

    # Parse errors
    E_PARSE_EMPTY = "E_PARSE_EMPTY"
    E_PARSE_CORRUPT = "E_PARSE_CORRUPT"
    E_PARSE_PASSWORD = "E_PARSE_PASSWORD"
    E_PARSE_SHEET_INDEX = "E_PARSE_SHEET_INDEX"

    # Materialization errors
    E_TABLE_NAME_INVALID = "E_TABLE_NAME_INVALID"
    E_SCHEMA_CONFLICT = "E_SCHEMA_CONFLICT"
    E_DDL_FAILED = "E_DDL_FAILED"
    E_INSERT_FAILED = "E_INSERT_FAILED"
    E_TABLE_NOT_FOUND = "E_TABLE_NOT_FOUND"
    E_COLUMN_NOT_FOUND = "E_COLUMN_NOT_FOUND"

    # Backend errors
    E_BACKEND_DB_CONNECT = "E_BACKEND_DB_CONNECT"
    E_BACKEND_DB_TIMEOUT = "E_BACKEND_DB_TIMEOUT"

    # Warnings (non-fatal)
    W_SHEET_EMPTY = "W_SHEET_EMPTY"
    W_ROWS_PARTIAL = "W_ROWS_PARTIAL"
    W_COLUMN_COUNT_MISMATCH = "W_COLUMN_COUNT_MISMATCH"
    W_CELLS_NULLED = "W_CELLS_NULLED"
    W_LARGE_FILE = "W_LARGE_FILE"


class IngestError(BaseModel):
    """Structured error with code, message, and context.

    Carries an ``ErrorCode``, a human-readable message, and optional context
    about which sheet, table, and processing stage produced it.
    """

    code: ErrorCode
    message: str
    stage: str | None = None
    recoverable: bool = False
    sheet_name: str | None = None
    table_name: str | None = None


class TableIngestException(Exception):
    """Raisable exception wrapping an ``IngestError`` data model.

    The structured error is available as the ``.error`` attribute for
    inspection and serialization.
    """

    def __init__(self, **kwargs: object) -> None:
        self.error = IngestError(**kwargs)  # type: ignore[arg-type]
        super().__init__(self.error.message)

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def stage(self) -> str | None:
        return self.error.stage

    @property
    def recoverable(self) -> bool:
        return self.error.recoverable


class InsertAbortedError(TableIngestException):
    """Row insertion stopped part-way through a load.

    Batches committed before the failing one stay in the table;
    ``rows_committed`` reports how many.  ``table_created`` is True when the
    same run created the table.
    """

    def __init__(
        self,
        rows_committed: int = 0,
        table_created: bool = False,
        **kwargs: object,
    ) -> None:
        super().__init__(**kwargs)
        self.rows_committed = rows_committed
        self.table_created = table_created
