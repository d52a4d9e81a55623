"""Tests for ingestkit_tables.errors."""

from __future__ import annotations

import pytest

from ingestkit_tables.errors import (
    ErrorCode,
    IngestError,
    InsertAbortedError,
    TableIngestException,
)


class TestErrorCode:
    def test_values_equal_names(self):
        for code in ErrorCode:
            assert code.value == code.name

    def test_prefixes(self):
        for code in ErrorCode:
            assert code.value.startswith(("E_", "W_"))

    def test_is_str(self):
        assert ErrorCode.E_PARSE_CORRUPT == "E_PARSE_CORRUPT"


class TestIngestError:
    def test_defaults(self):
        err = IngestError(code=ErrorCode.E_DDL_FAILED, message="boom")
        assert err.stage is None
        assert err.recoverable is False
        assert err.sheet_name is None
        assert err.table_name is None

    def test_serializes(self):
        err = IngestError(
            code=ErrorCode.W_CELLS_NULLED, message="3 cells", table_name="T"
        )
        data = err.model_dump()
        assert data["code"] == "W_CELLS_NULLED"
        assert data["table_name"] == "T"


class TestTableIngestException:
    def test_wraps_model(self):
        exc = TableIngestException(
            code=ErrorCode.E_SCHEMA_CONFLICT,
            message="columns differ",
            stage="materialize",
        )
        assert isinstance(exc.error, IngestError)
        assert exc.code == ErrorCode.E_SCHEMA_CONFLICT
        assert exc.message == "columns differ"
        assert exc.stage == "materialize"
        assert exc.recoverable is False
        assert str(exc) == "columns differ"

    def test_raisable(self):
        with pytest.raises(TableIngestException) as exc_info:
            raise TableIngestException(code=ErrorCode.E_PARSE_EMPTY, message="empty")
        assert exc_info.value.code == ErrorCode.E_PARSE_EMPTY


class TestInsertAbortedError:
    def test_rows_committed(self):
        exc = InsertAbortedError(
            rows_committed=2000, code=ErrorCode.E_INSERT_FAILED, message="row 2001"
        )
        assert exc.rows_committed == 2000
        assert exc.code == ErrorCode.E_INSERT_FAILED
        assert isinstance(exc, TableIngestException)

    def test_default_zero(self):
        exc = InsertAbortedError(code=ErrorCode.E_INSERT_FAILED, message="x")
        assert exc.rows_committed == 0
