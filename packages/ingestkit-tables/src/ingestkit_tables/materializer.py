"""Dynamic table materializer.

Creates the physical table for an upload when it does not exist yet and
loads the rows into it.  One run walks these stages::

    CHECK_EXISTS -> FETCH_EXISTING_COLUMNS -> INSERT            (table exists)
    CHECK_EXISTS -> GENERATE_DDL -> CREATE_TABLE -> INSERT      (new table)

Rows go into an existing table strictly by position: the n-th value of each
row lands in the n-th stored column, whatever the headers say.  Callers
must keep column order stable across uploads to the same table, or turn on
``strict_schema_check`` to reject mismatching uploads.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from enum import Enum
from typing import Any

from ingestkit_tables import statements
from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.conversion import (
    ParamType,
    convert_cell,
    is_blank,
    param_type_for,
)
from ingestkit_tables.errors import (
    ErrorCode,
    IngestError,
    InsertAbortedError,
    TableIngestException,
)
from ingestkit_tables.models import (
    ColumnSpec,
    ColumnTypeAnalysis,
    MaterializeResult,
    TableSnapshot,
)
from ingestkit_tables.naming import clean_headers
from ingestkit_tables.protocols import DynamicTableBackend

logger = logging.getLogger("ingestkit_tables")


class Stage(str, Enum):
    """Stages of one materializer run."""

    CHECK_EXISTS = "check_exists"
    FETCH_EXISTING_COLUMNS = "fetch_existing_columns"
    GENERATE_DDL = "generate_ddl"
    CREATE_TABLE = "create_table"
    INSERT = "insert"
    DONE = "done"


_registry_lock = threading.Lock()
# Entries disappear once no thread holds or waits for the lock.
_table_locks: weakref.WeakValueDictionary[str, Any] = weakref.WeakValueDictionary()


@contextmanager
def table_lock(table_name: str) -> Iterator[None]:
    """Hold the process-wide lock for *table_name* (case-insensitive)."""
    key = table_name.casefold()
    with _registry_lock:
        lock = _table_locks.setdefault(key, threading.RLock())
    with lock:
        yield


class DynamicTableMaterializer:
    """Materialize analyzed sheet data as a dynamic table.

    Parameters
    ----------
    backend:
        Database hosting the dynamic tables.
    config:
        Pipeline configuration.  Uses defaults when *None*.
    """

    def __init__(
        self,
        backend: DynamicTableBackend,
        config: TableIngestConfig | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or TableIngestConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def materialize(
        self,
        table_name: str,
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        analyses: Sequence[ColumnTypeAnalysis],
    ) -> MaterializeResult:
        """Create the table if needed and insert every row.

        Args:
            table_name: Physical table name, already resolved.
            headers: Raw header texts in sheet order.
            rows: Data rows aligned positionally with *headers*.
            analyses: One inferred type per header.

        Returns:
            A ``MaterializeResult`` describing what was created and loaded.

        Raises:
            TableIngestException: ``E_SCHEMA_CONFLICT`` or ``E_DDL_FAILED``;
                nothing is inserted in either case.
            InsertAbortedError: A batch failed; ``rows_committed`` counts the
                rows of earlier batches, which stay in the table.
        """
        with table_lock(table_name):
            warnings: list[IngestError] = []

            self._enter(Stage.CHECK_EXISTS, table_name)
            exists = self._backend.table_exists(table_name)

            if exists:
                self._enter(Stage.FETCH_EXISTING_COLUMNS, table_name)
                columns = self.existing_columns(table_name)
                warnings.extend(self._check_alignment(table_name, headers, columns))
                created = False
            else:
                self._enter(Stage.GENERATE_DDL, table_name)
                columns = self.plan_columns(headers, analyses)
                ddl = statements.create_table_sql(
                    table_name,
                    columns,
                    self._backend.dialect,
                    self._config.identity_column,
                )
                self._enter(Stage.CREATE_TABLE, table_name)
                try:
                    self._backend.execute_ddl(ddl)
                except RuntimeError as exc:
                    raise TableIngestException(
                        code=ErrorCode.E_DDL_FAILED,
                        message=f"Failed to create table '{table_name}': {exc}",
                        stage=Stage.CREATE_TABLE.value,
                        table_name=table_name,
                    ) from exc
                logger.info(
                    "Created table %s with %d columns", table_name, len(columns)
                )
                created = True

            self._enter(Stage.INSERT, table_name)
            try:
                inserted, nulled, batches = self._insert(table_name, columns, rows)
            except InsertAbortedError as exc:
                exc.table_created = created
                raise

            if nulled:
                logger.warning(
                    "Table %s: %d cells could not be converted and were stored as NULL",
                    table_name,
                    nulled,
                )
                warnings.append(
                    IngestError(
                        code=ErrorCode.W_CELLS_NULLED,
                        message=(
                            f"{nulled} cells could not be converted to their "
                            "column type and were stored as NULL"
                        ),
                        stage=Stage.INSERT.value,
                        recoverable=True,
                        table_name=table_name,
                    )
                )

            self._enter(Stage.DONE, table_name)
            return MaterializeResult(
                table_name=table_name,
                created=created,
                columns=columns,
                rows_inserted=inserted,
                cells_nulled=nulled,
                batches=batches,
                warnings=warnings,
            )

    def plan_columns(
        self,
        headers: Sequence[str],
        analyses: Sequence[ColumnTypeAnalysis],
    ) -> list[ColumnSpec]:
        """Pair each header's clean, unique name with its inferred type."""
        names = clean_headers(
            headers,
            reserved=(self._config.identity_column,),
            max_length=self._config.max_identifier_length,
        )
        return [
            ColumnSpec(name=name, sql_type=analysis.sql_type, source_header=header)
            for name, header, analysis in zip(names, headers, analyses)
        ]

    def existing_columns(self, table_name: str) -> list[ColumnSpec]:
        """Stored columns of *table_name* in ordinal order, identity excluded."""
        identity = self._config.identity_column.casefold()
        return [
            ColumnSpec(name=name, sql_type=sql_type or "")
            for name, sql_type in self._backend.get_columns(table_name)
            if name.casefold() != identity
        ]

    def read_table(
        self, table_name: str, limit: int | None = None, offset: int = 0
    ) -> TableSnapshot:
        """Return one page of a dynamic table, NULLs as ``None``.

        Rows come in identity order starting after the first *offset* rows;
        *limit* defaults to ``config.read_back_limit``.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND``.
        """
        limit = self._config.read_back_limit if limit is None else limit
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must not be negative")
        self._require(table_name)
        columns, rows = self._backend.fetch_rows(
            table_name, limit, self._config.identity_column, offset
        )
        total = self._backend.count_rows(table_name)
        return TableSnapshot(
            table_name=table_name,
            columns=columns,
            rows=rows,
            total_rows=total,
            offset=offset,
            truncated=total > offset + len(rows),
        )

    def update_row(
        self, table_name: str, row_id: int, values: Mapping[str, Any]
    ) -> bool:
        """Overwrite some columns of the row whose identity is *row_id*.

        Column names match case-insensitively.  Each value goes through the
        same conversion as a loaded cell, so one that does not fit its
        column's type is stored as NULL.

        Returns:
            True if a row was updated, False if no row has that identity.

        Raises:
            ValueError: *values* is empty.
            TableIngestException: ``E_TABLE_NOT_FOUND``, or
                ``E_COLUMN_NOT_FOUND`` for an unknown or identity column.
        """
        if not values:
            raise ValueError("values must name at least one column")
        with table_lock(table_name):
            self._require(table_name)
            by_name = {c.name.casefold(): c for c in self.existing_columns(table_name)}
            targets: list[ColumnSpec] = []
            for name in values:
                column = by_name.get(name.casefold())
                if column is None:
                    raise TableIngestException(
                        code=ErrorCode.E_COLUMN_NOT_FOUND,
                        message=(
                            f"Table '{table_name}' has no updatable column '{name}'"
                        ),
                        stage="update",
                        table_name=table_name,
                    )
                targets.append(column)

            params: list[Any] = []
            for column, raw in zip(targets, values.values()):
                target = param_type_for(column.sql_type)
                value = convert_cell(raw, target, self._config.date_formats)
                if value is None and not is_blank(raw):
                    logger.warning(
                        "Table %s row %d: value for %s is not a valid %s; "
                        "storing NULL",
                        table_name,
                        row_id,
                        column.name,
                        column.sql_type,
                    )
                params.append(value)
            params.append(row_id)

            sql = statements.update_sql(
                table_name, [c.name for c in targets], self._config.identity_column
            )
            updated = self._backend.execute_statement(sql, params) > 0
            logger.debug("Table %s: row %d updated=%s", table_name, row_id, updated)
            return updated

    def delete_row(self, table_name: str, row_id: int) -> bool:
        """Delete the row whose identity is *row_id*.

        Returns:
            True if a row was deleted.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND``.
        """
        with table_lock(table_name):
            self._require(table_name)
            sql = statements.delete_row_sql(table_name, self._config.identity_column)
            deleted = self._backend.execute_statement(sql, [row_id]) > 0
            logger.debug("Table %s: row %d deleted=%s", table_name, row_id, deleted)
            return deleted

    def drop_table(self, table_name: str) -> None:
        """Drop the physical table.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND``.
        """
        with table_lock(table_name):
            self._require(table_name)
            self._backend.drop_table(table_name)
            logger.info("Dropped table %s", table_name)

    def count_rows(self, table_name: str) -> int:
        self._require(table_name)
        return self._backend.count_rows(table_name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _enter(stage: Stage, table_name: str) -> None:
        logger.debug("Materializer %s: %s", table_name, stage.value)

    def _require(self, table_name: str) -> None:
        if not self._backend.table_exists(table_name):
            raise TableIngestException(
                code=ErrorCode.E_TABLE_NOT_FOUND,
                message=f"Table '{table_name}' does not exist",
                stage="lookup",
                table_name=table_name,
            )

    def _check_alignment(
        self,
        table_name: str,
        headers: Sequence[str],
        columns: Sequence[ColumnSpec],
    ) -> list[IngestError]:
        """Compare an upload's headers with an existing table's columns."""
        expected = clean_headers(
            headers,
            reserved=(self._config.identity_column,),
            max_length=self._config.max_identifier_length,
        )
        stored = [c.name for c in columns]

        if self._config.strict_schema_check:
            if [n.casefold() for n in expected] != [n.casefold() for n in stored]:
                raise TableIngestException(
                    code=ErrorCode.E_SCHEMA_CONFLICT,
                    message=(
                        f"Upload columns {expected} do not match the columns "
                        f"of existing table '{table_name}': {stored}"
                    ),
                    stage=Stage.FETCH_EXISTING_COLUMNS.value,
                    table_name=table_name,
                )
            return []

        if len(expected) != len(stored):
            logger.warning(
                "Table %s has %d columns but the upload has %d; "
                "inserting by position",
                table_name,
                len(stored),
                len(expected),
            )
            return [
                IngestError(
                    code=ErrorCode.W_COLUMN_COUNT_MISMATCH,
                    message=(
                        f"Existing table has {len(stored)} columns, upload has "
                        f"{len(expected)}; values were inserted by position"
                    ),
                    stage=Stage.FETCH_EXISTING_COLUMNS.value,
                    recoverable=True,
                    table_name=table_name,
                )
            ]
        return []

    def _insert(
        self,
        table_name: str,
        columns: Sequence[ColumnSpec],
        rows: Sequence[Sequence[Any]],
    ) -> tuple[int, int, int]:
        """Convert and insert *rows*; one transaction per batch.

        Returns ``(rows_inserted, cells_nulled, batches)``.
        """
        if not columns or not rows:
            return 0, 0, 0

        sql = statements.insert_sql(table_name, [c.name for c in columns])
        param_types = [param_type_for(c.sql_type) for c in columns]
        batch_size = max(1, self._config.insert_batch_size)
        total_batches = (len(rows) + batch_size - 1) // batch_size

        inserted = 0
        nulled = 0
        for batch_no, start in enumerate(range(0, len(rows), batch_size), 1):
            batch = rows[start : start + batch_size]
            params = []
            for row in batch:
                values, lost = self._convert_row(row, param_types)
                params.append(values)
                nulled += lost
            try:
                inserted += self._backend.insert_rows(sql, params)
            except (RuntimeError, ConnectionError, TimeoutError) as exc:
                raise InsertAbortedError(
                    rows_committed=inserted,
                    code=ErrorCode.E_INSERT_FAILED,
                    message=(
                        f"Insert into '{table_name}' failed in batch "
                        f"{batch_no}/{total_batches} after {inserted} rows: {exc}"
                    ),
                    stage=Stage.INSERT.value,
                    table_name=table_name,
                ) from exc
            logger.debug(
                "Table %s: batch %d/%d committed (%d rows)",
                table_name,
                batch_no,
                total_batches,
                len(params),
            )
        return inserted, nulled, total_batches

    def _convert_row(
        self,
        row: Sequence[Any],
        param_types: Sequence[ParamType],
    ) -> tuple[list[Any], int]:
        """Convert one row by position.

        Values beyond the target columns are dropped; missing ones are NULL.
        Returns the converted values and how many non-blank cells became NULL.
        """
        values: list[Any] = []
        lost = 0
        for i, target in enumerate(param_types):
            raw = row[i] if i < len(row) else None
            value = convert_cell(raw, target, self._config.date_formats)
            if value is None and not is_blank(raw):
                lost += 1
                if self._config.log_sample_data:
                    logger.debug("Cell %r -> %s converted to NULL", raw, target.value)
                else:
                    logger.debug(
                        "Cell in column %d -> %s converted to NULL", i, target.value
                    )
            values.append(value)
        return values, lost
