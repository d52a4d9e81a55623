"""SQLite backends for the dynamic-table and descriptor-store protocols.

Concrete implementations backed by Python's built-in ``sqlite3`` module.
Suitable for local / single-node deployments and testing.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from ingestkit_tables import statements
from ingestkit_tables.conversion import ParamType, param_type_for
from ingestkit_tables.models import TableDescriptor

logger = logging.getLogger("ingestkit_tables")


def _adapt(value: Any) -> Any:
    """Bind value for sqlite3, which has no native decimal/datetime/bool."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat(" ")
    return value


def _restore(value: Any, param_type: ParamType) -> Any:
    """Undo :func:`_adapt` on read-back using the column's declared type."""
    if value is None:
        return None
    if param_type is ParamType.BOOLEAN and isinstance(value, int):
        return bool(value)
    if param_type is ParamType.DECIMAL and isinstance(value, (int, float)):
        return Decimal(str(value))
    if param_type is ParamType.DATETIME and isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class SQLiteDynamicDB:
    """SQLite-backed host for dynamic tables.

    Satisfies :class:`~ingestkit_tables.protocols.DynamicTableBackend` via
    structural subtyping (no inheritance required).  The connection may be
    used from worker threads; access is serialized by an internal lock.

    Parameters
    ----------
    db_path:
        Filesystem path or ``":memory:"`` for an in-memory database.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise ConnectionError(
                f"Failed to connect to SQLite database at {db_path}: {exc}"
            ) from exc

    @property
    def dialect(self) -> str:
        return statements.SQLITE

    # ------------------------------------------------------------------
    # Protocol methods
    # ------------------------------------------------------------------

    def table_exists(self, table_name: str) -> bool:
        """Return True if the table exists.  Names compare case-insensitively."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT COUNT(*) FROM sqlite_master "
                "WHERE type='table' AND name = ? COLLATE NOCASE",
                (table_name,),
            )
            return cursor.fetchone()[0] > 0

    def get_columns(self, table_name: str) -> list[tuple[str, str]]:
        """Return ``(name, declared_type)`` pairs via ``PRAGMA table_info``."""
        with self._lock:
            cursor = self._conn.execute(
                f"PRAGMA table_info({statements.quote_identifier(table_name)})"
            )
            rows = cursor.fetchall()
        # PRAGMA table_info returns: (cid, name, type, notnull, dflt_value, pk)
        return [(row[1], row[2]) for row in sorted(rows, key=lambda r: r[0])]

    def execute_ddl(self, sql: str) -> None:
        """Execute one DDL statement.

        Raises
        ------
        RuntimeError
            If the statement fails.
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(sql)
            except sqlite3.Error as exc:
                raise RuntimeError(f"DDL failed: {exc}") from exc

    def insert_rows(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        """Insert *rows* in one transaction; nothing is kept if any row fails.

        Raises
        ------
        RuntimeError
            If a row cannot be inserted.
        """
        params = [tuple(_adapt(v) for v in row) for row in rows]
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(sql, params)
            except sqlite3.Error as exc:
                raise RuntimeError(f"Insert failed: {exc}") from exc
        return len(params)

    def execute_statement(self, sql: str, params: Sequence[Any]) -> int:
        """Execute one UPDATE or DELETE in its own transaction.

        Raises
        ------
        RuntimeError
            If the statement fails.
        """
        with self._lock:
            try:
                with self._conn:
                    cursor = self._conn.execute(sql, tuple(_adapt(v) for v in params))
            except sqlite3.Error as exc:
                raise RuntimeError(f"Statement failed: {exc}") from exc
            return cursor.rowcount

    def fetch_rows(
        self, table_name: str, limit: int, identity: str = "Id", offset: int = 0
    ) -> tuple[list[str], list[list[Any]]]:
        """Return column names and up to *limit* rows after *offset*, by identity."""
        types = [param_type_for(t or "") for _, t in self.get_columns(table_name)]
        sql = statements.select_sql(
            table_name, limit, statements.SQLITE, identity, offset
        )
        with self._lock:
            try:
                cursor = self._conn.execute(sql)
            except sqlite3.Error as exc:
                raise RuntimeError(
                    f"Failed to read table '{table_name}': {exc}"
                ) from exc
            names = [d[0] for d in cursor.description]
            raw_rows = cursor.fetchall()
        return names, [
            [_restore(v, t) for v, t in zip(row, types)] for row in raw_rows
        ]

    def count_rows(self, table_name: str) -> int:
        with self._lock:
            try:
                cursor = self._conn.execute(statements.count_sql(table_name))
            except sqlite3.Error as exc:
                raise RuntimeError(
                    f"Failed to count rows of '{table_name}': {exc}"
                ) from exc
            return cursor.fetchone()[0]

    def drop_table(self, table_name: str) -> None:
        """Drop a table by name (no-op if it does not exist)."""
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(statements.drop_table_sql(table_name))
            except sqlite3.Error as exc:
                raise RuntimeError(
                    f"Failed to drop table '{table_name}': {exc}"
                ) from exc

    def get_connection_uri(self) -> str:
        """Return the database connection URI."""
        return f"sqlite:///{self._db_path}"

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._conn.close()


_DESCRIPTOR_TABLE = "_ingestkit_table_descriptors"

_DESCRIPTOR_COLUMNS = (
    "table_name",
    "file_name",
    "description",
    "uploaded_by",
    "upload_date",
    "processed_date",
    "row_count",
    "column_count",
    "is_processed",
)


class SQLiteDescriptorStore:
    """SQLite-backed :class:`~ingestkit_tables.protocols.TableDescriptorStore`.

    Descriptors live in one bookkeeping table keyed by a case-insensitive
    unique table name.  Timestamps are stored as ISO-8601 text.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            with self._conn:
                self._conn.execute(
                    f"CREATE TABLE IF NOT EXISTS [{_DESCRIPTOR_TABLE}] ("
                    "table_name TEXT NOT NULL UNIQUE COLLATE NOCASE, "
                    "file_name TEXT, "
                    "description TEXT, "
                    "uploaded_by TEXT, "
                    "upload_date TEXT NOT NULL, "
                    "processed_date TEXT, "
                    "row_count INTEGER NOT NULL DEFAULT 0, "
                    "column_count INTEGER NOT NULL DEFAULT 0, "
                    "is_processed INTEGER NOT NULL DEFAULT 0)"
                )
        except sqlite3.Error as exc:
            raise ConnectionError(
                f"Failed to open descriptor store at {db_path}: {exc}"
            ) from exc

    def get(self, table_name: str) -> TableDescriptor | None:
        with self._lock:
            cursor = self._conn.execute(
                f"SELECT {', '.join(_DESCRIPTOR_COLUMNS)} FROM [{_DESCRIPTOR_TABLE}] "
                "WHERE table_name = ? COLLATE NOCASE",
                (table_name,),
            )
            row = cursor.fetchone()
        return self._to_descriptor(row) if row else None

    def save(self, descriptor: TableDescriptor) -> None:
        """Insert or update the descriptor keyed by its table name."""
        values = (
            descriptor.table_name,
            descriptor.file_name,
            descriptor.description,
            descriptor.uploaded_by,
            descriptor.upload_date.isoformat(),
            descriptor.processed_date.isoformat() if descriptor.processed_date else None,
            descriptor.row_count,
            descriptor.column_count,
            int(descriptor.is_processed),
        )
        updates = ", ".join(f"{c} = excluded.{c}" for c in _DESCRIPTOR_COLUMNS[1:])
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        f"INSERT INTO [{_DESCRIPTOR_TABLE}] "
                        f"({', '.join(_DESCRIPTOR_COLUMNS)}) "
                        f"VALUES ({', '.join('?' for _ in _DESCRIPTOR_COLUMNS)}) "
                        f"ON CONFLICT(table_name) DO UPDATE SET {updates}",
                        values,
                    )
            except sqlite3.Error as exc:
                raise RuntimeError(
                    f"Failed to save descriptor for '{descriptor.table_name}': {exc}"
                ) from exc

    def delete(self, table_name: str) -> bool:
        with self._lock:
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        f"DELETE FROM [{_DESCRIPTOR_TABLE}] "
                        "WHERE table_name = ? COLLATE NOCASE",
                        (table_name,),
                    )
            except sqlite3.Error as exc:
                raise RuntimeError(
                    f"Failed to delete descriptor for '{table_name}': {exc}"
                ) from exc
        return cursor.rowcount > 0

    def list_all(self) -> list[TableDescriptor]:
        with self._lock:
            cursor = self._conn.execute(
                f"SELECT {', '.join(_DESCRIPTOR_COLUMNS)} FROM [{_DESCRIPTOR_TABLE}] "
                "ORDER BY upload_date DESC"
            )
            rows = cursor.fetchall()
        return [self._to_descriptor(row) for row in rows]

    @staticmethod
    def _to_descriptor(row: Sequence[Any]) -> TableDescriptor:
        data = dict(zip(_DESCRIPTOR_COLUMNS, row))
        data["is_processed"] = bool(data["is_processed"])
        return TableDescriptor(**data)

    def close(self) -> None:
        self._conn.close()
