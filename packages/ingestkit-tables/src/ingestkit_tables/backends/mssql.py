"""SQL Server backends built on a SQLAlchemy engine (``mssql+pyodbc``).

Statements are sent with ``exec_driver_sql`` so bracket-quoted identifiers
and qmark placeholders reach pyodbc untouched.  Catalog lookups go through
``INFORMATION_SCHEMA`` in the caller's default schema.
"""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from ingestkit_tables import statements
from ingestkit_tables.models import TableDescriptor

logger = logging.getLogger("ingestkit_tables")

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


def build_connection_uri(
    server: str,
    database: str,
    username: str | None = None,
    password: str | None = None,
    driver: str = DEFAULT_ODBC_DRIVER,
    trust_server_certificate: bool = True,
) -> str:
    """Build an ``mssql+pyodbc`` URI from ODBC connection-string parts.

    Without *username* the connection uses Windows authentication
    (``Trusted_Connection=yes``).
    """
    parts = [
        f"Driver={{{driver}}}",
        f"Server={server}",
        f"Database={database}",
    ]
    if username:
        parts.append(f"UID={username}")
        parts.append(f"PWD={password or ''}")
    else:
        parts.append("Trusted_Connection=yes")
    parts.append("Encrypt=yes")
    if trust_server_certificate:
        parts.append("TrustServerCertificate=yes")
    odbc = ";".join(parts) + ";"
    return f"mssql+pyodbc:///?odbc_connect={urllib.parse.quote_plus(odbc)}"


def _column_type(
    data_type: str,
    max_length: int | None,
    precision: int | None,
    scale: int | None,
) -> str:
    """Rebuild a declared type from ``INFORMATION_SCHEMA.COLUMNS`` fields."""
    data_type = data_type.lower()
    if data_type in ("nvarchar", "varchar", "nchar", "char"):
        if max_length == -1:
            return f"{data_type}(max)"
        if max_length:
            return f"{data_type}({max_length})"
    if data_type in ("decimal", "numeric") and precision is not None:
        return f"{data_type}({precision},{scale or 0})"
    return data_type


class _EngineMixin:
    """Connection handling shared by the SQL Server backends."""

    _engine: Engine

    def _connect(self) -> Connection:
        try:
            return self._engine.connect()
        except sa_exc.TimeoutError as exc:
            raise TimeoutError(f"Timed out connecting to SQL Server: {exc}") from exc
        except sa_exc.SQLAlchemyError as exc:
            raise ConnectionError(f"Failed to connect to SQL Server: {exc}") from exc

    def get_connection_uri(self) -> str:
        """Return the database connection URI with the password masked."""
        return self._engine.url.render_as_string(hide_password=True)

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self._engine.dispose()


def _make_engine(engine: Engine | None, connection_uri: str | None) -> Engine:
    if engine is not None:
        return engine
    if not connection_uri:
        raise ValueError("Either engine or connection_uri is required")
    try:
        return create_engine(connection_uri, pool_pre_ping=True)
    except ImportError as exc:
        raise ConnectionError(
            f"SQL Server driver not available (install the 'mssql' extra): {exc}"
        ) from exc
    except sa_exc.ArgumentError as exc:
        raise ConnectionError(f"Invalid SQL Server connection URI: {exc}") from exc


class MSSQLDynamicDB(_EngineMixin):
    """SQL Server host for dynamic tables.

    Satisfies :class:`~ingestkit_tables.protocols.DynamicTableBackend`.
    Pass an existing SQLAlchemy *engine*, or a *connection_uri* from which
    one is created.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        connection_uri: str | None = None,
    ) -> None:
        self._engine = _make_engine(engine, connection_uri)

    @property
    def dialect(self) -> str:
        return statements.MSSQL

    @property
    def engine(self) -> Engine:
        return self._engine

    def table_exists(self, table_name: str) -> bool:
        with self._connect() as conn:
            try:
                count = conn.execute(
                    text(
                        "SELECT COUNT(*) FROM INFORMATION_SCHEMA.TABLES "
                        "WHERE TABLE_SCHEMA = SCHEMA_NAME() AND TABLE_NAME = :name"
                    ),
                    {"name": table_name},
                ).scalar()
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to look up table '{table_name}': {exc}"
                ) from exc
        return bool(count)

    def get_columns(self, table_name: str) -> list[tuple[str, str]]:
        with self._connect() as conn:
            try:
                result = conn.execute(
                    text(
                        "SELECT COLUMN_NAME, DATA_TYPE, CHARACTER_MAXIMUM_LENGTH, "
                        "NUMERIC_PRECISION, NUMERIC_SCALE "
                        "FROM INFORMATION_SCHEMA.COLUMNS "
                        "WHERE TABLE_SCHEMA = SCHEMA_NAME() AND TABLE_NAME = :name "
                        "ORDER BY ORDINAL_POSITION"
                    ),
                    {"name": table_name},
                )
                rows = result.fetchall()
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to read columns of '{table_name}': {exc}"
                ) from exc
        return [(row[0], _column_type(row[1], row[2], row[3], row[4])) for row in rows]

    def execute_ddl(self, sql: str) -> None:
        with self._connect() as conn:
            try:
                with conn.begin():
                    conn.exec_driver_sql(sql)
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(f"DDL failed: {exc}") from exc

    def insert_rows(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        params = [tuple(row) for row in rows]
        if not params:
            return 0
        with self._connect() as conn:
            try:
                with conn.begin():
                    conn.exec_driver_sql(sql, params)
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(f"Insert failed: {exc}") from exc
        return len(params)

    def execute_statement(self, sql: str, params: Sequence[Any]) -> int:
        with self._connect() as conn:
            try:
                with conn.begin():
                    result = conn.exec_driver_sql(sql, tuple(params))
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(f"Statement failed: {exc}") from exc
        return result.rowcount

    def fetch_rows(
        self, table_name: str, limit: int, identity: str = "Id", offset: int = 0
    ) -> tuple[list[str], list[list[Any]]]:
        sql = statements.select_sql(
            table_name, limit, statements.MSSQL, identity, offset
        )
        with self._connect() as conn:
            try:
                result = conn.exec_driver_sql(sql)
                names = list(result.keys())
                rows = [list(row) for row in result.fetchall()]
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to read table '{table_name}': {exc}"
                ) from exc
        return names, rows

    def count_rows(self, table_name: str) -> int:
        with self._connect() as conn:
            try:
                return conn.exec_driver_sql(statements.count_sql(table_name)).scalar()
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to count rows of '{table_name}': {exc}"
                ) from exc

    def drop_table(self, table_name: str) -> None:
        with self._connect() as conn:
            try:
                with conn.begin():
                    conn.exec_driver_sql(statements.drop_table_sql(table_name))
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to drop table '{table_name}': {exc}"
                ) from exc


_DESCRIPTOR_TABLE = "DynamicTables"

_DESCRIPTOR_COLUMNS = (
    "TableName",
    "FileName",
    "Description",
    "UploadedBy",
    "UploadDate",
    "ProcessedDate",
    "RowCount",
    "ColumnCount",
    "IsProcessed",
)

_DESCRIPTOR_FIELDS = (
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


class MSSQLDescriptorStore(_EngineMixin):
    """SQL Server :class:`~ingestkit_tables.protocols.TableDescriptorStore`.

    Keeps descriptors in ``dbo.DynamicTables``, created on first use.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        connection_uri: str | None = None,
    ) -> None:
        self._engine = _make_engine(engine, connection_uri)
        self._ensure_table()

    def _ensure_table(self) -> None:
        ddl = (
            "IF NOT EXISTS (SELECT * FROM INFORMATION_SCHEMA.TABLES "
            f"WHERE TABLE_SCHEMA = SCHEMA_NAME() AND TABLE_NAME = N'{_DESCRIPTOR_TABLE}')\n"
            "BEGIN\n"
            f"    CREATE TABLE [{_DESCRIPTOR_TABLE}] (\n"
            "    [Id] INT IDENTITY(1,1) PRIMARY KEY,\n"
            "    [TableName] NVARCHAR(128) NOT NULL UNIQUE,\n"
            "    [FileName] NVARCHAR(255) NULL,\n"
            "    [Description] NVARCHAR(1000) NULL,\n"
            "    [UploadedBy] NVARCHAR(255) NULL,\n"
            "    [UploadDate] DATETIME2 NOT NULL,\n"
            "    [ProcessedDate] DATETIME2 NULL,\n"
            "    [RowCount] INT NOT NULL DEFAULT 0,\n"
            "    [ColumnCount] INT NOT NULL DEFAULT 0,\n"
            "    [IsProcessed] BIT NOT NULL DEFAULT 0\n"
            "    )\n"
            "END"
        )
        with self._connect() as conn:
            try:
                with conn.begin():
                    conn.exec_driver_sql(ddl)
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(f"Failed to create descriptor table: {exc}") from exc

    def _select(self) -> str:
        cols = ", ".join(f"[{c}]" for c in _DESCRIPTOR_COLUMNS)
        return f"SELECT {cols} FROM [{_DESCRIPTOR_TABLE}]"

    def get(self, table_name: str) -> TableDescriptor | None:
        with self._connect() as conn:
            try:
                row = conn.exec_driver_sql(
                    self._select() + " WHERE [TableName] = ?", (table_name,)
                ).fetchone()
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to read descriptor for '{table_name}': {exc}"
                ) from exc
        return TableDescriptor(**dict(zip(_DESCRIPTOR_FIELDS, row))) if row else None

    def save(self, descriptor: TableDescriptor) -> None:
        data = descriptor.model_dump()
        values = tuple(data[f] for f in _DESCRIPTOR_FIELDS)
        assignments = ", ".join(f"[{c}] = ?" for c in _DESCRIPTOR_COLUMNS[1:])
        cols = ", ".join(f"[{c}]" for c in _DESCRIPTOR_COLUMNS)
        marks = ", ".join("?" for _ in _DESCRIPTOR_COLUMNS)
        with self._connect() as conn:
            try:
                with conn.begin():
                    updated = conn.exec_driver_sql(
                        f"UPDATE [{_DESCRIPTOR_TABLE}] SET {assignments} "
                        "WHERE [TableName] = ?",
                        values[1:] + (descriptor.table_name,),
                    ).rowcount
                    if not updated:
                        conn.exec_driver_sql(
                            f"INSERT INTO [{_DESCRIPTOR_TABLE}] ({cols}) VALUES ({marks})",
                            values,
                        )
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to save descriptor for '{descriptor.table_name}': {exc}"
                ) from exc

    def delete(self, table_name: str) -> bool:
        with self._connect() as conn:
            try:
                with conn.begin():
                    deleted = conn.exec_driver_sql(
                        f"DELETE FROM [{_DESCRIPTOR_TABLE}] WHERE [TableName] = ?",
                        (table_name,),
                    ).rowcount
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(
                    f"Failed to delete descriptor for '{table_name}': {exc}"
                ) from exc
        return deleted > 0

    def list_all(self) -> list[TableDescriptor]:
        with self._connect() as conn:
            try:
                rows = conn.exec_driver_sql(
                    self._select() + " ORDER BY [UploadDate] DESC"
                ).fetchall()
            except sa_exc.SQLAlchemyError as exc:
                raise RuntimeError(f"Failed to list descriptors: {exc}") from exc
        return [TableDescriptor(**dict(zip(_DESCRIPTOR_FIELDS, row))) for row in rows]
