"""SQL text for dynamic tables in the two supported dialects.

Identifiers are bracket-quoted in both dialects (SQLite accepts T-SQL
brackets).  Column types use the fixed vocabulary ``bit``, ``int``,
``decimal(18,2)``, ``datetime2`` and ``nvarchar(n|max)``; SQLite keeps the
declared names (they resolve to the usual type affinities) except
``nvarchar(max)``, which becomes ``TEXT``.
"""

from __future__ import annotations

from collections.abc import Sequence

from ingestkit_tables.models import ColumnSpec

MSSQL = "mssql"
SQLITE = "sqlite"


def quote_identifier(name: str) -> str:
    """Bracket-quote *name*, doubling any closing bracket."""
    return "[" + name.replace("]", "]]") + "]"


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_type(sql_type: str, dialect: str) -> str:
    rendered = sql_type.strip().upper()
    if dialect == SQLITE and rendered == "NVARCHAR(MAX)":
        return "TEXT"
    return rendered


def identity_column_ddl(identity: str, dialect: str) -> str:
    if dialect == SQLITE:
        return f"{quote_identifier(identity)} INTEGER PRIMARY KEY AUTOINCREMENT"
    return f"{quote_identifier(identity)} INT IDENTITY(1,1) PRIMARY KEY"


def create_table_sql(
    table_name: str,
    columns: Sequence[ColumnSpec],
    dialect: str,
    identity: str = "Id",
) -> str:
    """Guarded CREATE TABLE with an identity key and one column per ``ColumnSpec``.

    The existence check is repeated inside the statement so a concurrent
    creator cannot make it fail.
    """
    parts = [identity_column_ddl(identity, dialect)]
    parts.extend(
        f"{quote_identifier(col.name)} {render_type(col.sql_type, dialect)} NULL"
        for col in columns
    )
    body = ",\n    ".join(parts)
    table = quote_identifier(table_name)

    if dialect == SQLITE:
        return f"CREATE TABLE IF NOT EXISTS {table} (\n    {body}\n)"

    return (
        "IF NOT EXISTS (SELECT * FROM INFORMATION_SCHEMA.TABLES "
        "WHERE TABLE_SCHEMA = SCHEMA_NAME() "
        f"AND TABLE_NAME = N{quote_literal(table_name)})\n"
        f"BEGIN\n    CREATE TABLE {table} (\n    {body}\n    )\nEND"
    )


def insert_sql(table_name: str, column_names: Sequence[str]) -> str:
    """Single-row INSERT with one qmark placeholder per column."""
    cols = ", ".join(quote_identifier(c) for c in column_names)
    marks = ", ".join("?" for _ in column_names)
    return f"INSERT INTO {quote_identifier(table_name)} ({cols}) VALUES ({marks})"


def select_sql(
    table_name: str,
    limit: int,
    dialect: str,
    identity: str = "Id",
    offset: int = 0,
) -> str:
    """One page of rows in identity order, skipping the first *offset* rows."""
    table = quote_identifier(table_name)
    order = quote_identifier(identity)
    limit, offset = int(limit), int(offset)
    if dialect == SQLITE:
        sql = f"SELECT * FROM {table} ORDER BY {order} LIMIT {limit}"
        return f"{sql} OFFSET {offset}" if offset else sql
    if offset:
        return (
            f"SELECT * FROM {table} ORDER BY {order} "
            f"OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"
        )
    return f"SELECT TOP ({limit}) * FROM {table} ORDER BY {order}"


def update_sql(
    table_name: str, column_names: Sequence[str], identity: str = "Id"
) -> str:
    """UPDATE of one row by identity; the identity value is the last parameter."""
    assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in column_names)
    return (
        f"UPDATE {quote_identifier(table_name)} SET {assignments} "
        f"WHERE {quote_identifier(identity)} = ?"
    )


def delete_row_sql(table_name: str, identity: str = "Id") -> str:
    return (
        f"DELETE FROM {quote_identifier(table_name)} "
        f"WHERE {quote_identifier(identity)} = ?"
    )


def count_sql(table_name: str) -> str:
    return f"SELECT COUNT(*) FROM {quote_identifier(table_name)}"


def drop_table_sql(table_name: str) -> str:
    return f"DROP TABLE IF EXISTS {quote_identifier(table_name)}"
