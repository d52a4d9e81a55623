"""Backend protocols for the ingestkit-tables pipeline.

Defines the two structural-subtyping interfaces that concrete backends must
satisfy.  Both protocols are ``@runtime_checkable`` so callers can optionally
verify conformance with ``isinstance`` checks.

Backends wrap driver failures: ``ConnectionError`` when the database cannot
be reached, ``TimeoutError`` when it does not answer in time, and
``RuntimeError`` for failed statements.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ingestkit_tables.models import TableDescriptor


@runtime_checkable
class DynamicTableBackend(Protocol):
    """Interface for databases that host dynamic tables (e.g. SQLite, SQL Server)."""

    @property
    def dialect(self) -> str:
        """SQL dialect name understood by :mod:`ingestkit_tables.statements`."""
        ...

    def table_exists(self, table_name: str) -> bool:
        """Return True if the table exists in the default schema."""
        ...

    def get_columns(self, table_name: str) -> list[tuple[str, str]]:
        """Return ``(name, sql_type)`` pairs in ordinal order, identity included."""
        ...

    def execute_ddl(self, sql: str) -> None:
        """Execute one DDL statement in its own transaction."""
        ...

    def insert_rows(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        """Execute *sql* once per row inside one transaction. Returns count inserted."""
        ...

    def execute_statement(self, sql: str, params: Sequence[Any]) -> int:
        """Execute one parameterized DML statement. Returns rows affected."""
        ...

    def fetch_rows(
        self, table_name: str, limit: int, identity: str = "Id", offset: int = 0
    ) -> tuple[list[str], list[list[Any]]]:
        """Return column names and up to *limit* rows after *offset*, by identity."""
        ...

    def count_rows(self, table_name: str) -> int:
        """Return the number of rows in the table."""
        ...

    def drop_table(self, table_name: str) -> None:
        """Drop a table by name (no-op if it does not exist)."""
        ...

    def get_connection_uri(self) -> str:
        """Return the database connection URI."""
        ...


@runtime_checkable
class TableDescriptorStore(Protocol):
    """Interface for the bookkeeping store of dynamic tables."""

    def get(self, table_name: str) -> TableDescriptor | None:
        """Return the descriptor for *table_name* (case-insensitive), if any."""
        ...

    def save(self, descriptor: TableDescriptor) -> None:
        """Insert or replace the descriptor keyed by its table name."""
        ...

    def delete(self, table_name: str) -> bool:
        """Delete the descriptor. Returns True if one existed."""
        ...

    def list_all(self) -> list[TableDescriptor]:
        """Return all descriptors, newest upload first."""
        ...
