"""Concrete backend implementations for ingestkit-tables.

The SQLite backends use only the standard library.  The SQL Server backends
run on SQLAlchemy; connecting also needs ``pyodbc`` (the ``mssql`` extra).
"""

from __future__ import annotations

from ingestkit_tables.backends.mssql import (
    MSSQLDescriptorStore,
    MSSQLDynamicDB,
    build_connection_uri,
)
from ingestkit_tables.backends.sqlite import SQLiteDescriptorStore, SQLiteDynamicDB

__all__ = [
    "SQLiteDynamicDB",
    "SQLiteDescriptorStore",
    "MSSQLDynamicDB",
    "MSSQLDescriptorStore",
    "build_connection_uri",
]
