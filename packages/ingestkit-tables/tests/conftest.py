"""Shared test fixtures for ingestkit-tables tests.

Provides a default ``test_config``, in-memory SQLite backends, a router
wired to them, and an ``.xlsx`` file factory built with openpyxl.
"""

from __future__ import annotations

import io
import pathlib
from typing import Any

import openpyxl
import pytest

from ingestkit_tables.backends.sqlite import SQLiteDescriptorStore, SQLiteDynamicDB
from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.router import TableIngestRouter


def build_xlsx(
    rows: list[list[Any]], title: str = "Sheet1", extra_sheets: int = 0
) -> bytes:
    """Return the bytes of a workbook whose first sheet holds *rows*."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for i in range(extra_sheets):
        extra = wb.create_sheet(f"Extra{i + 1}")
        extra.append([f"Other{i + 1}"])
        extra.append([i + 1])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.fixture()
def test_config() -> TableIngestConfig:
    """Return a TableIngestConfig with all defaults."""
    return TableIngestConfig()


@pytest.fixture()
def sqlite_db():
    db = SQLiteDynamicDB(":memory:")
    yield db
    db.close()


@pytest.fixture()
def descriptor_store():
    store = SQLiteDescriptorStore(":memory:")
    yield store
    store.close()


@pytest.fixture()
def router(sqlite_db, descriptor_store, test_config) -> TableIngestRouter:
    return TableIngestRouter(
        backend=sqlite_db, descriptor_store=descriptor_store, config=test_config
    )


@pytest.fixture()
def xlsx_bytes():
    """Return the in-memory workbook builder."""
    return build_xlsx


@pytest.fixture()
def xlsx_factory(tmp_path: pathlib.Path):
    """Write rows to ``tmp_path/<name>`` and return the path as a string."""

    def _make(name: str, rows: list[list[Any]], **kwargs: Any) -> str:
        path = tmp_path / name
        path.write_bytes(build_xlsx(rows, **kwargs))
        return str(path)

    return _make
