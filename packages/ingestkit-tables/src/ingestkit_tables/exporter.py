"""Export a dynamic table's rows as an ``.xlsx`` workbook (openpyxl)."""

from __future__ import annotations

import io
import logging

import openpyxl
from openpyxl.styles import Font

from ingestkit_tables.models import TableSnapshot

logger = logging.getLogger("ingestkit_tables")

EXPORT_SHEET_TITLE = "Data"


def export_xlsx(snapshot: TableSnapshot, identity: str | None = "Id") -> bytes:
    """Write *snapshot* to a one-sheet workbook and return the file bytes.

    The first row holds the column names in bold; the *identity* column is
    left out.  NULLs become empty cells.  A table without rows still yields
    a workbook with its header row.
    """
    keep = [
        i
        for i, name in enumerate(snapshot.columns)
        if identity is None or name.casefold() != identity.casefold()
    ]

    wb = openpyxl.Workbook()
    try:
        ws = wb.active
        ws.title = EXPORT_SHEET_TITLE
        ws.append([snapshot.columns[i] for i in keep])
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for row in snapshot.rows:
            ws.append([row[i] if i < len(row) else None for i in keep])

        buffer = io.BytesIO()
        wb.save(buffer)
    finally:
        wb.close()

    logger.debug(
        "Exported %s: %d rows, %d columns",
        snapshot.table_name,
        len(snapshot.rows),
        len(keep),
    )
    return buffer.getvalue()
