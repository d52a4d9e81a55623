"""Spreadsheet reader for ``.xlsx`` (openpyxl) and ``.xls`` (xlrd) uploads.

Extracts the header row and the data rows of one worksheet as loosely typed
cell values.  Native scalar types are preserved: date-formatted numbers come
back as ``datetime``, booleans as ``bool``, integral numbers as ``int``.
Formula cells yield their cached value.
"""

from __future__ import annotations

import io
import logging
import os
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta
from typing import IO, Any

import openpyxl
import xlrd  # type: ignore[import-untyped]

from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.conversion import display_text, is_blank
from ingestkit_tables.errors import ErrorCode, IngestError, TableIngestException
from ingestkit_tables.models import SheetData

logger = logging.getLogger("ingestkit_tables")

XLSX_EXTENSIONS = (".xlsx", ".xlsm")
XLS_EXTENSIONS = (".xls",)

# Encrypted OOXML files are stored inside an OLE compound document.
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def _read_bytes(stream: IO[bytes] | bytes) -> bytes:
    if isinstance(stream, (bytes, bytearray)):
        return bytes(stream)
    return stream.read()


def _is_encryption_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return "password" in message or "encrypt" in message


class SpreadsheetReader:
    """Read one worksheet of an uploaded spreadsheet.

    The format is chosen by the file name's extension.  The source stream
    is only read, never written, and every workbook opened here is closed
    (or its resources released) before returning.
    """

    def __init__(self, config: TableIngestConfig | None = None) -> None:
        self._config = config or TableIngestConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def read(
        self,
        stream: IO[bytes] | bytes,
        file_name: str,
        sheet_index: int | None = None,
    ) -> SheetData:
        """Read the header row and data rows of one worksheet.

        Args:
            stream: Binary stream or raw bytes of the file.
            file_name: Original file name; its extension selects the format.
            sheet_index: 0-based worksheet index.  Defaults to
                ``config.default_sheet_index``.

        Returns:
            A ``SheetData``; empty headers and rows (with ``W_SHEET_EMPTY``)
            when the sheet has no populated cells.

        Raises:
            TableIngestException: ``E_SECURITY_BAD_EXTENSION``,
                ``E_PARSE_CORRUPT``, ``E_PARSE_PASSWORD`` or
                ``E_PARSE_SHEET_INDEX``.
        """
        if sheet_index is None:
            sheet_index = self._config.default_sheet_index
        kind = self._format_for(file_name)
        data = _read_bytes(stream)

        if kind == "xlsx":
            return self._read_xlsx(data, file_name, sheet_index)
        return self._read_xls(data, file_name, sheet_index)

    def sheet_names(self, stream: IO[bytes] | bytes, file_name: str) -> list[str]:
        """Return the names of the data worksheets, in workbook order."""
        kind = self._format_for(file_name)
        data = _read_bytes(stream)

        if kind == "xlsx":
            wb = self._open_xlsx(data, file_name)
            try:
                return [ws.title for ws in wb.worksheets]
            finally:
                wb.close()

        book = self._open_xls(data, file_name)
        try:
            return list(book.sheet_names())
        finally:
            book.release_resources()

    # ------------------------------------------------------------------
    # Format dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _format_for(file_name: str) -> str:
        ext = os.path.splitext(file_name)[1].lower()
        if ext in XLSX_EXTENSIONS:
            return "xlsx"
        if ext in XLS_EXTENSIONS:
            return "xls"
        raise TableIngestException(
            code=ErrorCode.E_SECURITY_BAD_EXTENSION,
            message=f"Unsupported spreadsheet extension '{ext or '<none>'}': {file_name}",
            stage="read",
        )

    # ------------------------------------------------------------------
    # .xlsx via openpyxl
    # ------------------------------------------------------------------

    def _open_xlsx(self, data: bytes, file_name: str) -> Any:
        if data.startswith(_OLE_MAGIC):
            raise TableIngestException(
                code=ErrorCode.E_PARSE_PASSWORD,
                message=f"File is password-protected: {file_name}",
                stage="read",
            )
        try:
            return openpyxl.load_workbook(io.BytesIO(data), data_only=True)
        except Exception as exc:
            if _is_encryption_error(exc):
                raise TableIngestException(
                    code=ErrorCode.E_PARSE_PASSWORD,
                    message=f"File is password-protected: {exc}",
                    stage="read",
                ) from exc
            raise TableIngestException(
                code=ErrorCode.E_PARSE_CORRUPT,
                message=f"Cannot open {file_name} as .xlsx: {exc}",
                stage="read",
            ) from exc

    def _read_xlsx(self, data: bytes, file_name: str, sheet_index: int) -> SheetData:
        wb = self._open_xlsx(data, file_name)
        try:
            worksheets = wb.worksheets
            self._check_index(sheet_index, len(worksheets), file_name)
            ws = worksheets[sheet_index]
            rows = (
                [self._xlsx_value(cell) for cell in row] for row in ws.iter_rows()
            )
            return self._build(rows, ws.title, sheet_index, file_name)
        finally:
            wb.close()

    @staticmethod
    def _xlsx_value(cell: Any) -> Any:
        """Native value of an openpyxl cell."""
        if cell.data_type == "e":
            return ""
        value = cell.value
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, (time, timedelta)):
            return str(value)
        return value

    # ------------------------------------------------------------------
    # .xls via xlrd
    # ------------------------------------------------------------------

    def _open_xls(self, data: bytes, file_name: str) -> Any:
        try:
            return xlrd.open_workbook(file_contents=data)
        except Exception as exc:
            if _is_encryption_error(exc):
                raise TableIngestException(
                    code=ErrorCode.E_PARSE_PASSWORD,
                    message=f"File is password-protected: {exc}",
                    stage="read",
                ) from exc
            raise TableIngestException(
                code=ErrorCode.E_PARSE_CORRUPT,
                message=f"Cannot open {file_name} as .xls: {exc}",
                stage="read",
            ) from exc

    def _read_xls(self, data: bytes, file_name: str, sheet_index: int) -> SheetData:
        book = self._open_xls(data, file_name)
        try:
            self._check_index(sheet_index, book.nsheets, file_name)
            sheet = book.sheet_by_index(sheet_index)
            rows = (
                [
                    self._xls_value(sheet.cell(r, c), book.datemode)
                    for c in range(sheet.ncols)
                ]
                for r in range(sheet.nrows)
            )
            return self._build(rows, sheet.name, sheet_index, file_name)
        finally:
            book.release_resources()

    @staticmethod
    def _xls_value(cell: Any, datemode: int) -> Any:
        """Native value of an xlrd cell."""
        ctype = cell.ctype
        if ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
            return None
        if ctype == xlrd.XL_CELL_ERROR:
            return ""
        if ctype == xlrd.XL_CELL_BOOLEAN:
            return bool(cell.value)
        if ctype == xlrd.XL_CELL_DATE:
            try:
                return xlrd.xldate_as_datetime(cell.value, datemode)
            except (ValueError, OverflowError) as exc:
                logger.debug("xls date conversion failed, keeping serial: %s", exc)
                return cell.value
        value = cell.value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_index(sheet_index: int, count: int, file_name: str) -> None:
        if not 0 <= sheet_index < count:
            raise TableIngestException(
                code=ErrorCode.E_PARSE_SHEET_INDEX,
                message=(
                    f"Sheet index {sheet_index} is out of range; "
                    f"{file_name} has {count} worksheet(s)"
                ),
                stage="read",
            )

    def _build(
        self,
        rows: Iterable[list[Any]],
        sheet_name: str,
        sheet_index: int,
        file_name: str,
    ) -> SheetData:
        """Split raw rows into header and data, trimmed to the populated width."""
        warnings: list[IngestError] = []
        row_iter: Iterator[list[Any]] = iter(rows)

        try:
            header_cells = next(row_iter, None)
        except Exception as exc:
            raise TableIngestException(
                code=ErrorCode.E_PARSE_CORRUPT,
                message=f"Failed to read header row of '{sheet_name}': {exc}",
                stage="read",
                sheet_name=sheet_name,
            ) from exc

        data_rows: list[list[Any]] = []
        try:
            for row in row_iter:
                data_rows.append(row)
        except Exception as exc:
            logger.warning(
                "Stopped reading %s sheet '%s' after %d rows: %s",
                file_name,
                sheet_name,
                len(data_rows),
                exc,
            )
            warnings.append(
                IngestError(
                    code=ErrorCode.W_ROWS_PARTIAL,
                    message=(
                        f"Reading stopped after {len(data_rows)} data rows: {exc}"
                    ),
                    stage="read",
                    recoverable=True,
                    sheet_name=sheet_name,
                )
            )

        header_cells = header_cells or []
        width = max(
            (_populated_width(r) for r in [header_cells, *data_rows]), default=0
        )
        if width == 0:
            warnings.append(
                IngestError(
                    code=ErrorCode.W_SHEET_EMPTY,
                    message=f"Sheet '{sheet_name}' has no data",
                    stage="read",
                    recoverable=True,
                    sheet_name=sheet_name,
                )
            )
            return SheetData(
                sheet_name=sheet_name, sheet_index=sheet_index, warnings=warnings
            )

        headers = [
            display_text(v).strip() if not is_blank(v) else f"Column{i + 1}"
            for i, v in enumerate(_pad(header_cells, width))
        ]
        body = [_pad(r, width) for r in data_rows]
        if self._config.skip_blank_rows:
            body = [r for r in body if not all(is_blank(v) for v in r)]

        return SheetData(
            sheet_name=sheet_name,
            sheet_index=sheet_index,
            headers=headers,
            rows=body,
            warnings=warnings,
        )


def _populated_width(row: list[Any]) -> int:
    for i in range(len(row) - 1, -1, -1):
        if not is_blank(row[i]):
            return i + 1
    return 0


def _pad(row: list[Any], width: int) -> list[Any]:
    row = list(row[:width])
    row.extend([None] * (width - len(row)))
    return row
