"""TableIngestRouter -- orchestrator and public API for ingestkit-tables.

Routes an uploaded spreadsheet through the full ingestion pipeline:

1. Pre-flight checks via :class:`SpreadsheetSecurityScanner`.
2. Compute deterministic :class:`IngestKey` for deduplication.
3. Read one worksheet via :class:`SpreadsheetReader`.
4. Infer column types via :func:`analyze_columns`.
5. Resolve the table name and, under the per-table lock, materialize the
   table and rows via :class:`DynamicTableMaterializer`.
6. Upsert the table's :class:`TableDescriptor`.
7. Return a fully-assembled :class:`IngestionResult`.

The router enforces **fail-closed** semantics: per-file problems never
raise out of :meth:`TableIngestRouter.process`; they come back as an
``IngestionResult`` with ``success=False`` and the error codes.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Union

from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.errors import (
    ErrorCode,
    IngestError,
    InsertAbortedError,
    TableIngestException,
)
from ingestkit_tables.exporter import export_xlsx
from ingestkit_tables.idempotency import compute_ingest_key
from ingestkit_tables.inference import analyze_columns
from ingestkit_tables.materializer import DynamicTableMaterializer, table_lock
from ingestkit_tables.models import (
    AnalysisResult,
    IngestionResult,
    TableDescriptor,
    TableSnapshot,
)
from ingestkit_tables.naming import clean_headers, column_letter, resolve_table_name
from ingestkit_tables.protocols import DynamicTableBackend, TableDescriptorStore
from ingestkit_tables.reader import SpreadsheetReader
from ingestkit_tables.security import SpreadsheetSecurityScanner

logger = logging.getLogger("ingestkit_tables")

Source = Union[str, os.PathLike, bytes, IO[bytes]]


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class TableIngestRouter:
    """Orchestrator that drives spreadsheet-to-table ingestion.

    Builds the reader, scanner and materializer from the injected backends
    and config, then exposes :meth:`process` as the main entry point plus
    read-back and housekeeping operations on the dynamic tables.

    Parameters
    ----------
    backend:
        Database hosting the dynamic tables (e.g. SQLite, SQL Server).
    descriptor_store:
        Bookkeeping store for table descriptors.
    config:
        Pipeline configuration. Uses defaults when *None*.
    """

    def __init__(
        self,
        backend: DynamicTableBackend,
        descriptor_store: TableDescriptorStore,
        config: TableIngestConfig | None = None,
    ) -> None:
        self._config = config or TableIngestConfig()
        self._backend = backend
        self._store = descriptor_store
        self._scanner = SpreadsheetSecurityScanner(self._config)
        self._reader = SpreadsheetReader(self._config)
        self._materializer = DynamicTableMaterializer(backend, self._config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(
        self,
        source: Source,
        file_name: str | None = None,
        table_name: str | None = None,
        description: str | None = None,
        sheet_index: int | None = None,
        uploaded_by: str | None = None,
    ) -> IngestionResult:
        """Ingest one worksheet of a spreadsheet into a dynamic table.

        Parameters
        ----------
        source:
            Filesystem path, raw bytes, or a binary stream of the file.
        file_name:
            Original file name.  Required for bytes and streams without a
            ``name``; for paths it defaults to the path's base name.
        table_name:
            Target table.  Defaults to the file name's stem; resolved
            through ``config.table_name_policy``.
        description:
            Free text stored on the table descriptor when it is created.
        sheet_index:
            0-based worksheet index.  Defaults to ``config.default_sheet_index``.
        uploaded_by:
            Optional uploader identity stored on the descriptor.

        Returns
        -------
        IngestionResult
            Success flag, resolved table name, row counts, per-column type
            summary, warnings and errors.
        """
        start = time.monotonic()
        config = self._config
        ingest_run_id = str(uuid.uuid4())
        display_name = file_name or _source_name(source) or "<upload>"

        warnings: list[IngestError] = []

        # ----------------------------------------------------------
        # Step 1: Load and pre-flight checks
        # ----------------------------------------------------------
        try:
            display_name, content, source_uri = _load_source(source, file_name)
        except ValueError as exc:
            return self._fail(
                _unnamed_source_error(exc), display_name, ingest_run_id, start
            )
        except OSError as exc:
            return self._fail(
                IngestError(
                    code=ErrorCode.E_PARSE_CORRUPT,
                    message=f"Cannot read {display_name}: {exc}",
                    stage="load",
                ),
                display_name,
                ingest_run_id,
                start,
            )

        scan = self._scanner.scan(
            display_name, len(content) if content is not None else None
        )
        fatal = [e for e in scan if e.code.value.startswith("E_")]
        warnings.extend(e for e in scan if not e.code.value.startswith("E_"))
        if fatal:
            return self._fail(
                fatal[0], display_name, ingest_run_id, start, warnings=warnings
            )
        assert content is not None

        # ----------------------------------------------------------
        # Step 2: Compute ingest key
        # ----------------------------------------------------------
        ingest_key = compute_ingest_key(
            content=content,
            source_uri=source_uri,
            parser_version=config.parser_version,
            tenant_id=config.tenant_id,
        ).key

        sheet_name: str | None = None
        resolved: str | None = None
        try:
            # ------------------------------------------------------
            # Step 3: Read
            # ------------------------------------------------------
            sheet = self._reader.read(content, display_name, sheet_index)
            sheet_name = sheet.sheet_name
            warnings.extend(sheet.warnings)

            if sheet.is_empty:
                elapsed = time.monotonic() - start
                logger.info(
                    "Processed %s: key=%s sheet=empty rows=0 time=%.3fs",
                    display_name,
                    ingest_key[:16],
                    elapsed,
                )
                return self._result(
                    success=True,
                    message=f"Sheet '{sheet_name}' is empty; nothing was loaded",
                    file_name=display_name,
                    sheet_name=sheet_name,
                    ingest_key=ingest_key,
                    ingest_run_id=ingest_run_id,
                    warnings=warnings,
                    start=start,
                )

            # ------------------------------------------------------
            # Step 4: Analyze
            # ------------------------------------------------------
            analyses = analyze_columns(sheet.headers, sheet.rows, config)

            # ------------------------------------------------------
            # Step 5: Resolve name and materialize
            # ------------------------------------------------------
            resolved = resolve_table_name(
                table_name,
                display_name,
                config.table_name_policy,
                config.max_identifier_length,
            )
            with table_lock(resolved):
                try:
                    materialized = self._materializer.materialize(
                        resolved, sheet.headers, sheet.rows, analyses
                    )
                except InsertAbortedError as exc:
                    if exc.rows_committed or exc.table_created:
                        self._record_descriptor(
                            resolved,
                            display_name,
                            description,
                            uploaded_by,
                            column_count=len(sheet.headers),
                            inserted=exc.rows_committed,
                            success=False,
                        )
                    raise

                # --------------------------------------------------
                # Step 6: Descriptor bookkeeping
                # --------------------------------------------------
                descriptor = self._record_descriptor(
                    resolved,
                    display_name,
                    description,
                    uploaded_by,
                    column_count=len(materialized.columns),
                    inserted=materialized.rows_inserted,
                    success=True,
                )
        except TableIngestException as exc:
            error = exc.error
            if error.sheet_name is None and sheet_name is not None:
                error = error.model_copy(update={"sheet_name": sheet_name})
            return self._fail(
                error,
                display_name,
                ingest_run_id,
                start,
                warnings=warnings,
                ingest_key=ingest_key,
                sheet_name=sheet_name,
                table_name=resolved,
                rows_inserted=getattr(exc, "rows_committed", 0),
            )
        except (ConnectionError, TimeoutError, RuntimeError) as exc:
            return self._fail(
                _backend_error(exc, resolved),
                display_name,
                ingest_run_id,
                start,
                warnings=warnings,
                ingest_key=ingest_key,
                sheet_name=sheet_name,
                table_name=resolved,
            )

        warnings.extend(materialized.warnings)
        verb = "created" if materialized.created else "appended to"
        result = self._result(
            success=True,
            message=(
                f"Loaded {materialized.rows_inserted} rows; "
                f"{verb} table '{resolved}'"
            ),
            file_name=display_name,
            sheet_name=sheet_name,
            table_name=resolved,
            table_created=materialized.created,
            rows_inserted=materialized.rows_inserted,
            total_rows=descriptor.row_count,
            column_count=len(materialized.columns),
            columns=analyses,
            column_names=[c.name for c in materialized.columns],
            cells_nulled=materialized.cells_nulled,
            ingest_key=ingest_key,
            ingest_run_id=ingest_run_id,
            warnings=warnings,
            start=start,
        )

        # PII-safe INFO log
        logger.info(
            "Processed %s: key=%s table=%s created=%s rows=%d total=%d "
            "columns=%d time=%.3fs",
            display_name,
            ingest_key[:16],
            resolved,
            materialized.created,
            materialized.rows_inserted,
            descriptor.row_count,
            len(materialized.columns),
            result.processing_time_seconds,
        )
        return result

    async def aprocess(
        self,
        source: Source,
        file_name: str | None = None,
        table_name: str | None = None,
        description: str | None = None,
        sheet_index: int | None = None,
        uploaded_by: str | None = None,
    ) -> IngestionResult:
        """Async wrapper around :meth:`process`.

        Runs the synchronous pipeline in a worker thread via
        ``asyncio.to_thread()``.
        """
        return await asyncio.to_thread(
            self.process,
            source,
            file_name=file_name,
            table_name=table_name,
            description=description,
            sheet_index=sheet_index,
            uploaded_by=uploaded_by,
        )

    def analyze(
        self,
        source: Source,
        file_name: str | None = None,
        sheet_index: int | None = None,
    ) -> AnalysisResult:
        """Preview how a worksheet would be materialized, without storing anything."""
        config = self._config
        display_name = file_name or _source_name(source) or "<upload>"

        try:
            display_name, content, _ = _load_source(source, file_name)
        except ValueError as exc:
            return _failed_analysis(display_name, _unnamed_source_error(exc))
        except OSError as exc:
            return _failed_analysis(
                display_name,
                IngestError(
                    code=ErrorCode.E_PARSE_CORRUPT,
                    message=f"Cannot read {display_name}: {exc}",
                    stage="load",
                ),
            )

        scan = self._scanner.scan(
            display_name, len(content) if content is not None else None
        )
        fatal = [e for e in scan if e.code.value.startswith("E_")]
        if fatal:
            return _failed_analysis(display_name, fatal[0])
        assert content is not None

        try:
            names = self._reader.sheet_names(content, display_name)
            sheet = self._reader.read(content, display_name, sheet_index)
        except TableIngestException as exc:
            return _failed_analysis(display_name, exc.error)

        analyses = analyze_columns(sheet.headers, sheet.rows, config)
        details = [e for e in scan if not e.code.value.startswith("E_")]
        details.extend(sheet.warnings)
        return AnalysisResult(
            file_name=display_name,
            sheet_name=sheet.sheet_name,
            sheet_names=names,
            headers=sheet.headers,
            column_letters=[column_letter(i) for i in range(len(sheet.headers))],
            clean_names=clean_headers(
                sheet.headers,
                reserved=(config.identity_column,),
                max_length=config.max_identifier_length,
            ),
            columns=analyses,
            preview_rows=sheet.rows[: config.preview_row_count],
            total_rows=len(sheet.rows),
            warnings=_codes(details),
            error_details=details,
        )

    def sheet_names(self, source: Source, file_name: str | None = None) -> list[str]:
        """Return the worksheet names of a spreadsheet.

        Raises:
            TableIngestException: When the file cannot be opened.
            ValueError: *source* is bytes or a stream and no file name is known.
        """
        display_name, content, _ = _load_source(source, file_name)
        if content is None:
            raise TableIngestException(
                code=ErrorCode.E_PARSE_CORRUPT,
                message=f"File not found or not readable: {display_name}",
                stage="load",
            )
        return self._reader.sheet_names(content, display_name)

    def read_table(
        self, table_name: str, limit: int | None = None, offset: int = 0
    ) -> TableSnapshot:
        """Return one page of a dynamic table in identity order.

        *limit* defaults to ``config.read_back_limit``; *offset* skips that
        many leading rows.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND``.
        """
        return self._materializer.read_table(table_name, limit, offset)

    def read_page(
        self, table_name: str, page: int = 1, page_size: int = 50
    ) -> TableSnapshot:
        """Return the 1-based *page* of a dynamic table, *page_size* rows each."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        return self._materializer.read_table(
            table_name, page_size, (page - 1) * page_size
        )

    def update_row(
        self, table_name: str, row_id: int, values: Mapping[str, Any]
    ) -> bool:
        """Overwrite columns of one row, keyed by its identity value.

        Returns False when no row has *row_id*.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND`` or ``E_COLUMN_NOT_FOUND``.
        """
        return self._materializer.update_row(table_name, row_id, values)

    def delete_row(self, table_name: str, row_id: int) -> bool:
        """Delete one row by identity and keep the descriptor's row count in step.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND``.
        """
        with table_lock(table_name):
            deleted = self._materializer.delete_row(table_name, row_id)
            descriptor = self._store.get(table_name)
            if deleted and descriptor is not None:
                self._store.save(
                    descriptor.model_copy(
                        update={"row_count": max(0, descriptor.row_count - 1)}
                    )
                )
        return deleted

    def export_table(self, table_name: str) -> bytes:
        """Return every row of a dynamic table as ``.xlsx`` file bytes.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND``.
        """
        with table_lock(table_name):
            total = self._materializer.count_rows(table_name)
            snapshot = self._materializer.read_table(table_name, limit=total)
        data = export_xlsx(snapshot, identity=self._config.identity_column)
        logger.info("Exported table %s: rows=%d", table_name, len(snapshot.rows))
        return data

    def list_tables(self) -> list[TableDescriptor]:
        return self._store.list_all()

    def get_table(self, table_name: str) -> TableDescriptor | None:
        return self._store.get(table_name)

    def delete_table(self, table_name: str) -> None:
        """Drop a dynamic table and its descriptor.

        Raises:
            TableIngestException: ``E_TABLE_NOT_FOUND`` when neither the
                table nor a descriptor exists.
        """
        with table_lock(table_name):
            dropped = False
            if self._backend.table_exists(table_name):
                self._materializer.drop_table(table_name)
                dropped = True
            removed = self._store.delete(table_name)
            if not dropped and not removed:
                raise TableIngestException(
                    code=ErrorCode.E_TABLE_NOT_FOUND,
                    message=f"Table '{table_name}' does not exist",
                    stage="delete",
                    table_name=table_name,
                )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record_descriptor(
        self,
        table_name: str,
        file_name: str,
        description: str | None,
        uploaded_by: str | None,
        column_count: int,
        inserted: int,
        success: bool,
    ) -> TableDescriptor:
        """Create the descriptor on first load, otherwise add to its row count."""
        now = datetime.now()
        existing = self._store.get(table_name)
        if existing is None:
            descriptor = TableDescriptor(
                table_name=table_name,
                file_name=file_name,
                description=description,
                uploaded_by=uploaded_by,
                upload_date=now,
                processed_date=now if success else None,
                row_count=inserted,
                column_count=column_count,
                is_processed=success,
            )
        else:
            descriptor = existing.model_copy(
                update={
                    "row_count": existing.row_count + inserted,
                    "processed_date": now,
                    "is_processed": success,
                }
            )
        self._store.save(descriptor)
        return descriptor

    def _result(
        self, start: float, warnings: list[IngestError], **fields
    ) -> IngestionResult:
        return IngestionResult(
            warnings=_codes(warnings),
            error_details=list(warnings),
            processing_time_seconds=time.monotonic() - start,
            **fields,
        )

    def _fail(
        self,
        error: IngestError,
        file_name: str,
        ingest_run_id: str,
        start: float,
        warnings: list[IngestError] | None = None,
        ingest_key: str | None = None,
        sheet_name: str | None = None,
        table_name: str | None = None,
        rows_inserted: int = 0,
    ) -> IngestionResult:
        """Build a fail-closed result and log it."""
        logger.error(
            "ingestkit_tables | file=%s | code=%s | detail=%s",
            file_name,
            error.code.value,
            error.message,
        )
        warnings = warnings or []
        return IngestionResult(
            success=False,
            message=error.message,
            file_name=file_name,
            sheet_name=sheet_name,
            table_name=table_name,
            rows_inserted=rows_inserted,
            ingest_key=ingest_key,
            ingest_run_id=ingest_run_id,
            errors=[error.code.value],
            warnings=_codes(warnings),
            error_details=[error, *warnings],
            processing_time_seconds=time.monotonic() - start,
        )


# ---------------------------------------------------------------------------
# Module helpers
# ---------------------------------------------------------------------------


def _source_name(source: Source) -> str | None:
    if isinstance(source, (str, os.PathLike)):
        return os.path.basename(os.fspath(source))
    name = getattr(source, "name", None)
    return os.path.basename(name) if isinstance(name, str) else None


def _load_source(
    source: Source, file_name: str | None
) -> tuple[str, bytes | None, str]:
    """Return ``(file_name, content, source_uri)``.

    ``content`` is ``None`` when a path does not point at a readable file.
    """
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        name = file_name or path.name
        if not path.is_file():
            return name, None, path.as_posix()
        return name, path.read_bytes(), path.resolve().as_posix()

    name = file_name or _source_name(source)
    if not name:
        raise ValueError("file_name is required when source is bytes or a stream")
    if isinstance(source, (bytes, bytearray)):
        return name, bytes(source), name
    return name, source.read(), name


def _unnamed_source_error(exc: ValueError) -> IngestError:
    # Without a file name the format cannot be told from the extension.
    return IngestError(
        code=ErrorCode.E_SECURITY_BAD_EXTENSION,
        message=str(exc),
        stage="load",
    )


def _codes(errors: list[IngestError]) -> list[str]:
    codes: list[str] = []
    for error in errors:
        if error.code.value not in codes:
            codes.append(error.code.value)
    return codes


def _failed_analysis(file_name: str, error: IngestError) -> AnalysisResult:
    logger.error(
        "ingestkit_tables | file=%s | code=%s | detail=%s",
        file_name,
        error.code.value,
        error.message,
    )
    return AnalysisResult(
        file_name=file_name,
        errors=[error.code.value],
        error_details=[error],
    )


def _backend_error(exc: Exception, table_name: str | None) -> IngestError:
    if isinstance(exc, TimeoutError):
        code = ErrorCode.E_BACKEND_DB_TIMEOUT
    elif isinstance(exc, ConnectionError):
        code = ErrorCode.E_BACKEND_DB_CONNECT
    else:
        code = ErrorCode.E_INSERT_FAILED
    return IngestError(
        code=code,
        message=f"Database error: {exc}",
        stage="storage",
        recoverable=code is not ErrorCode.E_INSERT_FAILED,
        table_name=table_name,
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_default_router(**overrides) -> TableIngestRouter:
    """Create a TableIngestRouter with backends chosen from ``database_uri``.

    Convenience factory for local development and testing.  All defaults
    can be overridden via keyword arguments:

    - ``backend``: DynamicTableBackend (default: from ``config.database_uri``)
    - ``descriptor_store``: TableDescriptorStore (default: same database)
    - ``config``: TableIngestConfig (default: TableIngestConfig())

    Any other keyword arguments are passed to TableIngestConfig.

    ``sqlite:///<path>`` (or ``sqlite:///:memory:``) selects the SQLite
    backends; ``mssql+pyodbc://...`` selects SQL Server.

    Raises
    ------
    ValueError
        If ``database_uri`` names an unsupported database.
    """
    from ingestkit_tables.backends import (
        MSSQLDescriptorStore,
        MSSQLDynamicDB,
        SQLiteDescriptorStore,
        SQLiteDynamicDB,
    )

    # Separate known router kwargs from config overrides
    router_keys = {"backend", "descriptor_store", "config"}
    router_kwargs = {k: v for k, v in overrides.items() if k in router_keys}
    config_kwargs = {k: v for k, v in overrides.items() if k not in router_keys}

    config = router_kwargs.pop("config", None)
    if config is None:
        config = TableIngestConfig(**config_kwargs)

    backend = router_kwargs.pop("backend", None)
    store = router_kwargs.pop("descriptor_store", None)
    uri = config.database_uri

    if uri.startswith("sqlite:"):
        db_path = uri.partition(":///")[2] or ":memory:"
        if backend is None:
            backend = SQLiteDynamicDB(db_path)
        if store is None:
            store = SQLiteDescriptorStore(db_path)
    elif uri.startswith("mssql"):
        if backend is None:
            backend = MSSQLDynamicDB(connection_uri=uri)
        if store is None:
            engine = getattr(backend, "engine", None)
            if engine is not None:
                store = MSSQLDescriptorStore(engine=engine)
            else:
                store = MSSQLDescriptorStore(connection_uri=uri)
    elif backend is None or store is None:
        raise ValueError(f"Unsupported database_uri: {uri}")

    return TableIngestRouter(backend=backend, descriptor_store=store, config=config)
