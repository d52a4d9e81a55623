"""ingestkit-tables -- spreadsheet-to-table ingestion for the ingestkit framework.

Public API exports for the router, configuration, models, errors, the
schema analyzer helpers, and backend protocols.
"""

from ingestkit_tables.config import TableIngestConfig, TableNamePolicy
from ingestkit_tables.conversion import CellKind, ParamType, convert_cell
from ingestkit_tables.errors import (
    ErrorCode,
    IngestError,
    InsertAbortedError,
    TableIngestException,
)
from ingestkit_tables.exporter import export_xlsx
from ingestkit_tables.idempotency import compute_ingest_key
from ingestkit_tables.inference import analyze_columns, infer_column_type
from ingestkit_tables.materializer import DynamicTableMaterializer
from ingestkit_tables.models import (
    AnalysisResult,
    ColumnSpec,
    ColumnTypeAnalysis,
    IngestionResult,
    IngestKey,
    MaterializeResult,
    SheetData,
    TableDescriptor,
    TableSnapshot,
)
from ingestkit_tables.naming import clean_headers, clean_name, unique_name
from ingestkit_tables.protocols import DynamicTableBackend, TableDescriptorStore
from ingestkit_tables.reader import SpreadsheetReader
from ingestkit_tables.router import TableIngestRouter, create_default_router
from ingestkit_tables.security import SpreadsheetSecurityScanner

__all__ = [
    # Router
    "TableIngestRouter",
    "create_default_router",
    # Pipeline components
    "SpreadsheetReader",
    "SpreadsheetSecurityScanner",
    "DynamicTableMaterializer",
    "export_xlsx",
    # Schema analyzer
    "clean_name",
    "unique_name",
    "clean_headers",
    "infer_column_type",
    "analyze_columns",
    # Conversion
    "CellKind",
    "ParamType",
    "convert_cell",
    # Idempotency
    "IngestKey",
    "compute_ingest_key",
    # Models
    "SheetData",
    "ColumnTypeAnalysis",
    "ColumnSpec",
    "MaterializeResult",
    "TableSnapshot",
    "TableDescriptor",
    "AnalysisResult",
    "IngestionResult",
    # Errors
    "ErrorCode",
    "IngestError",
    "TableIngestException",
    "InsertAbortedError",
    # Config
    "TableIngestConfig",
    "TableNamePolicy",
    # Protocols
    "DynamicTableBackend",
    "TableDescriptorStore",
]
