"""Configuration model for the ingestkit-tables pipeline.

Provides ``TableIngestConfig`` with all tunable parameters and sensible
defaults.  Supports loading overrides from YAML or JSON files via the
``from_file()`` classmethod.
"""

from __future__ import annotations

import json
import pathlib
from enum import Enum

import yaml
from pydantic import BaseModel


class TableNamePolicy(str, Enum):
    """How a requested table name is matched against existing tables.

    ``normalized`` runs the name through the column-naming rules first, so
    two uploads whose names clean to the same identifier append to the same
    table.  ``exact`` uses the requested name verbatim (trimmed).
    """

    NORMALIZED = "normalized"
    EXACT = "exact"


DEFAULT_DATE_FORMATS: list[str] = [
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%d.%m.%Y",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y %H:%M:%S",
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M:%S",
]


class TableIngestConfig(BaseModel):
    """All tunable parameters with sensible defaults.

    Override individual values via constructor kwargs or load a complete
    config from a file with ``TableIngestConfig.from_file(path)``.
    """

    # --- Identity ---
    parser_version: str = "ingestkit_tables:1.0.0"
    tenant_id: str | None = None

    # --- Input ---
    allowed_extensions: list[str] = [".xlsx", ".xls"]
    max_file_size_mb: int = 50
    default_sheet_index: int = 0
    skip_blank_rows: bool = True
    preview_row_count: int = 10

    # --- Type inference ---
    type_confidence_threshold: float = 0.8
    string_length_tiers: list[int] = [10, 50, 255, 1000]
    name_type_hints: bool = False
    date_formats: list[str] = DEFAULT_DATE_FORMATS

    # --- Naming ---
    max_identifier_length: int = 100
    identity_column: str = "Id"
    table_name_policy: TableNamePolicy = TableNamePolicy.NORMALIZED

    # --- Load ---
    insert_batch_size: int = 1000
    strict_schema_check: bool = False
    read_back_limit: int = 1000

    # --- Database (used by create_default_router) ---
    database_uri: str = "sqlite:///:memory:"

    # --- Logging / PII safety ---
    log_sample_data: bool = False

    @classmethod
    def from_file(cls, path: str) -> TableIngestConfig:
        """Load configuration from a YAML or JSON file.

        File format is detected by extension: ``.yaml`` / ``.yml`` for YAML,
        ``.json`` for JSON.  Any keys present in the file override the
        corresponding defaults; keys not present retain their defaults.

        Args:
            path: Filesystem path to the configuration file.

        Returns:
            A fully-populated ``TableIngestConfig`` instance.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ValueError: If the file extension is not recognized.
        """
        file_path = pathlib.Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = file_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            with open(file_path) as fh:
                data = yaml.safe_load(fh)
        elif suffix == ".json":
            with open(file_path) as fh:
                data = json.load(fh)
        else:
            raise ValueError(
                f"Unsupported config file extension '{suffix}'. "
                "Use .yaml, .yml, or .json."
            )

        if data is None:
            data = {}

        return cls(**data)
