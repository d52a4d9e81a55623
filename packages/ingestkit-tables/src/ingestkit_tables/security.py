"""Pre-flight checks for uploaded spreadsheets.

Rejects files with an unsupported extension, empty uploads and oversized
files before any parsing or storage interaction begins.
"""

from __future__ import annotations

import logging
import os

from ingestkit_tables.config import TableIngestConfig
from ingestkit_tables.errors import ErrorCode, IngestError

logger = logging.getLogger("ingestkit_tables")

_LARGE_FILE_THRESHOLD_MB = 10


class SpreadsheetSecurityScanner:
    """Run pre-flight checks on an uploaded spreadsheet.

    Returns a list of errors/warnings.  Fatal errors (``E_*`` codes) mean
    the file should not be processed further.
    """

    def __init__(self, config: TableIngestConfig) -> None:
        self.config = config

    def scan(self, file_name: str, file_size: int | None) -> list[IngestError]:
        """Run all pre-flight checks.

        Args:
            file_name: Original file name; only its extension is inspected.
            file_size: Size of the upload in bytes, or ``None`` when the
                source could not be found.

        Returns:
            List of errors/warnings.  Fatal errors have codes starting
            with ``E_``.
        """
        errors: list[IngestError] = []

        # --- 1. Extension check ---
        ext = os.path.splitext(file_name)[1].lower()
        allowed = [e.lower() for e in self.config.allowed_extensions]
        if ext not in allowed:
            errors.append(
                IngestError(
                    code=ErrorCode.E_SECURITY_BAD_EXTENSION,
                    message=(
                        f"Unsupported file extension '{ext or '<none>'}'. "
                        f"Allowed: {', '.join(allowed)}"
                    ),
                    stage="security",
                )
            )
            return errors

        # --- 2. Existence ---
        if file_size is None:
            errors.append(
                IngestError(
                    code=ErrorCode.E_PARSE_CORRUPT,
                    message=f"File not found or not readable: {file_name}",
                    stage="security",
                )
            )
            return errors

        # --- 3. Empty file ---
        if file_size == 0:
            errors.append(
                IngestError(
                    code=ErrorCode.E_PARSE_EMPTY,
                    message=f"File is empty (0 bytes): {file_name}",
                    stage="security",
                )
            )
            return errors

        # --- 4. File size limit ---
        max_bytes = self.config.max_file_size_mb * 1024 * 1024
        if file_size > max_bytes:
            errors.append(
                IngestError(
                    code=ErrorCode.E_SECURITY_TOO_LARGE,
                    message=(
                        f"File size {file_size} bytes exceeds limit of "
                        f"{max_bytes} bytes ({self.config.max_file_size_mb} MB)"
                    ),
                    stage="security",
                )
            )
            return errors

        # --- 5. Large file warning ---
        large_threshold = _LARGE_FILE_THRESHOLD_MB * 1024 * 1024
        if file_size > large_threshold:
            logger.warning(
                "Large spreadsheet %s: %.1f MB", file_name, file_size / (1024 * 1024)
            )
            errors.append(
                IngestError(
                    code=ErrorCode.W_LARGE_FILE,
                    message=(
                        f"File is {file_size / (1024 * 1024):.1f} MB "
                        f"(> {_LARGE_FILE_THRESHOLD_MB} MB)"
                    ),
                    stage="security",
                    recoverable=True,
                )
            )

        return errors
