"""Deterministic ingest-key computation for deduplication.

This module provides :func:`compute_ingest_key`, which produces an
:class:`~ingestkit_tables.models.IngestKey` from the raw bytes of an uploaded
spreadsheet.  Identical content, source URI, parser version and tenant ID
always yield the same :pyattr:`IngestKey.key` digest.

The package **provides** the key but does **not** enforce any
deduplication policy; re-uploading the same file appends its rows again.
"""

from __future__ import annotations

import hashlib

from ingestkit_tables.models import IngestKey


def compute_ingest_key(
    content: bytes,
    source_uri: str,
    parser_version: str,
    tenant_id: str | None = None,
) -> IngestKey:
    """Compute a deterministic ingest key for deduplication.

    Parameters
    ----------
    content:
        Raw bytes of the uploaded file.
    source_uri:
        Where the content came from: an absolute POSIX path for files on
        disk, or the original file name for in-memory uploads.
    parser_version:
        Parser version string (e.g. ``"ingestkit_tables:1.0.0"``).
    tenant_id:
        Optional tenant identifier for multi-tenant scenarios.

    Returns
    -------
    IngestKey
        A populated :class:`IngestKey`.
    """
    content_hash = hashlib.sha256(content).hexdigest()
    return IngestKey(
        content_hash=content_hash,
        source_uri=source_uri,
        parser_version=parser_version,
        tenant_id=tenant_id,
    )
