"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .dedupe import (
    HASH_PREFIX_LENGTH,
    AttachmentKeyComponents,
    build_attachment_key,
    compute_entry_hash,
    compute_file_hash,
    csv_evidence_ref,
    generate_entry_id,
    normalize_amount,
    normalize_description,
    page_evidence_ref,
    parse_amount,
    parse_attachment_key,
)
from .documents import (
    Checkpoint,
    CheckpointResult,
    Document,
    DocumentMetadata,
    Scope,
    guess_mime_type,
)
from .journal_entry import Amount, EntryPosting, EntryStatus, JournalEntry

__all__ = [
    # Documents
    "Scope",
    "Document",
    "DocumentMetadata",
    "Checkpoint",
    "CheckpointResult",
    "guess_mime_type",
    # Journal entries
    "JournalEntry",
    "EntryPosting",
    "EntryStatus",
    "Amount",
    # Dedupe
    "HASH_PREFIX_LENGTH",
    "AttachmentKeyComponents",
    "generate_entry_id",
    "compute_entry_hash",
    "compute_file_hash",
    "build_attachment_key",
    "parse_attachment_key",
    "normalize_amount",
    "normalize_description",
    "parse_amount",
    "csv_evidence_ref",
    "page_evidence_ref",
]
