"""
Artifact and checkpoint schemas.

Documents carry an open, schema-light metadata map at the storage boundary.
Engines must read metadata only through DocumentMetadata, which exposes the
fixed, documented subset of keys below.
"""

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import CheckpointError

# ============================================================================
# Documented metadata keys
# ============================================================================

META_ACCOUNT_NAME = "accountName"
META_ACCOUNT_LAST4 = "accountLast4"
META_PERIOD = "period"
META_ATTACHMENT_KEY = "attachmentKey"
META_ATTACHMENT_PART = "attachmentPart"
META_CHECKPOINT_SCOPE = "checkpointScope"
META_CHECKPOINT_VERSION = "checkpointVersion"
META_CHECKPOINT_MONTH = "checkpointMonth"
META_CHECKPOINT_FINAL = "checkpointFinal"
META_CHECKPOINT_RESULT = "checkpointResult"

DEFAULT_ATTACHMENT_PART = "single"

MIME_TYPES = {
    "csv": "text/csv",
    "html": "text/html",
    "htm": "text/html",
    "pdf": "application/pdf",
    "json": "application/json",
    "txt": "text/plain",
    "xml": "application/xml",
    "ofx": "application/x-ofx",
    "qfx": "application/x-ofx",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
}


def guess_mime_type(filename: str) -> str:
    """Guess MIME type from file extension."""
    _, ext = posixpath.splitext(filename)
    return MIME_TYPES.get(ext.lstrip(".").lower(), "application/octet-stream")


@dataclass(frozen=True)
class Scope:
    """A (login, account-label) pair identifying one logical account."""

    login: str
    label: str

    def __str__(self) -> str:
        return f"{self.login}/{self.label}"


class CheckpointResult(str, Enum):
    """Outcome of a historical scan of one period."""

    FOUND = "found"
    NONE = "none"


@dataclass
class DocumentMetadata:
    """Typed view over the documented subset of document metadata keys."""

    account_name: Optional[str] = None
    account_last4: Optional[str] = None
    period: Optional[str] = None
    attachment_key: Optional[str] = None
    attachment_part: Optional[str] = None
    checkpoint_scope: Optional[str] = None
    checkpoint_version: Optional[int] = None
    checkpoint_month: Optional[str] = None
    checkpoint_final: bool = False
    checkpoint_result: Optional[CheckpointResult] = None

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "DocumentMetadata":
        """Read the documented keys from a raw metadata map, ignoring the rest."""

        def _str(key: str) -> Optional[str]:
            value = raw.get(key)
            return str(value) if value is not None and value != "" else None

        version = raw.get(META_CHECKPOINT_VERSION)
        result = raw.get(META_CHECKPOINT_RESULT)
        attachment_key = _str(META_ATTACHMENT_KEY)

        return cls(
            account_name=_str(META_ACCOUNT_NAME),
            account_last4=_str(META_ACCOUNT_LAST4),
            period=_str(META_PERIOD),
            attachment_key=attachment_key,
            attachment_part=(
                _str(META_ATTACHMENT_PART) or DEFAULT_ATTACHMENT_PART
                if attachment_key
                else _str(META_ATTACHMENT_PART)
            ),
            checkpoint_scope=_str(META_CHECKPOINT_SCOPE),
            checkpoint_version=int(version) if version is not None else None,
            checkpoint_month=_str(META_CHECKPOINT_MONTH),
            checkpoint_final=_flag(raw.get(META_CHECKPOINT_FINAL)),
            checkpoint_result=CheckpointResult(result) if result else None,
        )


def _flag(value: Any) -> bool:
    """Read checkpointFinal: a boolean, or the strings "true" / "false"."""
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise CheckpointError(f"{META_CHECKPOINT_FINAL} must be true or false, got: {value!r}")


@dataclass
class Document:
    """An immutable saved artifact scoped to (login, label)."""

    scope: Scope
    filename: str
    mime_type: str
    saved_at: str  # ISO timestamp
    size: int = 0
    sha256: str = ""
    coverage_end_date: Optional[str] = None  # YYYY-MM-DD
    scrape_session_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def meta(self) -> DocumentMetadata:
        """Documented metadata subset."""
        return DocumentMetadata.from_raw(self.metadata)

    def to_dict(self) -> dict:
        """Listing shape exposed to the UI and the engines."""
        return {
            "filename": self.filename,
            "coverageEndDate": self.coverage_end_date,
            "scrapeSessionId": self.scrape_session_id,
            "mimeType": self.mime_type,
            "savedAt": self.saved_at,
            "size": self.size,
            "sha256": self.sha256,
            "metadata": dict(self.metadata),
        }


@dataclass
class Checkpoint:
    """Marker recording the result of a historical scan of one period."""

    scope: str
    version: int
    period: str  # YYYY-MM
    result: CheckpointResult
    final: bool
    recorded_at: str

    def to_dict(self) -> dict:
        return {
            "checkpointScope": self.scope,
            "checkpointVersion": self.version,
            "checkpointMonth": self.period,
            "checkpointResult": self.result.value,
            "checkpointFinal": self.final,
            "recordedAt": self.recorded_at,
        }
