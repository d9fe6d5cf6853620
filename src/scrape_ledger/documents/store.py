"""
Content-scoped artifact store.

Bytes live on disk at
    <ledger_dir>/logins/<login>/accounts/<label>/documents/<filename>
and metadata lives in the state store's documents table. A document is
visible (listed) only once its metadata row exists, and the row is inserted
only after the bytes are fully written under the final name.

save() is the single idempotency primitive of the pipeline: saving a filename
that already exists in the scope is a logged no-op returning stored=False.
"""

import logging
import os
import posixpath
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..errors import ArtifactConflictError, InvalidFilenameError
from ..logins import validate_label
from ..schemas.dedupe import compute_file_hash
from ..schemas.documents import (
    DEFAULT_ATTACHMENT_PART,
    META_ATTACHMENT_KEY,
    META_ATTACHMENT_PART,
    Document,
    DocumentMetadata,
    Scope,
    guess_mime_type,
)
from ..state_store import StateStore, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """Outcome of ArtifactStore.save()."""

    stored: bool
    document: Optional[Document]


def validate_filename(filename: str) -> str:
    """
    Validate an artifact filename (relative POSIX path within the scope).

    Raises:
        InvalidFilenameError: If the name is empty, absolute, uses backslashes
            or escapes the scope directory
    """
    if not filename or not filename.strip():
        raise InvalidFilenameError("filename must not be empty")
    if "\\" in filename or "\x00" in filename:
        raise InvalidFilenameError(f"invalid characters in filename: {filename!r}")
    if filename.startswith("/") or posixpath.isabs(filename):
        raise InvalidFilenameError(f"filename must be relative: {filename!r}")
    parts = filename.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise InvalidFilenameError(f"filename has empty, '.' or '..' parts: {filename!r}")
    return filename


class ArtifactStore:
    """Immutable, filename-deduplicated document storage per (login, label)."""

    def __init__(self, ledger_dir: Path | str, state_store: StateStore):
        self.ledger_dir = Path(ledger_dir)
        self.state_store = state_store

    def scope_dir(self, scope: Scope) -> Path:
        validate_label(scope.login)
        validate_label(scope.label)
        return self.ledger_dir / "logins" / scope.login / "accounts" / scope.label / "documents"

    def path_for(self, scope: Scope, filename: str) -> Path:
        """Absolute path of a document's bytes."""
        return self.scope_dir(scope).joinpath(*validate_filename(filename).split("/"))

    def save(
        self,
        scope: Scope,
        filename: str,
        data: bytes,
        metadata: Optional[dict[str, Any]] = None,
        *,
        coverage_end_date: Optional[str] = None,
        mime_type: Optional[str] = None,
        scrape_session_id: Optional[str] = None,
    ) -> SaveResult:
        """
        Save an artifact unless the filename (or the attachment key/part it
        carries) already exists in the scope.

        Write errors propagate to the caller.
        """
        validate_filename(filename)
        metadata = dict(metadata or {})
        meta = DocumentMetadata.from_raw(metadata)
        if meta.attachment_key and META_ATTACHMENT_PART not in metadata:
            metadata[META_ATTACHMENT_PART] = DEFAULT_ATTACHMENT_PART

        existing = self.state_store.get_document(scope, filename)
        if existing is not None:
            logger.info("Skipping %s in %s: already stored", filename, scope)
            return SaveResult(stored=False, document=existing)

        if meta.attachment_key:
            part = metadata[META_ATTACHMENT_PART]
            attached = self.state_store.find_document_by_attachment(
                scope, meta.attachment_key, part
            )
            if attached is not None:
                logger.info(
                    "Skipping %s in %s: attachment %s (%s) already stored as %s",
                    filename,
                    scope,
                    metadata[META_ATTACHMENT_KEY],
                    part,
                    attached.filename,
                )
                return SaveResult(stored=False, document=attached)

        path = self.path_for(scope, filename)
        published = self._publish(path, data)
        sha256 = compute_file_hash(data)
        if not published:
            # A file without a metadata row is left by an interrupted save or
            # is being recorded by a concurrent one. Adopt it only if it holds
            # the same bytes.
            if compute_file_hash(path.read_bytes()) != sha256:
                winner = self.state_store.get_document(scope, filename)
                if winner is not None:
                    logger.info("Skipping %s in %s: stored concurrently", filename, scope)
                    return SaveResult(stored=False, document=winner)
                logger.error("Refusing to adopt %s in %s: content differs", filename, scope)
                raise ArtifactConflictError(str(path))
            logger.warning("Adopting unrecorded file %s in %s", filename, scope)

        document = Document(
            scope=scope,
            filename=filename,
            mime_type=mime_type or guess_mime_type(filename),
            saved_at=utc_now(),
            size=len(data),
            sha256=sha256,
            coverage_end_date=coverage_end_date,
            scrape_session_id=scrape_session_id,
            metadata=metadata,
        )

        if not self.state_store.insert_document(document):
            winner = self.state_store.get_document(scope, filename)
            if winner is None and published:
                # Lost an attachment race under a different filename.
                path.unlink(missing_ok=True)
                winner = self.state_store.find_document_by_attachment(
                    scope, meta.attachment_key or "", metadata.get(META_ATTACHMENT_PART, "")
                )
            logger.info("Skipping %s in %s: stored concurrently", filename, scope)
            return SaveResult(stored=False, document=winner)

        logger.info("Stored %s in %s (%d bytes)", filename, scope, document.size)
        return SaveResult(stored=True, document=document)

    def _publish(self, path: Path, data: bytes) -> bool:
        """
        Write data under path with exclusive-create semantics.

        Returns:
            False if path already existed (nothing written)
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            try:
                os.link(tmp_name, path)
            except FileExistsError:
                return False
            return True
        finally:
            os.unlink(tmp_name)

    def get(self, scope: Scope, filename: str) -> Optional[Document]:
        return self.state_store.get_document(scope, filename)

    def exists(self, scope: Scope, filename: str) -> bool:
        return self.state_store.document_exists(scope, filename)

    def read_bytes(self, scope: Scope, filename: str) -> bytes:
        """
        Read a stored document.

        Raises:
            FileNotFoundError: If the document is not recorded in the scope
        """
        if not self.state_store.document_exists(scope, filename):
            raise FileNotFoundError(f"{filename} not stored in {scope}")
        return self.path_for(scope, filename).read_bytes()

    def has_attachment(
        self, scope: Scope, attachment_key: str, attachment_part: str = DEFAULT_ATTACHMENT_PART
    ) -> bool:
        """True if the (attachment key, part) pair is already stored in the scope."""
        return (
            self.state_store.find_document_by_attachment(scope, attachment_key, attachment_part)
            is not None
        )

    def list_scopes(self, login: str) -> list[str]:
        """Labels of a login with at least one stored document."""
        return self.state_store.list_document_labels(login)

    def list(self, scope: Scope) -> list[Document]:
        """Documents of a scope ordered by filename."""
        return self.state_store.list_documents(scope)
