"""
SQLite-based state store implementation.

Tables:
- documents: Artifact metadata, UNIQUE per (login, label, filename)
- journal_entries: Candidate journal entries per scope (JSON payload)
- checkpoints: Historical scan markers (migration 001)
- operations: Append-only audit log of journal/GL operations (migration 002)
- reconciliation_links: Ledger transaction id -> entry legs (migration 003)

Artifact bytes do not live here; see documents.store.ArtifactStore.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..schemas.documents import Checkpoint, CheckpointResult, Document, Scope
from ..schemas.journal_entry import JournalEntry

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """Current UTC time as ISO timestamp with Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ReconciliationLink:
    """One entry leg attached to a ledger transaction."""

    txn_id: str
    scope: Scope
    entry_id: str
    posting_index: Optional[int]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReconciliationLink":
        """Create from database row."""
        return cls(
            txn_id=row["txn_id"],
            scope=Scope(row["login"], row["label"]),
            entry_id=row["entry_id"],
            posting_index=row["posting_index"],
            created_at=row["created_at"],
        )


@dataclass
class OperationRecord:
    """Record of a journal or GL operation."""

    id: int
    kind: str
    payload: dict[str, Any]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OperationRecord":
        return cls(
            id=row["id"],
            kind=row["kind"],
            payload=json.loads(row["payload_json"]),
            created_at=row["created_at"],
        )


def _document_from_row(row: sqlite3.Row) -> Document:
    return Document(
        scope=Scope(row["login"], row["label"]),
        filename=row["filename"],
        mime_type=row["mime_type"],
        saved_at=row["saved_at"],
        size=row["size"],
        sha256=row["sha256"],
        coverage_end_date=row["coverage_end_date"],
        scrape_session_id=row["scrape_session_id"],
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
    )


def _checkpoint_from_row(row: sqlite3.Row) -> Checkpoint:
    return Checkpoint(
        scope=row["scope"],
        version=row["version"],
        period=row["period"],
        result=CheckpointResult(row["result"]),
        final=bool(row["final"]),
        recorded_at=row["recorded_at"],
    )


class StateStore:
    """
    SQLite-based state store for the pipeline.

    Provides persistent tracking of:
    - Saved artifact metadata
    - Candidate journal entries and their reconciliation pointers
    - Checkpoints
    - Operations log

    Every public method opens its own short transaction. Engines that need a
    read-compute-write cycle against one scope use immediate(), which takes
    the SQLite write lock up front so two calls never interleave.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def immediate(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for an atomic read-modify-write transaction.

        Issues BEGIN IMMEDIATE so the write lock is held from the first read.
        Rolls back everything on any exception.
        """
        conn = self._get_connection()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Artifact metadata
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    login TEXT NOT NULL,
                    label TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    size INTEGER NOT NULL DEFAULT 0,
                    sha256 TEXT NOT NULL DEFAULT '',
                    coverage_end_date TEXT,
                    scrape_session_id TEXT,
                    metadata_json TEXT,
                    saved_at TEXT NOT NULL,
                    UNIQUE(login, label, filename)
                )
            """
            )

            # Candidate journal entries
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS journal_entries (
                    login TEXT NOT NULL,
                    label TEXT NOT NULL,
                    entry_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    entry_json TEXT NOT NULL,
                    reconciled INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (login, label, entry_id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_scope ON documents(login, label)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_session ON documents(scrape_session_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_scope ON journal_entries(login, label, position)"
            )

            # Set schema version
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Document methods

    def insert_document(self, document: Document) -> bool:
        """
        Insert artifact metadata.

        Returns:
            False if a row already exists for the same (scope, filename) or the
            same (scope, attachment key, attachment part). Existing rows are
            never updated.
        """
        meta = document.meta
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO documents
                    (login, label, filename, mime_type, size, sha256, coverage_end_date,
                     scrape_session_id, metadata_json, saved_at, attachment_key, attachment_part)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        document.scope.login,
                        document.scope.label,
                        document.filename,
                        document.mime_type,
                        document.size,
                        document.sha256,
                        document.coverage_end_date,
                        document.scrape_session_id,
                        json.dumps(document.metadata, sort_keys=True),
                        document.saved_at,
                        meta.attachment_key,
                        meta.attachment_part if meta.attachment_key else None,
                    ),
                )
            return True
        except sqlite3.IntegrityError:
            return False

    def get_document(self, scope: Scope, filename: str) -> Document | None:
        """Get a document record by scope and filename."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE login = ? AND label = ? AND filename = ?",
                (scope.login, scope.label, filename),
            ).fetchone()
            return _document_from_row(row) if row else None

    def document_exists(self, scope: Scope, filename: str) -> bool:
        """Check if a document has been saved for a scope."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM documents WHERE login = ? AND label = ? AND filename = ?",
                (scope.login, scope.label, filename),
            ).fetchone()
            return row is not None

    def list_documents(self, scope: Scope) -> list[Document]:
        """List documents for a scope, ordered by filename."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE login = ? AND label = ? ORDER BY filename",
                (scope.login, scope.label),
            ).fetchall()
            return [_document_from_row(row) for row in rows]

    def list_documents_by_session(self, scrape_session_id: str) -> list[Document]:
        """List documents produced by one scrape session."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE scrape_session_id = ? "
                "ORDER BY login, label, filename",
                (scrape_session_id,),
            ).fetchall()
            return [_document_from_row(row) for row in rows]

    def find_document_by_attachment(
        self, scope: Scope, attachment_key: str, attachment_part: str
    ) -> Document | None:
        """Find the document saved for an (attachment key, part) within a scope."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM documents
                WHERE login = ? AND label = ? AND attachment_key = ? AND attachment_part = ?
            """,
                (scope.login, scope.label, attachment_key, attachment_part),
            ).fetchone()
            return _document_from_row(row) if row else None

    def list_document_labels(self, login: str) -> list[str]:
        """Labels of a login that have at least one document."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT label FROM documents WHERE login = ? ORDER BY label",
                (login,),
            ).fetchall()
            return [row["label"] for row in rows]

    # Checkpoint methods

    def get_checkpoint(self, scope: str, version: int, period: str) -> Checkpoint | None:
        """Get a checkpoint by exact (scope, version, period)."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM checkpoints WHERE scope = ? AND version = ? AND period = ?",
                (scope, version, period),
            ).fetchone()
            return _checkpoint_from_row(row) if row else None

    def upsert_checkpoint(
        self, scope: str, version: int, period: str, result: CheckpointResult, final: bool
    ) -> Checkpoint:
        """
        Insert or update a checkpoint.

        A final checkpoint is never downgraded: once final, later records keep
        the final flag and the original result.
        """
        now = utc_now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO checkpoints (scope, version, period, result, final, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(scope, version, period) DO UPDATE SET
                    result = CASE WHEN checkpoints.final = 1
                                  THEN checkpoints.result ELSE excluded.result END,
                    recorded_at = CASE WHEN checkpoints.final = 1
                                       THEN checkpoints.recorded_at ELSE excluded.recorded_at END,
                    final = MAX(checkpoints.final, excluded.final)
            """,
                (scope, version, period, result.value, 1 if final else 0, now),
            )
            row = conn.execute(
                "SELECT * FROM checkpoints WHERE scope = ? AND version = ? AND period = ?",
                (scope, version, period),
            ).fetchone()
            return _checkpoint_from_row(row)

    def list_checkpoints(self, scope: str, version: int | None = None) -> list[Checkpoint]:
        """List checkpoints of a checkpoint scope, ordered by version and period."""
        with self._transaction() as conn:
            if version is None:
                rows = conn.execute(
                    "SELECT * FROM checkpoints WHERE scope = ? ORDER BY version, period",
                    (scope,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM checkpoints WHERE scope = ? AND version = ? ORDER BY period",
                    (scope, version),
                ).fetchall()
            return [_checkpoint_from_row(row) for row in rows]

    def list_checkpoint_scopes(self, prefix: str = "") -> list[str]:
        """Distinct checkpoint scopes starting with prefix."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT scope FROM checkpoints WHERE scope LIKE ? ESCAPE '\\' "
                "ORDER BY scope",
                (escaped + "%",),
            ).fetchall()
            return [row["scope"] for row in rows]

    # Journal entry methods (connection-scoped, for use inside immediate())

    def fetch_entries(self, conn: sqlite3.Connection, scope: Scope) -> list[JournalEntry]:
        """Load all entries of a scope in journal order."""
        rows = conn.execute(
            "SELECT entry_json FROM journal_entries WHERE login = ? AND label = ? "
            "ORDER BY position",
            (scope.login, scope.label),
        ).fetchall()
        return [JournalEntry.from_dict(json.loads(row["entry_json"])) for row in rows]

    def fetch_entry(
        self, conn: sqlite3.Connection, scope: Scope, entry_id: str
    ) -> JournalEntry | None:
        """Load one entry of a scope."""
        row = conn.execute(
            "SELECT entry_json FROM journal_entries WHERE login = ? AND label = ? AND entry_id = ?",
            (scope.login, scope.label, entry_id),
        ).fetchone()
        return JournalEntry.from_dict(json.loads(row["entry_json"])) if row else None

    def insert_entry(self, conn: sqlite3.Connection, scope: Scope, entry: JournalEntry) -> None:
        """Append a new entry at the end of the scope's journal."""
        now = utc_now()
        position = conn.execute(
            "SELECT COALESCE(MAX(position), 0) + 1 FROM journal_entries "
            "WHERE login = ? AND label = ?",
            (scope.login, scope.label),
        ).fetchone()[0]
        conn.execute(
            """
            INSERT INTO journal_entries
            (login, label, entry_id, position, date, entry_json, reconciled, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                scope.login,
                scope.label,
                entry.id,
                position,
                entry.date,
                json.dumps(entry.to_dict(), sort_keys=True),
                1 if entry.is_reconciled else 0,
                now,
                now,
            ),
        )

    def update_entry(self, conn: sqlite3.Connection, scope: Scope, entry: JournalEntry) -> None:
        """Persist an existing entry (pointers / accumulated evidence)."""
        cursor = conn.execute(
            """
            UPDATE journal_entries
            SET entry_json = ?, reconciled = ?, updated_at = ?
            WHERE login = ? AND label = ? AND entry_id = ?
        """,
            (
                json.dumps(entry.to_dict(), sort_keys=True),
                1 if entry.is_reconciled else 0,
                utc_now(),
                scope.login,
                scope.label,
                entry.id,
            ),
        )
        if cursor.rowcount != 1:
            raise KeyError(f"entry {entry.id} not found in {scope}")

    # Reconciliation link methods (connection-scoped)

    def insert_link(
        self,
        conn: sqlite3.Connection,
        txn_id: str,
        scope: Scope,
        entry_id: str,
        posting_index: Optional[int] = None,
    ) -> None:
        """Record that an entry leg is merged into a ledger transaction."""
        conn.execute(
            """
            INSERT INTO reconciliation_links
            (txn_id, login, label, entry_id, posting_index, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (txn_id, scope.login, scope.label, entry_id, posting_index, utc_now()),
        )

    def fetch_links(self, conn: sqlite3.Connection, txn_id: str) -> list[ReconciliationLink]:
        """All entry legs attached to a ledger transaction."""
        rows = conn.execute(
            "SELECT * FROM reconciliation_links WHERE txn_id = ? ORDER BY id",
            (txn_id,),
        ).fetchall()
        return [ReconciliationLink.from_row(row) for row in rows]

    def delete_link(
        self,
        conn: sqlite3.Connection,
        txn_id: str,
        scope: Scope,
        entry_id: str,
        posting_index: Optional[int] = None,
    ) -> None:
        """Detach one entry leg from a ledger transaction."""
        conn.execute(
            """
            DELETE FROM reconciliation_links
            WHERE txn_id = ? AND login = ? AND label = ? AND entry_id = ?
              AND posting_index IS ?
        """,
            (txn_id, scope.login, scope.label, entry_id, posting_index),
        )

    # Convenience readers

    def get_entries(self, scope: Scope) -> list[JournalEntry]:
        """All entries of a scope in journal order."""
        with self._transaction() as conn:
            return self.fetch_entries(conn, scope)

    def get_entry(self, scope: Scope, entry_id: str) -> JournalEntry | None:
        """One entry of a scope."""
        with self._transaction() as conn:
            return self.fetch_entry(conn, scope, entry_id)

    def get_unreconciled_entries(self, scope: Scope) -> list[JournalEntry]:
        """Entries of a scope with no reconciliation pointer."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT entry_json FROM journal_entries "
                "WHERE login = ? AND label = ? AND reconciled = 0 ORDER BY position",
                (scope.login, scope.label),
            ).fetchall()
            return [JournalEntry.from_dict(json.loads(row["entry_json"])) for row in rows]

    def list_entry_scopes(self) -> list[Scope]:
        """Scopes that have at least one journal entry."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT login, label FROM journal_entries ORDER BY login, label"
            ).fetchall()
            return [Scope(row["login"], row["label"]) for row in rows]

    # Operations log

    def append_operation(
        self, kind: str, payload: dict[str, Any], conn: sqlite3.Connection | None = None
    ) -> None:
        """Append an operation to the audit log (inside conn's transaction if given)."""
        statement = "INSERT INTO operations (kind, payload_json, created_at) VALUES (?, ?, ?)"
        params = (kind, json.dumps(payload, sort_keys=True), utc_now())
        if conn is not None:
            conn.execute(statement, params)
            return
        with self._transaction() as own_conn:
            own_conn.execute(statement, params)

    def list_operations(self, kind: str | None = None, limit: int = 100) -> list[OperationRecord]:
        """Most recent operations first."""
        with self._transaction() as conn:
            if kind:
                rows = conn.execute(
                    "SELECT * FROM operations WHERE kind = ? ORDER BY id DESC LIMIT ?",
                    (kind, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM operations ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            return [OperationRecord.from_row(row) for row in rows]

    # Statistics

    def get_stats(self) -> dict[str, int]:
        """Get pipeline statistics."""
        with self._transaction() as conn:
            stats: dict[str, int] = {}
            stats["documents_saved"] = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            stats["entries_total"] = conn.execute(
                "SELECT COUNT(*) FROM journal_entries"
            ).fetchone()[0]
            stats["entries_reconciled"] = conn.execute(
                "SELECT COUNT(*) FROM journal_entries WHERE reconciled = 1"
            ).fetchone()[0]
            stats["entries_unreconciled"] = stats["entries_total"] - stats["entries_reconciled"]
            stats["checkpoints_final"] = conn.execute(
                "SELECT COUNT(*) FROM checkpoints WHERE final = 1"
            ).fetchone()[0]
            stats["ledger_transactions"] = conn.execute(
                "SELECT COUNT(DISTINCT txn_id) FROM reconciliation_links"
            ).fetchone()[0]
            return stats
