"""
Migration 004: Add attachment key columns to documents.

Dedup of logical attachments is per (attachment_key, attachment_part) within
a scope; the partial unique index enforces it for rows that carry a key.
"""

import sqlite3

VERSION = 4
NAME = "document_attachments"


def upgrade(conn: sqlite3.Connection) -> None:
    cursor = conn.execute("PRAGMA table_info(documents)")
    columns = [row[1] for row in cursor.fetchall()]

    if "attachment_key" not in columns:
        conn.execute("ALTER TABLE documents ADD COLUMN attachment_key TEXT")
    if "attachment_part" not in columns:
        conn.execute("ALTER TABLE documents ADD COLUMN attachment_part TEXT")

    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_documents_attachment
        ON documents(login, label, attachment_key, attachment_part)
        WHERE attachment_key IS NOT NULL
        """
    )
