"""
Migration 002: Create the append-only operations log.

Records journal and GL operations (extract, reconcile, unreconcile) with a
JSON payload for auditing.
"""

import sqlite3

VERSION = 2
NAME = "operations_log"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS operations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_operations_kind ON operations(kind)")
