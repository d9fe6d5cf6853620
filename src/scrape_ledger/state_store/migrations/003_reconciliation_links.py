"""
Migration 003: Create reconciliation_links table.

Maps a ledger transaction id to every entry leg merged into it, so a
transfer can be unreconciled from either side. posting_index is NULL for
whole-entry reconciliation.
"""

import sqlite3

VERSION = 3
NAME = "reconciliation_links"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS reconciliation_links (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            txn_id TEXT NOT NULL,
            login TEXT NOT NULL,
            label TEXT NOT NULL,
            entry_id TEXT NOT NULL,
            posting_index INTEGER,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_links_txn ON reconciliation_links(txn_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_links_entry "
        "ON reconciliation_links(login, label, entry_id)"
    )
