"""
Migration 001: Create checkpoints table.

One row per (scope, version, period). A row with final = 1 is never
downgraded by later records.
"""

import sqlite3

VERSION = 1
NAME = "checkpoints"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS checkpoints (
            scope TEXT NOT NULL,
            version INTEGER NOT NULL,
            period TEXT NOT NULL,  -- YYYY-MM
            result TEXT NOT NULL,  -- found, none
            final INTEGER NOT NULL DEFAULT 0,
            recorded_at TEXT NOT NULL,
            PRIMARY KEY (scope, version, period)
        )
        """
    )
