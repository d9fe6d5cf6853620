"""
Forward-only schema migrations for the state database.

Each module named NNN_<name>.py in this package defines VERSION, NAME and
upgrade(conn). A migration and the row recording it commit together.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

_PACKAGE = __name__.rsplit(".", 1)[0]


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Migrations shipped with the package, ordered by version."""
    found = []
    for path in Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py"):
        module = importlib.import_module(f"{_PACKAGE}.{path.stem}")
        found.append(Migration(module.VERSION, module.NAME, module.upgrade))
    found.sort(key=lambda m: m.version)
    return found


class MigrationRunner:
    """Applies pending migrations to one connection, tracked in `migrations`."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        with conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS migrations ("
                "version INTEGER PRIMARY KEY, name TEXT NOT NULL, applied_at TEXT NOT NULL)"
            )

    def get_applied_versions(self) -> set[int]:
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded; returns the versions applied."""
        applied = self.get_applied_versions()
        ran: list[int] = []
        for migration in get_all_migrations():
            if migration.version in applied:
                continue
            logger.info("Applying state migration %03d (%s)", migration.version, migration.name)
            try:
                with self.conn:
                    migration.upgrade(self.conn)
                    self.conn.execute(
                        "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                        (
                            migration.version,
                            migration.name,
                            datetime.now(timezone.utc).isoformat(timespec="seconds"),
                        ),
                    )
            except sqlite3.Error:
                logger.error("State migration %03d failed", migration.version)
                raise
            ran.append(migration.version)
        if ran:
            logger.info("State database migrated to version %d", ran[-1])
        return ran
