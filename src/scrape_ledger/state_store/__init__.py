"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Saved artifact metadata (bytes live on disk under the ledger dir)
- Candidate journal entries per (login, label)
- Historical scan checkpoints
- Reconciliation links and the operations log

Enforces uniqueness on (login, label, filename) and on entry id per scope.
"""

from .sqlite_store import OperationRecord, ReconciliationLink, StateStore, utc_now

__all__ = [
    "StateStore",
    "ReconciliationLink",
    "OperationRecord",
    "utc_now",
]
