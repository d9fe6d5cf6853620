"""Reconciliation of journal entries against the general ledger."""

from .engine import ReconciliationEngine, TransferCandidate, build_ledger_engine, source_ref
from .firefly_engine import FireflyAPIError, FireflyLedgerEngine
from .journal_engine import JournalLedgerEngine
from .ledger_engine import (
    CommittedPosting,
    CommittedTransaction,
    LedgerEngine,
    ProposedPosting,
    ProposedTransaction,
    resolve_postings,
)

__all__ = [
    "CommittedPosting",
    "CommittedTransaction",
    "FireflyAPIError",
    "FireflyLedgerEngine",
    "JournalLedgerEngine",
    "LedgerEngine",
    "ProposedPosting",
    "ProposedTransaction",
    "ReconciliationEngine",
    "TransferCandidate",
    "build_ledger_engine",
    "resolve_postings",
    "source_ref",
]
