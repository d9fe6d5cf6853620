"""
Reconciliation engine.

Links candidate journal entries to general-ledger transactions.

Each reconcile call is all-or-nothing:
- entry checks, the ledger commit and the pointer update run under one
  BEGIN IMMEDIATE transaction on the state store;
- if anything fails after the ledger accepted the transaction, the ledger
  transaction is removed again before the error propagates.

Posting sources written to the ledger have the form
"<login>/<label>:<entry_id>" with ":posting:<n>" appended for a single posting.
"""

import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ..config import Config, LoginConfig
from ..errors import (
    AlreadyReconciledError,
    EntryNotFoundError,
    LedgerError,
    LedgerRejectedError,
    LedgerValidationError,
    MissingAmountError,
    MissingCounterpartError,
    NotReconciledError,
    ReconciliationError,
    TransferMismatchError,
    UnmappedAccountError,
)
from ..schemas.documents import Scope
from ..schemas.journal_entry import JournalEntry
from ..state_store import StateStore
from .firefly_engine import FireflyLedgerEngine
from .journal_engine import JournalLedgerEngine
from .ledger_engine import CommittedTransaction, LedgerEngine, ProposedPosting, ProposedTransaction

logger = logging.getLogger(__name__)


def source_ref(scope: Scope, entry_id: str, posting_index: Optional[int] = None) -> str:
    ref = f"{scope.login}/{scope.label}:{entry_id}"
    if posting_index is not None:
        ref += f":posting:{posting_index}"
    return ref


@dataclass
class TransferCandidate:
    """Possible other leg of a transfer."""

    scope: Scope
    entry: JournalEntry
    days_apart: int

    @property
    def is_tagged_transfer(self) -> bool:
        return self.entry.tag_value("transfer") is not None

    def to_dict(self) -> dict:
        return {
            "login": self.scope.login,
            "label": self.scope.label,
            "daysApart": self.days_apart,
            "entry": self.entry.to_dict(),
        }


def build_ledger_engine(config: Config) -> LedgerEngine:
    """Ledger engine selected by reconciliation.ledger_engine."""
    if config.reconciliation.ledger_engine == "firefly":
        if config.firefly is None:
            raise LedgerError("ledger_engine is 'firefly' but no firefly section is configured")
        return FireflyLedgerEngine(
            base_url=config.firefly.base_url,
            token=config.firefly.token,
            timeout=config.firefly.timeout,
            max_retries=config.firefly.max_retries,
        )
    return JournalLedgerEngine(config.ledger_dir, hledger_path=config.reconciliation.hledger_path)


class ReconciliationEngine:
    """Reconciles journal entries of (login, label) scopes against the GL."""

    def __init__(
        self,
        state_store: StateStore,
        ledger: LedgerEngine,
        logins: Mapping[str, LoginConfig],
        transfer_window_days: int = 3,
        require_transfer_amounts_match: bool = True,
    ):
        self.state_store = state_store
        self.ledger = ledger
        self.logins = logins
        self.transfer_window_days = transfer_window_days
        self.require_transfer_amounts_match = require_transfer_amounts_match

    @classmethod
    def from_config(
        cls, config: Config, state_store: StateStore, ledger: Optional[LedgerEngine] = None
    ) -> "ReconciliationEngine":
        return cls(
            state_store,
            ledger or build_ledger_engine(config),
            config.logins,
            transfer_window_days=config.reconciliation.transfer_window_days,
            require_transfer_amounts_match=config.reconciliation.require_transfer_amounts_match,
        )

    def gl_account(self, scope: Scope) -> str:
        """
        GL account of a scope.

        Raises:
            UnmappedAccountError: Unknown login or label, or label ignored
        """
        login = self.logins.get(scope.login)
        if login is None:
            raise UnmappedAccountError(f"unknown login '{scope.login}'", scope)
        if login.is_ignored(scope.label):
            raise UnmappedAccountError("account label is intentionally ignored", scope)
        account = login.gl_account_for(scope.label)
        if not account:
            raise UnmappedAccountError("account label has no GL account mapping", scope)
        return account

    def _load(self, conn: sqlite3.Connection, scope: Scope, entry_id: str) -> JournalEntry:
        entry = self.state_store.fetch_entry(conn, scope, entry_id)
        if entry is None:
            raise EntryNotFoundError("journal entry not found", scope, entry_id)
        return entry

    def _commit(
        self, proposed: ProposedTransaction, scope: Scope, entry_id: str
    ) -> CommittedTransaction:
        try:
            return self.ledger.commit(proposed)
        except LedgerValidationError as e:
            raise LedgerRejectedError(f"ledger rejected transaction: {e}", scope, entry_id) from e

    def _compensate(self, txn_id: str) -> None:
        logger.warning(f"Rolling back ledger transaction {txn_id}")
        try:
            self.ledger.remove(txn_id)
        except LedgerError as e:
            logger.error(f"Could not roll back ledger transaction {txn_id}: {e}")

    def reconcile(
        self,
        scope: Scope,
        entry_id: str,
        counterpart_account: str,
        posting_index: Optional[int] = None,
    ) -> str:
        """
        Reconcile an entry (or one of its postings) against a counterpart
        account. The ledger infers the counterpart amount.

        Returns:
            Ledger transaction id
        """
        if not counterpart_account or not counterpart_account.strip():
            raise MissingCounterpartError("counterpart account must not be empty", scope, entry_id)
        counterpart_account = counterpart_account.strip()
        gl_account = self.gl_account(scope)

        txn_id: Optional[str] = None
        try:
            with self.state_store.immediate() as conn:
                entry = self._load(conn, scope, entry_id)
                ref = source_ref(scope, entry_id, posting_index)
                postings = self._own_postings(entry, scope, gl_account, posting_index, ref)
                postings.append(ProposedPosting(counterpart_account, None, ref))

                committed = self._commit(
                    ProposedTransaction(
                        date=entry.date,
                        description=entry.description,
                        postings=postings,
                        status=entry.status,
                        comment=entry.comment,
                    ),
                    scope,
                    entry_id,
                )
                txn_id = committed.id

                if posting_index is None:
                    entry.reconciled = txn_id
                else:
                    entry.reconciled_postings[posting_index] = txn_id
                self.state_store.update_entry(conn, scope, entry)
                self.state_store.insert_link(conn, txn_id, scope, entry_id, posting_index)
                self.state_store.append_operation(
                    "reconcile",
                    {
                        "login": scope.login,
                        "label": scope.label,
                        "entryId": entry_id,
                        "postingIndex": posting_index,
                        "counterpart": counterpart_account,
                        "txnId": txn_id,
                    },
                    conn=conn,
                )
        except BaseException:
            if txn_id is not None:
                self._compensate(txn_id)
            raise

        logger.info(f"Reconciled {scope} {entry_id} -> {txn_id}")
        return txn_id

    def _own_postings(
        self,
        entry: JournalEntry,
        scope: Scope,
        gl_account: str,
        posting_index: Optional[int],
        ref: str,
    ) -> list[ProposedPosting]:
        if entry.reconciled is not None:
            raise AlreadyReconciledError(
                f"already reconciled as {entry.reconciled}", scope, entry.id
            )

        if posting_index is None:
            if entry.reconciled_postings:
                raise AlreadyReconciledError(
                    "postings are reconciled individually; unreconcile them first", scope, entry.id
                )
            selected = list(entry.postings)
        else:
            if posting_index < 0 or posting_index >= len(entry.postings):
                raise ReconciliationError(
                    f"posting index {posting_index} out of range "
                    f"(entry has {len(entry.postings)} postings)",
                    scope,
                    entry.id,
                )
            if posting_index in entry.reconciled_postings:
                raise AlreadyReconciledError(
                    f"posting {posting_index} already reconciled as "
                    f"{entry.reconciled_postings[posting_index]}",
                    scope,
                    entry.id,
                )
            selected = [entry.postings[posting_index]]

        if not selected or any(p.amount is None for p in selected):
            raise MissingAmountError("entry amount is unknown", scope, entry.id)
        return [ProposedPosting(p.account or gl_account, p.amount, ref) for p in selected]

    def reconcile_transfer(
        self, scope_a: Scope, entry_id_a: str, scope_b: Scope, entry_id_b: str
    ) -> str:
        """
        Reconcile two entries as the two sides of one transfer.

        Returns:
            Ledger transaction id (set on both entries)
        """
        if scope_a == scope_b and entry_id_a == entry_id_b:
            raise ReconciliationError("cannot transfer an entry to itself", scope_a, entry_id_a)
        gl_a = self.gl_account(scope_a)
        gl_b = self.gl_account(scope_b)

        txn_id: Optional[str] = None
        try:
            with self.state_store.immediate() as conn:
                entry_a = self._load(conn, scope_a, entry_id_a)
                entry_b = self._load(conn, scope_b, entry_id_b)
                for scope, entry in ((scope_a, entry_a), (scope_b, entry_b)):
                    if entry.is_reconciled:
                        raise AlreadyReconciledError("entry already reconciled", scope, entry.id)
                    if len(entry.postings) != 1:
                        raise ReconciliationError(
                            "a transfer leg must have exactly one posting", scope, entry.id
                        )
                self._check_transfer_amounts(scope_a, entry_a, entry_b)

                committed = self._commit(
                    ProposedTransaction(
                        date=entry_a.date,
                        description=entry_a.description,
                        postings=[
                            ProposedPosting(gl_a, entry_a.amount, source_ref(scope_a, entry_id_a)),
                            ProposedPosting(gl_b, entry_b.amount, source_ref(scope_b, entry_id_b)),
                        ],
                        status=entry_a.status,
                        comment=f"transfer: {entry_b.description}",
                    ),
                    scope_a,
                    entry_id_a,
                )
                txn_id = committed.id

                for scope, entry in ((scope_a, entry_a), (scope_b, entry_b)):
                    entry.reconciled = txn_id
                    self.state_store.update_entry(conn, scope, entry)
                    self.state_store.insert_link(conn, txn_id, scope, entry.id)
                self.state_store.append_operation(
                    "reconcile_transfer",
                    {
                        "from": {
                            "login": scope_a.login,
                            "label": scope_a.label,
                            "entryId": entry_id_a,
                        },
                        "to": {
                            "login": scope_b.login,
                            "label": scope_b.label,
                            "entryId": entry_id_b,
                        },
                        "txnId": txn_id,
                    },
                    conn=conn,
                )
        except BaseException:
            if txn_id is not None:
                self._compensate(txn_id)
            raise

        logger.info(
            f"Reconciled transfer {scope_a} {entry_id_a} <-> {scope_b} {entry_id_b} -> {txn_id}"
        )
        return txn_id

    def _check_transfer_amounts(
        self, scope_a: Scope, entry_a: JournalEntry, entry_b: JournalEntry
    ) -> None:
        a, b = entry_a.amount, entry_b.amount
        if a is None and b is None:
            raise MissingAmountError("both transfer legs lack an amount", scope_a, entry_a.id)
        if a is None or b is None or not self.require_transfer_amounts_match:
            return
        if a.commodity != b.commodity:
            raise TransferMismatchError(
                f"transfer legs use different commodities ({a.commodity} vs {b.commodity})",
                scope_a,
                entry_a.id,
            )
        if a.quantity != -b.quantity:
            raise TransferMismatchError(
                f"transfer legs are not equal and opposite ({a} vs {b})", scope_a, entry_a.id
            )

    def unreconcile(self, scope: Scope, entry_id: str, posting_index: Optional[int] = None) -> None:
        """
        Undo a reconciliation.

        Removes the ledger transaction and clears every pointer to it (both
        legs of a transfer). When the ledger transaction carries postings of
        other entries too, only this entry's postings are removed.
        """
        with self.state_store.immediate() as conn:
            entry = self._load(conn, scope, entry_id)
            if posting_index is None:
                txn_id = entry.reconciled
                if txn_id is None:
                    hint = " (reconciled per posting)" if entry.reconciled_postings else ""
                    raise NotReconciledError(f"entry is not reconciled{hint}", scope, entry_id)
            else:
                txn_id = entry.reconciled_postings.get(posting_index)
                if txn_id is None:
                    raise NotReconciledError(
                        f"posting {posting_index} is not reconciled", scope, entry_id
                    )

            links = self.state_store.fetch_links(conn, txn_id)
            own = (scope, entry_id, posting_index)
            others = [
                link for link in links if (link.scope, link.entry_id, link.posting_index) != own
            ]
            committed = self.ledger.get(txn_id)
            partial = committed is not None and len(committed.postings) > 2 and bool(others)

            detached = [own] if partial else [own] + [
                (link.scope, link.entry_id, link.posting_index) for link in others
            ]
            for leg_scope, leg_id, leg_index in detached:
                leg = entry if (leg_scope, leg_id) == (scope, entry_id) else (
                    self.state_store.fetch_entry(conn, leg_scope, leg_id)
                )
                if leg is not None:
                    if leg_index is None:
                        leg.reconciled = None
                    else:
                        leg.reconciled_postings.pop(leg_index, None)
                    self.state_store.update_entry(conn, leg_scope, leg)
                self.state_store.delete_link(conn, txn_id, leg_scope, leg_id, leg_index)

            self.state_store.append_operation(
                "unreconcile",
                {
                    "login": scope.login,
                    "label": scope.label,
                    "entryId": entry_id,
                    "postingIndex": posting_index,
                    "txnId": txn_id,
                    "partial": partial,
                },
                conn=conn,
            )

            if committed is None:
                logger.warning(f"Ledger transaction {txn_id} no longer exists; clearing pointers")
            elif partial:
                self.ledger.remove_postings(txn_id, source_ref(scope, entry_id, posting_index))
            else:
                self.ledger.remove(txn_id)

        logger.info(f"Unreconciled {scope} {entry_id} (ledger transaction {txn_id})")

    def get_unreconciled(self, scope: Scope) -> list[JournalEntry]:
        """Entries with neither a whole-entry nor a per-posting pointer."""
        return self.state_store.get_unreconciled_entries(scope)

    def find_transfer_candidates(
        self, scope: Scope, entry_id: str, date_window_days: Optional[int] = None
    ) -> list[TransferCandidate]:
        """
        Unreconciled entries in other mapped scopes with the equal and
        opposite amount within the date window. Transfer-tagged entries
        come first, then the closest dates.
        """
        window = self.transfer_window_days if date_window_days is None else date_window_days
        entry = self.state_store.get_entry(scope, entry_id)
        if entry is None:
            raise EntryNotFoundError("journal entry not found", scope, entry_id)
        amount = entry.amount
        if amount is None:
            return []
        entry_date = date.fromisoformat(entry.date)

        candidates = []
        for other_scope in self.state_store.list_entry_scopes():
            if other_scope == scope:
                continue
            try:
                self.gl_account(other_scope)
            except UnmappedAccountError:
                continue
            for other in self.state_store.get_unreconciled_entries(other_scope):
                other_amount = other.amount
                if other_amount is None or other_amount != -amount:
                    continue
                days_apart = abs((date.fromisoformat(other.date) - entry_date).days)
                if days_apart <= window:
                    candidates.append(TransferCandidate(other_scope, other, days_apart))

        candidates.sort(
            key=lambda c: (
                not c.is_tagged_transfer,
                c.days_apart,
                c.scope.login,
                c.scope.label,
                c.entry.id,
            )
        )
        return candidates
