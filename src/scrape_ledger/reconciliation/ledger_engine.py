"""
Ledger engine interface.

The double-entry ledger is an external collaborator: it accepts a proposed
transaction and either returns the committed transaction (with every amount
resolved and the resulting balances) or rejects it with
LedgerValidationError, without partial application.
"""

import re
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ..errors import LedgerValidationError
from ..schemas.journal_entry import Amount, EntryStatus

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class ProposedPosting:
    """One leg of a proposed transaction; amount None = infer the balance."""

    account: str
    amount: Optional[Amount] = None
    source: Optional[str] = None


@dataclass
class ProposedTransaction:
    date: str
    description: str
    postings: list[ProposedPosting]
    status: EntryStatus = EntryStatus.CLEARED
    comment: str = ""
    tags: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class CommittedPosting:
    account: str
    amount: Amount
    source: Optional[str] = None


@dataclass
class CommittedTransaction:
    """A transaction as stored by the ledger engine."""

    id: str
    date: str
    description: str
    postings: list[CommittedPosting]
    status: EntryStatus = EntryStatus.CLEARED
    # account -> commodity -> balance after commit
    balances: dict[str, dict[str, Decimal]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "status": self.status.value,
            "postings": [
                {"account": p.account, "amount": p.amount.to_dict(), "source": p.source}
                for p in self.postings
            ],
            "balances": {
                account: {commodity: f"{qty:.2f}" for commodity, qty in by_commodity.items()}
                for account, by_commodity in self.balances.items()
            },
        }


def resolve_postings(proposed: ProposedTransaction) -> list[CommittedPosting]:
    """
    Validate a proposed transaction and infer its one missing amount.

    Raises:
        LedgerValidationError: Bad date, empty account, fewer than two
            postings, more than one amountless posting, or unbalanced
    """
    if not _ISO_DATE.match(proposed.date or ""):
        raise LedgerValidationError(f"transaction date must be YYYY-MM-DD, got: {proposed.date!r}")
    try:
        date.fromisoformat(proposed.date)
    except ValueError as e:
        raise LedgerValidationError(f"invalid transaction date {proposed.date!r}: {e}") from e
    if len(proposed.postings) < 2:
        raise LedgerValidationError("a transaction needs at least two postings")
    for posting in proposed.postings:
        if not posting.account or not posting.account.strip():
            raise LedgerValidationError("posting account must not be empty")

    amountless = [p for p in proposed.postings if p.amount is None]
    if len(amountless) > 1:
        raise LedgerValidationError(
            f"at most one posting may omit its amount, got {len(amountless)}"
        )

    sums: dict[str, Decimal] = defaultdict(Decimal)
    for posting in proposed.postings:
        if posting.amount is not None:
            sums[posting.amount.commodity] += posting.amount.quantity

    resolved = []
    if amountless:
        open_commodities = [c for c, total in sums.items() if total != 0]
        if len(open_commodities) > 1:
            raise LedgerValidationError(
                "cannot infer an amount balancing several commodities: "
                + ", ".join(sorted(open_commodities))
            )
        if open_commodities:
            inferred = Amount(-sums[open_commodities[0]], open_commodities[0])
        elif sums:
            inferred = Amount(Decimal("0"), next(iter(sums)))
        else:
            raise LedgerValidationError("transaction has no amounts")
        for posting in proposed.postings:
            amount = posting.amount if posting.amount is not None else inferred
            resolved.append(CommittedPosting(posting.account, amount, posting.source))
        return resolved

    unbalanced = {c: total for c, total in sums.items() if total != 0}
    if unbalanced:
        detail = ", ".join(f"{total:.2f} {c}" for c, total in sorted(unbalanced.items()))
        raise LedgerValidationError(f"transaction does not balance: off by {detail}")
    return [CommittedPosting(p.account, p.amount, p.source) for p in proposed.postings]


class LedgerEngine(ABC):
    """Black-box double-entry ledger."""

    @abstractmethod
    def commit(self, proposed: ProposedTransaction) -> CommittedTransaction:
        """Validate and store a transaction."""

    @abstractmethod
    def remove(self, txn_id: str) -> None:
        """
        Delete a transaction.

        Raises:
            LedgerTransactionNotFoundError: If txn_id does not exist
        """

    @abstractmethod
    def remove_postings(self, txn_id: str, source: str) -> bool:
        """
        Remove the postings carrying `source` from a transaction.

        Returns:
            False if no posting carries the source. Raises
            LedgerValidationError if the remainder would not balance.
        """

    @abstractmethod
    def get(self, txn_id: str) -> Optional[CommittedTransaction]:
        pass
