"""
Cross-document deduplication of extracted rows.

Content-derived entry ids catch a row that is seen again unchanged. Institutions
also re-report the same transaction with a different date, description or
amount (a pending charge that posts a day later, a tip added on settlement).
DocumentMatcher resolves each row of one document against the scope's existing
entries, in this order:

1. same entry id (identical content)
2. same evidence reference
3. same bankId, in another document, exactly one candidate
4. fuzzy: another document, date within tolerance, equal amount, similar
   description, exactly one candidate
5. pending -> finalized: a cleared row replacing a pending entry from another
   document within pending_days, amount within the absolute or relative
   tolerance, exactly one candidate
6. ambiguous: more than one fuzzy candidate (reported, never merged)
7. new

Rows never merge with entries of their own document, and each existing entry
is matched by at most one row of a document.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..schemas.journal_entry import EntryStatus, JournalEntry
from .base import ExtractedTransaction

_NON_WORD = re.compile(r"[^0-9A-Z\s]")
_AMOUNT_EPSILON = Decimal("0.005")


class MatchKind(str, Enum):
    SAME_ENTRY = "same-entry"
    SAME_EVIDENCE = "same-evidence"
    BANK_ID = "bank-id"
    FUZZY = "fuzzy"
    PENDING_TO_FINALIZED = "pending-to-finalized"
    AMBIGUOUS = "ambiguous"
    NEW = "new"


@dataclass(frozen=True)
class DedupTolerances:
    """Date and amount windows used by the fuzzy and pending matches."""

    date_days: int = 1
    pending_days: int = 7
    pending_amount_abs: Decimal = Decimal("5.00")
    pending_amount_pct: Decimal = Decimal("0.20")


@dataclass
class DedupMatch:
    kind: MatchKind
    entry_id: Optional[str] = None
    candidate_ids: list[str] = field(default_factory=list)


def description_words(value: str) -> str:
    """Uppercase alphanumeric words of a description, single-spaced."""
    return " ".join(_NON_WORD.sub("", value.upper()).split())


def descriptions_similar(a: str, b: str) -> bool:
    """Equal, one containing the other, or at least half the words shared."""
    na, nb = description_words(a), description_words(b)
    if na == nb or na in nb or nb in na:
        return True
    words_a, words_b = set(na.split()), set(nb.split())
    if not words_a or not words_b:
        return False
    return len(words_a & words_b) / len(words_a | words_b) >= 0.5


def days_apart(a: str, b: str) -> Optional[int]:
    try:
        return abs((date.fromisoformat(a) - date.fromisoformat(b)).days)
    except ValueError:
        return None


def is_more_finalized(new: EntryStatus, old: EntryStatus) -> bool:
    order = [EntryStatus.UNMARKED, EntryStatus.PENDING, EntryStatus.CLEARED]
    return order.index(new) > order.index(old)


def is_from_document(entry: JournalEntry, filename: str) -> bool:
    """True if any evidence of the entry points into filename."""
    for ref in entry.evidence:
        if ref.startswith(filename) and ref[len(filename) : len(filename) + 1] in (":", "#"):
            return True
    return False


class DocumentMatcher:
    """Matches the rows of one document against a scope's existing entries."""

    def __init__(
        self,
        entries: Iterable[JournalEntry],
        filename: str,
        tolerances: Optional[DedupTolerances] = None,
    ):
        self.filename = filename
        self.tolerances = tolerances or DedupTolerances()
        self._entries = list(entries)
        self._by_id = {entry.id: entry for entry in self._entries}
        self._consumed: set[str] = set()

    def match(self, entry_id: str, txn: ExtractedTransaction, commodity: str) -> DedupMatch:
        if entry_id in self._by_id:
            return self._take(MatchKind.SAME_ENTRY, entry_id)

        open_entries = [e for e in self._entries if e.id not in self._consumed]
        for entry in open_entries:
            if entry.has_evidence(txn.evidence):
                return self._take(MatchKind.SAME_EVIDENCE, entry.id)

        others = [e for e in open_entries if not is_from_document(e, self.filename)]

        if txn.bank_id:
            same_bank_id = [e for e in others if e.bank_id == txn.bank_id]
            if len(same_bank_id) == 1:
                return self._take(MatchKind.BANK_ID, same_bank_id[0].id)

        fuzzy = [
            e
            for e in others
            if self._within(e.date, txn.date, self.tolerances.date_days)
            and self._amounts_equal(e, txn, commodity)
            and descriptions_similar(e.description, txn.description)
        ]
        if len(fuzzy) == 1:
            return self._take(MatchKind.FUZZY, fuzzy[0].id)

        if txn.status == EntryStatus.CLEARED:
            pending = [
                e
                for e in others
                if e.status == EntryStatus.PENDING
                and self._within(e.date, txn.date, self.tolerances.pending_days)
                and self._amounts_close(e, txn, commodity)
            ]
            if len(pending) == 1:
                return self._take(MatchKind.PENDING_TO_FINALIZED, pending[0].id)

        if len(fuzzy) > 1:
            return DedupMatch(MatchKind.AMBIGUOUS, candidate_ids=[e.id for e in fuzzy])
        return DedupMatch(MatchKind.NEW)

    def _take(self, kind: MatchKind, entry_id: str) -> DedupMatch:
        self._consumed.add(entry_id)
        return DedupMatch(kind, entry_id=entry_id)

    @staticmethod
    def _within(a: str, b: str, days: int) -> bool:
        apart = days_apart(a, b)
        return apart is not None and apart <= days

    @staticmethod
    def _quantities(
        entry: JournalEntry, txn: ExtractedTransaction, commodity: str
    ) -> Optional[tuple[Optional[Decimal], Optional[Decimal]]]:
        """Primary quantities of both sides; None when the commodities differ."""
        amount = entry.amount
        if amount is not None and txn.amount is not None and amount.commodity != commodity:
            return None
        return (amount.quantity if amount is not None else None), txn.amount

    def _amounts_equal(
        self, entry: JournalEntry, txn: ExtractedTransaction, commodity: str
    ) -> bool:
        pair = self._quantities(entry, txn, commodity)
        if pair is None:
            return False
        a, b = pair
        if a is None or b is None:
            return a is None and b is None
        return abs(a - b) < _AMOUNT_EPSILON

    def _amounts_close(
        self, entry: JournalEntry, txn: ExtractedTransaction, commodity: str
    ) -> bool:
        pair = self._quantities(entry, txn, commodity)
        if pair is None:
            return False
        a, b = pair
        if a is None or b is None:
            return a is None and b is None
        diff = abs(a - b)
        largest = max(abs(a), abs(b))
        if diff <= self.tolerances.pending_amount_abs:
            return True
        return largest > 0 and diff / largest <= self.tolerances.pending_amount_pct
