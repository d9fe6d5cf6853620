"""
Candidate journal entry (SSOT).

A JournalEntry is an extracted transaction candidate for one scope. Its id
never changes. After creation only these change:
- the reconciliation pointers (reconciled / reconciled_postings),
- evidence, which only ever grows (append-only, deduplicated, in the order
  artifacts were processed), and
- while unreconciled, status, description, comment and amount when a later
  artifact reports the same transaction more finally (extraction.dedup).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


class EntryStatus(str, Enum):
    """Status of an entry, matching hledger conventions."""

    UNMARKED = "unmarked"
    PENDING = "pending"
    CLEARED = "cleared"

    @property
    def marker(self) -> str:
        """hledger status marker (including trailing space)."""
        return {"unmarked": "", "pending": "! ", "cleared": "* "}[self.value]

    @classmethod
    def parse(cls, value: Optional[str]) -> "EntryStatus":
        """Parse loose status strings ("Cleared", "*", "pending", ...)."""
        if not value:
            return cls.UNMARKED
        normalized = value.strip().lower()
        if normalized in ("cleared", "posted", "*"):
            return cls.CLEARED
        if normalized in ("pending", "!"):
            return cls.PENDING
        return cls.UNMARKED


@dataclass(frozen=True)
class Amount:
    """A signed quantity of one commodity."""

    quantity: Decimal
    commodity: str = "USD"

    def __str__(self) -> str:
        return f"{self.quantity:.2f} {self.commodity}"

    def __neg__(self) -> "Amount":
        return Amount(quantity=-self.quantity, commodity=self.commodity)

    def to_dict(self) -> dict:
        return {"quantity": str(self.quantity), "commodity": self.commodity}

    @classmethod
    def from_dict(cls, data: dict) -> "Amount":
        return cls(quantity=Decimal(str(data["quantity"])), commodity=data.get("commodity", "USD"))


@dataclass(frozen=True)
class EntryPosting:
    """One leg of an entry.

    account=None means the scope's own GL account (from the login mapping).
    amount=None means the amount is unknown (pending, fee placeholder).
    """

    amount: Optional[Amount] = None
    account: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "account": self.account,
            "amount": self.amount.to_dict() if self.amount else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EntryPosting":
        amount = data.get("amount")
        return cls(
            account=data.get("account"),
            amount=Amount.from_dict(amount) if amount else None,
        )


@dataclass
class JournalEntry:
    """Extracted transaction candidate for one (login, label)."""

    id: str
    date: str  # YYYY-MM-DD
    description: str
    status: EntryStatus = EntryStatus.UNMARKED
    postings: list[EntryPosting] = field(default_factory=list)
    evidence: list[str] = field(default_factory=list)
    comment: str = ""
    tags: list[tuple[str, str]] = field(default_factory=list)
    extracted_by: Optional[str] = None

    # Reconciliation pointers (the only mutable fields)
    reconciled: Optional[str] = None
    reconciled_postings: dict[int, str] = field(default_factory=dict)

    @property
    def amount(self) -> Optional[Amount]:
        """Amount of the primary posting."""
        return self.postings[0].amount if self.postings else None

    @property
    def is_reconciled(self) -> bool:
        """True if the entry or any of its postings is reconciled."""
        return self.reconciled is not None or bool(self.reconciled_postings)

    def tag_value(self, key: str) -> Optional[str]:
        """Get the value of a tag by key name."""
        for k, v in self.tags:
            if k == key:
                return v
        return None

    @property
    def bank_id(self) -> Optional[str]:
        return self.tag_value("bankId")

    def has_evidence(self, evidence_ref: str) -> bool:
        return evidence_ref in self.evidence

    def add_evidence(self, evidence_ref: str) -> bool:
        """Append an evidence reference if not already present.

        Returns:
            True if the reference was added
        """
        if evidence_ref in self.evidence:
            return False
        self.evidence.append(evidence_ref)
        return True

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "status": self.status.value,
            "postings": [p.to_dict() for p in self.postings],
            "evidence": list(self.evidence),
            "comment": self.comment,
            "tags": [[k, v] for k, v in self.tags],
            "extractedBy": self.extracted_by,
            "reconciled": self.reconciled,
            "reconciledPostings": {str(k): v for k, v in sorted(self.reconciled_postings.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JournalEntry":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            date=data["date"],
            description=data["description"],
            status=EntryStatus(data.get("status", "unmarked")),
            postings=[EntryPosting.from_dict(p) for p in data.get("postings", [])],
            evidence=list(data.get("evidence", [])),
            comment=data.get("comment", ""),
            tags=[(k, v) for k, v in data.get("tags", [])],
            extracted_by=data.get("extractedBy"),
            reconciled=data.get("reconciled"),
            reconciled_postings={
                int(k): v for k, v in (data.get("reconciledPostings") or {}).items()
            },
        )
