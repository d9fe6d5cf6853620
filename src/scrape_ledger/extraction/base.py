"""
Base parser interface and common types.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ..schemas.documents import Document
from ..schemas.journal_entry import EntryPosting, EntryStatus

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class ExtractedTransaction:
    """One transaction row read from an artifact, before identity is assigned."""

    date: str  # YYYY-MM-DD
    description: str
    amount: Optional[Decimal]
    evidence: str
    commodity: str = "USD"
    status: EntryStatus = EntryStatus.CLEARED
    comment: str = ""
    bank_id: Optional[str] = None
    tags: list[tuple[str, str]] = field(default_factory=list)
    # Explicit postings (splits); None means a single posting at the scope's account
    postings: Optional[list[EntryPosting]] = None

    def validate(self, filename: str) -> None:
        """
        Check the row is usable.

        Raises:
            ValueError: Bad date, empty description, or evidence that does not
                reference the source document
        """
        if not self.date or not _ISO_DATE.match(self.date):
            raise ValueError(f"date must be YYYY-MM-DD, got: {self.date!r}")
        date.fromisoformat(self.date)
        if not self.description or not self.description.strip():
            raise ValueError("description must not be empty")
        rest = self.evidence[len(filename) :] if self.evidence.startswith(filename) else None
        if rest is None or not rest or rest[0] not in (":", "#"):
            raise ValueError(
                f"evidence must reference the input document '{filename}', got: {self.evidence!r}"
            )


class BaseParser(ABC):
    """
    Base class for all artifact parsers.

    Each parser understands one artifact layout (an institution's CSV export,
    a statement PDF, a JSON dump).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Parser name recorded as extracted_by on new entries."""
        pass

    @property
    def priority(self) -> int:
        """Higher = tried first."""
        return 0

    @abstractmethod
    def can_parse(self, document: Document, data: bytes) -> bool:
        """Check if this parser understands the artifact."""
        pass

    @abstractmethod
    def parse(self, document: Document, data: bytes) -> list[ExtractedTransaction]:
        """
        Read transactions in document order.

        Rows that cannot be read are skipped by the parser; rows that are read
        but fail ExtractedTransaction.validate() are counted by the engine.
        """
        pass
