"""
PDF statement parsing (pdfplumber text layer).

Provident credit card statements list transactions as

    Post Date  Trans Date  Reference          Description              Amount
    01/11      01/09       2423168QSHRNYPXD1  SAFEWAY #1965 SEATTLE WA  $27.53

inside "Transactions" sections. The statement year comes from the
"Statement Closing Date MM/DD/YYYY" line; December rows on a January or
February statement belong to the previous year.
"""

import io
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

import pdfplumber

from ..schemas.dedupe import page_evidence_ref, parse_amount
from ..schemas.documents import Document
from ..schemas.journal_entry import EntryStatus
from .base import BaseParser, ExtractedTransaction

logger = logging.getLogger(__name__)

CLOSING_DATE_PATTERN = re.compile(r"Statement Closing Date\s+(\d{2})/(\d{2})/(\d{4})")
ROW_PATTERN = re.compile(
    r"^\s*(\d{2}/\d{2})\s+(\d{2}/\d{2})\s+([A-Z0-9]{10,})\s+(.+?)\s+(-?\$?[\d,]+\.\d{2})\s*$"
)
SECTION_START = re.compile(r"Transactions\b", re.IGNORECASE)
SECTION_END = re.compile(
    r"Fees\b|Interest Charged\b|Interest Charge Calculation\b|REBATE REWARDS ACTIVITY",
    re.IGNORECASE,
)
_FILENAME_DATE = re.compile(r"(\d{4})-\d{2}-\d{2}")


@dataclass
class StatementRow:
    """A transaction row read from statement text."""

    date: str
    reference: str
    description: str
    amount: str
    page: int


def _closing_date(pages: list[str]) -> Optional[date]:
    for text in pages:
        match = CLOSING_DATE_PATTERN.search(text)
        if match:
            month, day, year = (int(g) for g in match.groups())
            return date(year, month, day)
    return None


def parse_statement_text(
    pages: list[str], filename: str = "", today: Optional[date] = None
) -> list[StatementRow]:
    """
    Parse statement page texts into rows.

    The year falls back to a YYYY-MM-DD in the filename, then to today's year.
    """
    closing = _closing_date(pages)
    if closing is not None:
        year = closing.year
    else:
        match = _FILENAME_DATE.search(filename)
        year = int(match.group(1)) if match else (today or date.today()).year

    rows = []
    for page_number, text in enumerate(pages, start=1):
        in_section = False
        for line in text.split("\n"):
            if SECTION_START.search(line):
                in_section = True
                continue
            if SECTION_END.search(line):
                in_section = False
                continue
            if not in_section:
                continue

            match = ROW_PATTERN.match(line)
            if not match:
                continue
            _post_date, trans_date, reference, description, amount = match.groups()
            month, day = trans_date.split("/")
            row_year = year
            if closing is not None and closing.month < 3 and int(month) > 10:
                row_year = closing.year - 1
            rows.append(
                StatementRow(
                    date=f"{row_year:04d}-{month}-{day}",
                    reference=reference,
                    description=description.strip(),
                    amount=amount,
                    page=page_number,
                )
            )
    return rows


def extract_pdf_pages(data: bytes) -> list[str]:
    """Text of each PDF page (empty string for pages without a text layer)."""
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        return [page.extract_text() or "" for page in pdf.pages]


class ProvidentStatementPdfParser(BaseParser):
    """Provident credit card statement PDFs."""

    @property
    def name(self) -> str:
        return "providentcu-statement-pdf"

    @property
    def priority(self) -> int:
        return 40

    def can_parse(self, document: Document, data: bytes) -> bool:
        return data[:5] == b"%PDF-" or document.mime_type == "application/pdf"

    def parse(self, document: Document, data: bytes) -> list[ExtractedTransaction]:
        pages = extract_pdf_pages(data)
        rows = parse_statement_text(pages, document.filename)
        logger.debug("%s: %d statement rows on %d pages", document.filename, len(rows), len(pages))
        return [
            ExtractedTransaction(
                date=row.date,
                description=row.description,
                amount=parse_amount(row.amount),
                evidence=page_evidence_ref(document.filename, row.page),
                status=EntryStatus.CLEARED,
                comment=f"Ref: {row.reference}",
                bank_id=row.reference,
            )
            for row in rows
        ]
