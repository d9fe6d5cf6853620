"""
CSV parsers.

Evidence references are {filename}:{row}:1 with 1-based rows counting the
header, so the first data row is row 2.
"""

import csv
import io
import logging
import re
from datetime import datetime
from typing import Optional

from ..schemas.dedupe import csv_evidence_ref, parse_amount
from ..schemas.documents import Document
from ..schemas.journal_entry import EntryStatus
from .base import BaseParser, ExtractedTransaction

logger = logging.getLogger(__name__)

_PENDING_SUFFIX = re.compile(r"\s*\(Pending\)$", re.IGNORECASE)


def read_csv_rows(data: bytes) -> list[list[str]]:
    """Decode and split CSV bytes (UTF-8, optional BOM)."""
    text = data.decode("utf-8-sig")
    return [row for row in csv.reader(io.StringIO(text))]


def parse_date(value: str, formats: tuple[str, ...]) -> Optional[str]:
    """Parse a date in any of the formats to YYYY-MM-DD (None if none match)."""
    value = (value or "").strip()
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _is_csv(document: Document) -> bool:
    return document.filename.lower().endswith(".csv") or "csv" in document.mime_type


def _header(data: bytes) -> list[str]:
    first_line = data.decode("utf-8-sig", errors="replace").splitlines()[:1]
    if not first_line:
        return []
    return [cell.strip() for cell in next(csv.reader(first_line))]


class CitiActivityCsvParser(BaseParser):
    """
    Citi dashboard activity export.

    Header: date,description,amount,note,period
    Example: "Feb 14, 2026","COSTCO WHSE #0006","-$109.04","",
             "Statement closed Feb 16, 2026"
    """

    HEADER = ["date", "description", "amount", "note", "period"]
    DATE_FORMATS = ("%b %d, %Y", "%Y-%m-%d", "%m/%d/%Y")

    @property
    def name(self) -> str:
        return "citi-activity-csv"

    @property
    def priority(self) -> int:
        return 50

    def can_parse(self, document: Document, data: bytes) -> bool:
        return _is_csv(document) and [h.lower() for h in _header(data)] == self.HEADER

    def parse(self, document: Document, data: bytes) -> list[ExtractedTransaction]:
        transactions = []
        for row_number, row in enumerate(read_csv_rows(data)[1:], start=2):
            if len(row) < 3 or not row[0].strip() or not row[2].strip():
                continue
            try:
                amount = parse_amount(row[2])
            except ValueError:
                logger.warning(
                    "%s row %d: unreadable amount %r", document.filename, row_number, row[2]
                )
                continue
            transactions.append(
                ExtractedTransaction(
                    date=parse_date(row[0], self.DATE_FORMATS) or row[0].strip(),
                    description=row[1].strip(),
                    amount=amount,
                    evidence=csv_evidence_ref(document.filename, row_number),
                    status=EntryStatus.CLEARED,
                    comment=row[3].strip() if len(row) > 3 else "",
                )
            )
        return transactions


class ProvidentCsvParser(BaseParser):
    """
    Provident Credit Union activity export.

    Header: "Date","Description","Comments","Check Number","Amount","Balance"
    Example: "02/18/2026","UI BENEFIT WA ST EMPLOY SEC ID2911762161","","",
             "$1,037.00","$54,265.70"
    """

    HEADER = ["Date", "Description", "Comments", "Check Number", "Amount", "Balance"]

    @property
    def name(self) -> str:
        return "providentcu-csv"

    @property
    def priority(self) -> int:
        return 50

    def can_parse(self, document: Document, data: bytes) -> bool:
        return _is_csv(document) and _header(data)[:5] == self.HEADER[:5]

    def parse(self, document: Document, data: bytes) -> list[ExtractedTransaction]:
        transactions = []
        for row_number, row in enumerate(read_csv_rows(data)[1:], start=2):
            if len(row) < 5:
                continue
            date_text, description, comments, check_number, amount_text = row[:5]
            if not date_text.strip() or not amount_text.strip():
                continue
            tdate = parse_date(date_text, ("%m/%d/%Y",))
            if tdate is None:
                continue
            try:
                amount = parse_amount(amount_text)
            except ValueError:
                logger.warning(
                    "%s row %d: unreadable amount %r", document.filename, row_number, amount_text
                )
                continue

            pending = _PENDING_SUFFIX.search(description.strip()) is not None
            tdescription = _PENDING_SUFFIX.sub("", description.strip())
            if check_number.strip():
                tdescription += f" (Check #{check_number.strip()})"

            transactions.append(
                ExtractedTransaction(
                    date=tdate,
                    description=tdescription,
                    amount=amount,
                    evidence=csv_evidence_ref(document.filename, row_number),
                    status=EntryStatus.PENDING if pending else EntryStatus.CLEARED,
                    comment=comments.strip(),
                )
            )
        return transactions


class GenericCsvParser(BaseParser):
    """
    Column-mapped CSV parser for exports without a dedicated parser.

    Either amount_column, or debit_column and credit_column (debits negative),
    must be present in the header.
    """

    def __init__(
        self,
        date_column: str = "Date",
        description_column: str = "Description",
        amount_column: Optional[str] = "Amount",
        debit_column: Optional[str] = None,
        credit_column: Optional[str] = None,
        id_column: Optional[str] = None,
        date_formats: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y"),
        commodity: str = "USD",
    ):
        self.date_column = date_column
        self.description_column = description_column
        self.amount_column = amount_column
        self.debit_column = debit_column
        self.credit_column = credit_column
        self.id_column = id_column
        self.date_formats = date_formats
        self.commodity = commodity

    @property
    def name(self) -> str:
        return "generic-csv"

    def _amount_columns(self) -> list[str]:
        if self.debit_column and self.credit_column:
            return [self.debit_column, self.credit_column]
        return [self.amount_column] if self.amount_column else []

    def can_parse(self, document: Document, data: bytes) -> bool:
        if not _is_csv(document):
            return False
        header = set(_header(data))
        required = {self.date_column, self.description_column, *self._amount_columns()}
        return bool(self._amount_columns()) and required <= header

    def _row_amount(self, record: dict[str, str]):
        if self.debit_column and self.credit_column:
            debit = (record.get(self.debit_column) or "").strip()
            credit = (record.get(self.credit_column) or "").strip()
            if debit:
                return -abs(parse_amount(debit))
            if credit:
                return abs(parse_amount(credit))
            return None
        text = (record.get(self.amount_column or "") or "").strip()
        return parse_amount(text) if text else None

    def parse(self, document: Document, data: bytes) -> list[ExtractedTransaction]:
        reader = csv.DictReader(io.StringIO(data.decode("utf-8-sig")))
        transactions = []
        for row_number, record in enumerate(reader, start=2):
            date_text = (record.get(self.date_column) or "").strip()
            if not date_text:
                continue
            try:
                amount = self._row_amount(record)
            except ValueError:
                logger.warning("%s row %d: unreadable amount", document.filename, row_number)
                continue
            bank_id = (record.get(self.id_column) or "").strip() if self.id_column else ""
            transactions.append(
                ExtractedTransaction(
                    date=parse_date(date_text, self.date_formats) or date_text,
                    description=(record.get(self.description_column) or "").strip(),
                    amount=amount,
                    evidence=csv_evidence_ref(document.filename, row_number),
                    commodity=self.commodity,
                    bank_id=bank_id or None,
                )
            )
        return transactions
