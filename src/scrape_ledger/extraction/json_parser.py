"""
JSON transaction dumps.

Format:
    {"transactions": [
        {"date": "2026-02-14", "description": "...", "amount": "-109.04",
         "commodity": "USD", "status": "cleared", "bankId": "...", "comment": "..."}
    ]}

The evidence row is the 1-based index of the item in the array.
"""

import json
import logging
from decimal import Decimal

from ..schemas.dedupe import csv_evidence_ref, parse_amount
from ..schemas.documents import Document
from ..schemas.journal_entry import EntryStatus
from .base import BaseParser, ExtractedTransaction

logger = logging.getLogger(__name__)


class JsonTransactionsParser(BaseParser):
    """Parser for {"transactions": [...]} documents."""

    @property
    def name(self) -> str:
        return "json-transactions"

    @property
    def priority(self) -> int:
        return 10

    def can_parse(self, document: Document, data: bytes) -> bool:
        if not (document.filename.lower().endswith(".json") or "json" in document.mime_type):
            return False
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return False
        return isinstance(payload, dict) and isinstance(payload.get("transactions"), list)

    def parse(self, document: Document, data: bytes) -> list[ExtractedTransaction]:
        payload = json.loads(data.decode("utf-8"))
        transactions = []
        for index, item in enumerate(payload["transactions"], start=1):
            if not isinstance(item, dict):
                logger.warning("%s item %d: not an object", document.filename, index)
                continue
            raw_amount = item.get("amount")
            if raw_amount is None or raw_amount == "":
                amount = None
            elif isinstance(raw_amount, (int, float)):
                amount = Decimal(str(raw_amount))
            else:
                try:
                    amount = parse_amount(str(raw_amount))
                except ValueError:
                    logger.warning("%s item %d: unreadable amount", document.filename, index)
                    continue
            transactions.append(
                ExtractedTransaction(
                    date=str(item.get("date", "")),
                    description=str(item.get("description", "")).strip(),
                    amount=amount,
                    evidence=csv_evidence_ref(document.filename, index),
                    commodity=str(item.get("commodity") or "USD"),
                    status=EntryStatus.parse(item.get("status")),
                    comment=str(item.get("comment") or ""),
                    bank_id=str(item["bankId"]) if item.get("bankId") else None,
                )
            )
        return transactions
