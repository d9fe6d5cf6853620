"""
Local journal ledger engine.

Generated transactions are appended as hledger-style blocks to
<ledger_dir>/general.journal:

    2026-02-14 * COSTCO WHSE #0006
        ; id: 6f1c...
        ; generated-by: scrape-ledger
        Liabilities:Citi:Costco Visa  -109.04 USD  ; source: citiPersonal/costco:ab12...
        Expenses:Groceries  109.04 USD  ; source: citiPersonal/costco:ab12...

Every amount is written explicitly (including the inferred one), so the file
reads the same to hledger and to this module. Blocks without an `id:` line
are kept verbatim on rewrite.
"""

import logging
import os
import re
import subprocess
import tempfile
import threading
import uuid
from collections import defaultdict
from decimal import Decimal
from pathlib import Path
from typing import Optional

from ..errors import LedgerError, LedgerTransactionNotFoundError, LedgerValidationError
from ..schemas.journal_entry import Amount, EntryStatus
from .ledger_engine import (
    CommittedPosting,
    CommittedTransaction,
    LedgerEngine,
    ProposedTransaction,
    resolve_postings,
)

logger = logging.getLogger(__name__)

JOURNAL_FILENAME = "general.journal"
GENERATED_BY = "scrape-ledger"

_HEADER = re.compile(r"^(\d{4}-\d{2}-\d{2})(?: ([*!]))? ?(.*)$")
_META = re.compile(r"^\s+;\s*([A-Za-z][\w-]*):\s?(.*)$")
_POSTING = re.compile(
    r"^\s+(?P<account>\S(?:.*?\S)?)\s{2,}(?P<qty>-?\d+(?:\.\d+)?) (?P<commodity>\S+)"
    r"(?:\s+;\s*source:\s*(?P<source>\S+))?\s*$"
)
_MARKERS = {"*": EntryStatus.CLEARED, "!": EntryStatus.PENDING}


def _format_quantity(quantity: Decimal) -> str:
    if quantity.as_tuple().exponent > -2:
        quantity = quantity.quantize(Decimal("0.01"))
    return format(quantity, "f")


def _clean_text(value: str) -> str:
    return " ".join(value.replace(";", ",").split())


class _Block:
    """A chunk of the journal file: generated transaction or foreign text."""

    def __init__(self, text: str, txn: Optional[CommittedTransaction] = None):
        self.text = text
        self.txn = txn


def _parse_block(text: str) -> _Block:
    lines = text.splitlines()
    header = _HEADER.match(lines[0]) if lines else None
    if header is None:
        return _Block(text)

    meta: dict[str, str] = {}
    postings = []
    for line in lines[1:]:
        posting = _POSTING.match(line)
        if posting:
            postings.append(
                CommittedPosting(
                    account=posting.group("account"),
                    amount=Amount(Decimal(posting.group("qty")), posting.group("commodity")),
                    source=posting.group("source"),
                )
            )
            continue
        m = _META.match(line)
        if m:
            meta.setdefault(m.group(1), m.group(2).strip())

    if "id" not in meta or meta.get("generated-by") != GENERATED_BY:
        return _Block(text)

    txn = CommittedTransaction(
        id=meta["id"],
        date=header.group(1),
        description=header.group(3).strip(),
        postings=postings,
        status=_MARKERS.get(header.group(2) or "", EntryStatus.UNMARKED),
    )
    return _Block(text, txn)


def render_transaction(
    txn: CommittedTransaction, comment: str = "", tags: Optional[list[tuple[str, str]]] = None
) -> str:
    """Render a transaction as a journal block (no trailing blank line)."""
    lines = [f"{txn.date} {txn.status.marker}{_clean_text(txn.description)}".rstrip()]
    lines.append(f"    ; id: {txn.id}")
    lines.append(f"    ; generated-by: {GENERATED_BY}")
    if comment:
        lines.append(f"    ; note: {_clean_text(comment)}")
    for key, value in tags or []:
        lines.append(f"    ; {key}: {_clean_text(value)}")
    for posting in txn.postings:
        line = (
            f"    {posting.account}  "
            f"{_format_quantity(posting.amount.quantity)} {posting.amount.commodity}"
        )
        if posting.source:
            line += f"  ; source: {posting.source}"
        lines.append(line)
    return "\n".join(lines)


def _check_accounts(postings: list[CommittedPosting]) -> None:
    for posting in postings:
        account = posting.account
        if account != account.strip() or "  " in account or "\t" in account or ";" in account:
            raise LedgerValidationError(f"invalid account name for a journal: {account!r}")
        if posting.source and any(c.isspace() for c in posting.source):
            raise LedgerValidationError(
                f"posting source must not contain spaces: {posting.source!r}"
            )


class JournalLedgerEngine(LedgerEngine):
    """Ledger engine writing a plain-text hledger journal."""

    def __init__(self, ledger_dir: Path | str, hledger_path: Optional[str] = None):
        self.ledger_dir = Path(ledger_dir)
        self.path = self.ledger_dir / JOURNAL_FILENAME
        self.hledger_path = hledger_path
        self._lock = threading.Lock()

    def _read_blocks(self) -> list[_Block]:
        if not self.path.exists():
            return []
        content = self.path.read_text(encoding="utf-8")
        return [_parse_block(chunk) for chunk in re.split(r"\n\s*\n", content) if chunk.strip()]

    def _write_blocks(self, blocks: list[_Block]) -> None:
        content = "\n\n".join(block.text.strip("\n") for block in blocks)
        if content:
            content += "\n"
        self.ledger_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.ledger_dir, prefix=".general-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _replace_journal(self, previous: list[_Block], blocks: list[_Block]) -> None:
        """Write blocks, restoring the previous content if the hledger check fails."""
        self._write_blocks(blocks)
        try:
            self._validate()
        except LedgerError:
            self._write_blocks(previous)
            raise

    def _validate(self) -> None:
        if not self.hledger_path:
            return
        try:
            proc = subprocess.run(
                [self.hledger_path, "-f", str(self.path), "check"],
                capture_output=True,
                text=True,
                timeout=60,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise LedgerError(f"Could not run hledger ({self.hledger_path}): {e}") from e
        if proc.returncode != 0:
            raise LedgerValidationError(f"hledger check failed: {proc.stderr.strip()}")

    @staticmethod
    def _balances(
        blocks: list[_Block], accounts: set[str]
    ) -> dict[str, dict[str, Decimal]]:
        totals: dict[str, dict[str, Decimal]] = {a: defaultdict(Decimal) for a in accounts}
        for block in blocks:
            if block.txn is None:
                continue
            for posting in block.txn.postings:
                if posting.account in totals:
                    totals[posting.account][posting.amount.commodity] += posting.amount.quantity
        return {account: dict(by_commodity) for account, by_commodity in totals.items()}

    def commit(self, proposed: ProposedTransaction) -> CommittedTransaction:
        postings = resolve_postings(proposed)
        _check_accounts(postings)

        txn = CommittedTransaction(
            id=str(uuid.uuid4()),
            date=proposed.date,
            description=proposed.description,
            postings=postings,
            status=proposed.status,
        )
        block = _Block(render_transaction(txn, proposed.comment, proposed.tags), txn)

        with self._lock:
            previous = self._read_blocks()
            blocks = previous + [block]
            self._replace_journal(previous, blocks)
            txn.balances = self._balances(blocks, {p.account for p in postings})

        logger.info(f"Committed ledger transaction {txn.id} ({txn.date} {txn.description})")
        return txn

    def get(self, txn_id: str) -> Optional[CommittedTransaction]:
        with self._lock:
            for block in self._read_blocks():
                if block.txn is not None and block.txn.id == txn_id:
                    return block.txn
        return None

    def _find(self, blocks: list[_Block], txn_id: str) -> int:
        for index, block in enumerate(blocks):
            if block.txn is not None and block.txn.id == txn_id:
                return index
        raise LedgerTransactionNotFoundError(f"Ledger transaction not found: {txn_id}")

    def remove(self, txn_id: str) -> None:
        with self._lock:
            previous = self._read_blocks()
            index = self._find(previous, txn_id)
            self._replace_journal(previous, previous[:index] + previous[index + 1 :])
        logger.info(f"Removed ledger transaction {txn_id}")

    def remove_postings(self, txn_id: str, source: str) -> bool:
        with self._lock:
            previous = self._read_blocks()
            index = self._find(previous, txn_id)
            txn = previous[index].txn
            kept = [p for p in txn.postings if p.source != source]
            if len(kept) == len(txn.postings):
                return False

            if not kept:
                blocks = previous[:index] + previous[index + 1 :]
            else:
                if len(kept) < 2:
                    raise LedgerValidationError(
                        f"removing '{source}' would leave {txn_id} with a single posting"
                    )
                sums: dict[str, Decimal] = defaultdict(Decimal)
                for posting in kept:
                    sums[posting.amount.commodity] += posting.amount.quantity
                if any(total != 0 for total in sums.values()):
                    raise LedgerValidationError(
                        f"removing '{source}' would leave {txn_id} unbalanced"
                    )
                remaining = CommittedTransaction(
                    id=txn.id,
                    date=txn.date,
                    description=txn.description,
                    postings=kept,
                    status=txn.status,
                )
                meta = _preserved_meta(previous[index].text)
                text = render_transaction(remaining, tags=meta)
                blocks = previous[:index] + [_Block(text, remaining)] + previous[index + 1 :]
            self._replace_journal(previous, blocks)

        logger.info(f"Removed postings sourced from {source} in ledger transaction {txn_id}")
        return True

    def list(self) -> list[CommittedTransaction]:
        """All generated transactions in file order."""
        with self._lock:
            return [block.txn for block in self._read_blocks() if block.txn is not None]


def _preserved_meta(text: str) -> list[tuple[str, str]]:
    """Tag lines of a block other than id/generated-by, in order."""
    tags = []
    for line in text.splitlines()[1:]:
        if _POSTING.match(line):
            continue
        m = _META.match(line)
        if m and m.group(1) not in ("id", "generated-by"):
            tags.append((m.group(1), m.group(2).strip()))
    return tags
