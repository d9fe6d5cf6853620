"""
Extraction engine.

Turns stored artifacts of one scope into candidate journal entries.

Idempotency:
- Entry ids are content-derived (schemas.dedupe.generate_entry_id), so the
  same row always yields the same id and the same transaction seen in two
  overlapping artifacts yields one id.
- Artifacts are processed in sorted filename order and rows in document
  order, so evidence accumulates deterministically.
- A row whose id is unknown is matched against the scope's existing entries
  (extraction.dedup): a unique match only adds evidence and may finalize an
  unreconciled entry; several candidates are reported as ambiguous.
- The whole merge for a scope is one SQLite transaction.

Re-running extraction over the same artifacts creates no new entries.
"""

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from ..documents import ArtifactStore
from ..errors import UnknownExtensionError
from ..schemas.dedupe import generate_entry_id, normalize_amount, normalize_description
from ..schemas.documents import Scope
from ..schemas.journal_entry import Amount, EntryPosting, EntryStatus, JournalEntry
from ..state_store import StateStore
from .base import ExtractedTransaction
from .dedup import DedupMatch, DedupTolerances, DocumentMatcher, MatchKind, is_more_finalized
from .router import ExtractorRouter
from .transfers import classify_transfer

logger = logging.getLogger(__name__)

TRANSFER_TAG = "transfer"


@dataclass
class ExtractionResult:
    """Outcome of one extract() call."""

    new_entry_count: int = 0
    existing_entry_count: int = 0
    evidence_added: int = 0
    skipped_rows: int = 0
    updated_entry_count: int = 0
    documents_processed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    new_entry_ids: list[str] = field(default_factory=list)
    # Evidence refs of rows left unmerged because several entries matched
    ambiguous: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "newEntryCount": self.new_entry_count,
            "existingEntryCount": self.existing_entry_count,
            "evidenceAdded": self.evidence_added,
            "skippedRows": self.skipped_rows,
            "updatedEntryCount": self.updated_entry_count,
            "ambiguous": list(self.ambiguous),
            "documentsProcessed": list(self.documents_processed),
            "errors": dict(self.errors),
        }


@dataclass
class _Candidate:
    entry_id: str
    filename: str
    parser_name: str
    txn: ExtractedTransaction


class ExtractionEngine:
    """Runs parsers over a scope's artifacts and merges the results."""

    def __init__(
        self,
        state_store: StateStore,
        artifact_store: ArtifactStore,
        router: Optional[ExtractorRouter] = None,
        default_commodity: str = "USD",
        tolerances: Optional[DedupTolerances] = None,
    ):
        self.state_store = state_store
        self.artifact_store = artifact_store
        self.router = router or ExtractorRouter()
        self.default_commodity = default_commodity
        self.tolerances = tolerances or DedupTolerances()

    def extract(
        self,
        scope: Scope,
        extension_id: str,
        filenames: Optional[Iterable[str]] = None,
    ) -> ExtractionResult:
        """
        Extract entries from artifacts of a scope.

        Args:
            scope: (login, label)
            extension_id: Driver extension whose parsers apply
            filenames: Artifacts to read (default: every stored artifact)

        Per-document failures are reported in result.errors; the other
        documents still merge.
        """
        result = ExtractionResult()
        if filenames is None:
            names = [doc.filename for doc in self.artifact_store.list(scope)]
        else:
            names = sorted(set(filenames))

        candidates: list[_Candidate] = []
        for filename in sorted(names):
            parsed = self._parse_document(scope, extension_id, filename, result)
            if parsed is None:
                continue
            parser_name, transactions = parsed
            candidates.extend(self._identify(scope, filename, parser_name, transactions, result))
            result.documents_processed.append(filename)

        self._merge(scope, candidates, result)

        logger.info(
            "Extracted %s: %d new, %d existing (%d updated), %d evidence added, "
            "%d ambiguous, %d skipped, %d errors",
            scope,
            result.new_entry_count,
            result.existing_entry_count,
            result.updated_entry_count,
            result.evidence_added,
            len(result.ambiguous),
            result.skipped_rows,
            len(result.errors),
        )
        return result

    def _parse_document(
        self, scope: Scope, extension_id: str, filename: str, result: ExtractionResult
    ) -> Optional[tuple[str, list[ExtractedTransaction]]]:
        document = self.artifact_store.get(scope, filename)
        if document is None:
            result.errors[filename] = f"document not stored in {scope}"
            return None

        data = self.artifact_store.read_bytes(scope, filename)
        try:
            parser = self.router.select(extension_id, document, data)
        except UnknownExtensionError as e:
            result.errors[filename] = str(e)
            return None
        if parser is None:
            result.errors[filename] = f"no parser for {filename} in extension '{extension_id}'"
            logger.warning("No parser accepts %s (%s)", filename, extension_id)
            return None

        try:
            transactions = parser.parse(document, data)
        except Exception as e:
            # Per-document isolation: a malformed artifact must not block the scope.
            logger.warning("Parser %s failed on %s: %s", parser.name, filename, e, exc_info=True)
            result.errors[filename] = f"{parser.name}: {e}"
            return None
        return parser.name, transactions

    def _identify(
        self,
        scope: Scope,
        filename: str,
        parser_name: str,
        transactions: list[ExtractedTransaction],
        result: ExtractionResult,
    ) -> list[_Candidate]:
        """Validate rows and assign stable ids."""
        occurrences: Counter = Counter()
        candidates = []
        for txn in transactions:
            try:
                txn.validate(filename)
            except ValueError as e:
                logger.warning("Skipping row in %s: %s", filename, e)
                result.skipped_rows += 1
                continue

            commodity = txn.commodity or self.default_commodity
            occurrence = 0
            if not txn.bank_id:
                key = (
                    txn.date,
                    normalize_amount(txn.amount) if txn.amount is not None else "-",
                    normalize_description(txn.description),
                )
                occurrence = occurrences[key]
                occurrences[key] += 1

            entry_id = generate_entry_id(
                scope.login,
                scope.label,
                txn.date,
                txn.description,
                txn.amount,
                commodity,
                bank_id=txn.bank_id,
                occurrence=occurrence,
            )
            candidates.append(
                _Candidate(entry_id=entry_id, filename=filename, parser_name=parser_name, txn=txn)
            )
        return candidates

    def _merge(self, scope: Scope, candidates: list[_Candidate], result: ExtractionResult) -> None:
        with self.state_store.immediate() as conn:
            known = {entry.id: entry for entry in self.state_store.fetch_entries(conn, scope)}
            changed: dict[str, JournalEntry] = {}
            matcher: Optional[DocumentMatcher] = None

            for candidate in candidates:
                if matcher is None or matcher.filename != candidate.filename:
                    matcher = DocumentMatcher(known.values(), candidate.filename, self.tolerances)
                txn = candidate.txn
                if candidate.entry_id in known:
                    match = DedupMatch(MatchKind.SAME_ENTRY, entry_id=candidate.entry_id)
                else:
                    match = matcher.match(
                        candidate.entry_id, txn, txn.commodity or self.default_commodity
                    )

                if match.kind == MatchKind.AMBIGUOUS:
                    logger.warning(
                        "Ambiguous match for %s (%s %s): %d candidates, left for review",
                        txn.evidence,
                        txn.date,
                        txn.description,
                        len(match.candidate_ids),
                    )
                    result.ambiguous.append(txn.evidence)
                    continue

                if match.kind == MatchKind.NEW:
                    entry = self._build_entry(candidate)
                    self.state_store.insert_entry(conn, scope, entry)
                    known[entry.id] = entry
                    result.new_entry_count += 1
                    result.new_entry_ids.append(entry.id)
                    continue

                entry = known[match.entry_id]
                result.existing_entry_count += 1
                if match.kind != MatchKind.SAME_ENTRY:
                    logger.debug(
                        "%s matched entry %s (%s)", txn.evidence, entry.id, match.kind.value
                    )
                if entry.add_evidence(txn.evidence):
                    result.evidence_added += 1
                    changed[entry.id] = entry
                if self._refresh(entry, txn, match):
                    result.updated_entry_count += 1
                    changed[entry.id] = entry

            for entry in changed.values():
                self.state_store.update_entry(conn, scope, entry)

            self.state_store.append_operation(
                "extract",
                {
                    "login": scope.login,
                    "label": scope.label,
                    "documents": result.documents_processed,
                    "newEntries": result.new_entry_count,
                    "evidenceAdded": result.evidence_added,
                    "updatedEntries": result.updated_entry_count,
                    "ambiguous": list(result.ambiguous),
                },
                conn=conn,
            )

    def _build_entry(self, candidate: _Candidate) -> JournalEntry:
        txn = candidate.txn
        commodity = txn.commodity or self.default_commodity
        if txn.postings is not None:
            postings = list(txn.postings)
        else:
            amount = Amount(txn.amount, commodity) if txn.amount is not None else None
            postings = [EntryPosting(amount=amount)]

        tags: list[tuple[str, str]] = []
        if txn.bank_id:
            tags.append(("bankId", txn.bank_id))
        tags.extend(txn.tags)
        transfer_type = classify_transfer(txn.description)
        if transfer_type is not None:
            tags.append((TRANSFER_TAG, transfer_type.value))

        return JournalEntry(
            id=candidate.entry_id,
            date=txn.date,
            description=txn.description,
            status=txn.status,
            postings=postings,
            evidence=[txn.evidence],
            comment=txn.comment,
            tags=tags,
            extracted_by=candidate.parser_name,
        )

    def _refresh(self, entry: JournalEntry, txn: ExtractedTransaction, match: DedupMatch) -> bool:
        """
        Bring a matched entry up to date with a later report of it.

        Reconciled entries keep their content; the ledger already holds it.

        Returns:
            True if status, description, comment or amount changed
        """
        if match.kind in (MatchKind.SAME_ENTRY, MatchKind.SAME_EVIDENCE) or entry.is_reconciled:
            return False

        before = (entry.status, entry.description, entry.comment, entry.amount)
        if match.kind == MatchKind.PENDING_TO_FINALIZED:
            entry.status = EntryStatus.CLEARED
            entry.description = txn.description
            if txn.comment:
                entry.comment = txn.comment
        elif is_more_finalized(txn.status, entry.status):
            entry.status = txn.status

        if txn.amount is not None and txn.postings is None and len(entry.postings) == 1:
            commodity = txn.commodity or self.default_commodity
            amount = Amount(txn.amount, commodity)
            if entry.amount != amount:
                entry.postings = [EntryPosting(amount=amount, account=entry.postings[0].account)]

        return (entry.status, entry.description, entry.comment, entry.amount) != before
