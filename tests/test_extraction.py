"""Tests for the extraction engine."""

from decimal import Decimal

import pytest
from conftest import COSTCO_ACTIVITY_CSV

from scrape_ledger.extraction import (
    BaseParser,
    CitiActivityCsvParser,
    DedupTolerances,
    ExtractionEngine,
    ExtractorRouter,
    descriptions_similar,
)
from scrape_ledger.schemas.journal_entry import Amount, EntryStatus

ACTIVITY_0216 = "activity/2026-02-16-transactions.csv"
ACTIVITY_0220 = "activity/2026-02-20-transactions.csv"
PROVIDENT_HEADER = '"Date","Description","Comments","Check Number","Amount","Balance"\n'


@pytest.fixture
def engine(state_store, artifact_store):
    return ExtractionEngine(state_store, artifact_store)


class BoomParser(BaseParser):
    """Accepts boom.csv and always fails on it."""

    @property
    def name(self) -> str:
        return "boom"

    @property
    def priority(self) -> int:
        return 100

    def can_parse(self, document, data):
        return document.filename == "boom.csv"

    def parse(self, document, data):
        raise ValueError("truncated export")


class TestExtraction:
    """Tests for ExtractionEngine.extract."""

    def test_costco_activity_row(self, engine, artifact_store, state_store, costco_scope):
        """One dashboard row becomes one candidate entry."""
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 1
        assert result.documents_processed == [ACTIVITY_0216]
        assert result.errors == {}

        [entry] = state_store.get_entries(costco_scope)
        assert entry.id == result.new_entry_ids[0]
        assert entry.date == "2026-02-14"
        assert entry.description == "COSTCO WHSE #0006"
        assert entry.amount == Amount(Decimal("-109.04"), "USD")
        assert entry.evidence == [f"{ACTIVITY_0216}:2:1"]
        assert entry.extracted_by == "citi-activity-csv"
        assert entry.reconciled is None

    def test_rerun_is_idempotent(self, engine, artifact_store, state_store, costco_scope):
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())
        first = engine.extract(costco_scope, "citi")

        second = engine.extract(costco_scope, "citi")

        assert second.new_entry_count == 0
        assert second.existing_entry_count == 1
        assert second.evidence_added == 0
        assert [e.id for e in state_store.get_entries(costco_scope)] == first.new_entry_ids

    def test_overlapping_exports_accumulate_evidence(
        self, engine, artifact_store, state_store, costco_scope
    ):
        """The same row seen in two exports is one entry with two evidence refs."""
        later = COSTCO_ACTIVITY_CSV + '"Feb 18, 2026","SHELL OIL 5744","-$41.20","",""\n'
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())
        artifact_store.save(costco_scope, ACTIVITY_0220, later.encode())

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 2
        assert result.existing_entry_count == 1
        costco, shell = state_store.get_entries(costco_scope)
        assert costco.evidence == [f"{ACTIVITY_0216}:2:1", f"{ACTIVITY_0220}:2:1"]
        assert shell.evidence == [f"{ACTIVITY_0220}:3:1"]

    def test_evidence_added_on_later_run(self, engine, artifact_store, state_store, costco_scope):
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())
        engine.extract(costco_scope, "citi")
        artifact_store.save(costco_scope, ACTIVITY_0220, COSTCO_ACTIVITY_CSV.encode())

        result = engine.extract(costco_scope, "citi", filenames=[ACTIVITY_0220])

        assert result.new_entry_count == 0
        assert result.evidence_added == 1
        [entry] = state_store.get_entries(costco_scope)
        assert len(entry.evidence) == 2

    def test_identical_rows_in_one_export_are_distinct(
        self, engine, artifact_store, state_store, costco_scope
    ):
        """Two identical purchases on the same day stay two entries."""
        row = '"Feb 14, 2026","STARBUCKS","-$5.00","",""\n'
        data = "date,description,amount,note,period\n" + row + row
        artifact_store.save(costco_scope, "a.csv", data.encode())

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 2
        assert len(set(result.new_entry_ids)) == 2

        rerun = engine.extract(costco_scope, "citi")
        assert rerun.new_entry_count == 0

    def test_invalid_rows_are_skipped(self, engine, artifact_store, state_store, costco_scope):
        data = COSTCO_ACTIVITY_CSV + '"someday","MYSTERY","-$1.00","",""\n'
        artifact_store.save(costco_scope, "a.csv", data.encode())

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 1
        assert result.skipped_rows == 1

    def test_document_errors_are_isolated(self, state_store, artifact_store, costco_scope):
        router = ExtractorRouter({"citi": [BoomParser(), CitiActivityCsvParser()]})
        engine = ExtractionEngine(state_store, artifact_store, router=router)
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())
        artifact_store.save(costco_scope, "boom.csv", COSTCO_ACTIVITY_CSV.encode())
        artifact_store.save(costco_scope, "notes.txt", b"hello")

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 1
        assert result.documents_processed == [ACTIVITY_0216]
        assert result.errors["boom.csv"] == "boom: truncated export"
        assert "no parser" in result.errors["notes.txt"]

    def test_unknown_extension_reports_errors(self, engine, artifact_store, costco_scope):
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())

        result = engine.extract(costco_scope, "no-such-bank")

        assert result.new_entry_count == 0
        assert ACTIVITY_0216 in result.errors

    def test_unstored_filename_reported(self, engine, costco_scope):
        result = engine.extract(costco_scope, "citi", filenames=["missing.csv"])

        assert "missing.csv" in result.errors

    def test_transfer_tag(self, engine, artifact_store, state_store, checking_scope, provident_csv):
        artifact_store.save(checking_scope, "checking.csv", provident_csv)

        engine.extract(checking_scope, "providentcu")

        by_description = {e.description: e for e in state_store.get_entries(checking_scope)}
        assert by_description["CITI AUTOPAY PAYMENT 3743"].tag_value("transfer") == "outgoing"
        assert by_description["CHECK (Check #1042)"].tag_value("transfer") is None

    def test_amountless_rows_keep_unknown_amount(
        self, engine, artifact_store, state_store, costco_scope
    ):
        data = b'{"transactions": [{"date": "2026-02-15", "description": "FEE", "amount": null}]}'
        artifact_store.save(costco_scope, "dump.json", data)

        engine.extract(costco_scope, "citi")

        [entry] = state_store.get_entries(costco_scope)
        assert entry.amount is None
        assert len(entry.postings) == 1

    def test_operation_logged(self, engine, artifact_store, state_store, costco_scope):
        artifact_store.save(costco_scope, ACTIVITY_0216, COSTCO_ACTIVITY_CSV.encode())

        engine.extract(costco_scope, "citi")

        [op] = state_store.list_operations("extract")
        assert op.payload["newEntries"] == 1
        assert op.payload["documents"] == [ACTIVITY_0216]


def provident_export(*rows: str) -> bytes:
    return (PROVIDENT_HEADER + "".join(f"{row}\n" for row in rows)).encode()


def citi_activity(*rows: str) -> bytes:
    return ("date,description,amount,note,period\n" + "".join(f"{r}\n" for r in rows)).encode()


class TestCrossDocumentMatching:
    """Rows re-reported with a different date, description or amount."""

    def test_pending_row_posts_next_day(self, engine, artifact_store, state_store, checking_scope):
        artifact_store.save(
            checking_scope,
            "checking-0217.csv",
            provident_export('"02/17/2026","SAFEWAY #1965 (Pending)","","","-$27.53","$100.00"'),
        )
        artifact_store.save(
            checking_scope,
            "checking-0218.csv",
            provident_export('"02/18/2026","SAFEWAY #1965","","","-$27.53","$100.00"'),
        )

        result = engine.extract(checking_scope, "providentcu")

        assert result.new_entry_count == 1
        assert result.existing_entry_count == 1
        [entry] = state_store.get_entries(checking_scope)
        assert entry.date == "2026-02-17"
        assert entry.status == EntryStatus.CLEARED
        assert entry.evidence == ["checking-0217.csv:2:1", "checking-0218.csv:2:1"]

        rerun = engine.extract(checking_scope, "providentcu")
        assert rerun.new_entry_count == 0
        assert rerun.evidence_added == 0
        assert rerun.updated_entry_count == 0
        assert len(state_store.get_entries(checking_scope)) == 1

    def test_pending_amount_finalized_with_tip(
        self, engine, artifact_store, state_store, checking_scope
    ):
        artifact_store.save(
            checking_scope,
            "checking-0214.csv",
            provident_export('"02/14/2026","CAFE LADRO (Pending)","","","-$40.00","$100.00"'),
        )
        artifact_store.save(
            checking_scope,
            "checking-0217.csv",
            provident_export('"02/17/2026","CAFE LADRO SEATTLE","tip","","-$46.50","$100.00"'),
        )

        result = engine.extract(checking_scope, "providentcu")

        assert result.new_entry_count == 1
        assert result.updated_entry_count == 1
        [entry] = state_store.get_entries(checking_scope)
        assert entry.status == EntryStatus.CLEARED
        assert entry.description == "CAFE LADRO SEATTLE"
        assert entry.comment == "tip"
        assert entry.amount == Amount(Decimal("-46.50"), "USD")

    def test_pending_outside_amount_tolerance_stays_separate(
        self, engine, artifact_store, state_store, checking_scope
    ):
        artifact_store.save(
            checking_scope,
            "checking-0214.csv",
            provident_export('"02/14/2026","HOTEL DEPOSIT (Pending)","","","-$100.00","$100.00"'),
        )
        artifact_store.save(
            checking_scope,
            "checking-0217.csv",
            provident_export('"02/17/2026","HOTEL FOLIO","","","-$180.00","$100.00"'),
        )

        result = engine.extract(checking_scope, "providentcu")

        assert result.new_entry_count == 2

    def test_several_candidates_are_ambiguous(
        self, engine, artifact_store, state_store, costco_scope
    ):
        row = '"Feb 14, 2026","STARBUCKS","-$5.00","",""'
        artifact_store.save(costco_scope, "a.csv", citi_activity(row, row))
        artifact_store.save(
            costco_scope, "b.csv", citi_activity('"Feb 15, 2026","STARBUCKS","-$5.00","",""')
        )

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 2
        assert result.ambiguous == ["b.csv:2:1"]
        entries = state_store.get_entries(costco_scope)
        assert len(entries) == 2
        assert all(e.evidence[0].startswith("a.csv:") for e in entries)
        assert all(len(e.evidence) == 1 for e in entries)

        [op] = state_store.list_operations("extract")
        assert op.payload["ambiguous"] == ["b.csv:2:1"]

    def test_each_entry_matches_one_row_per_document(
        self, engine, artifact_store, state_store, costco_scope
    ):
        artifact_store.save(
            costco_scope, "a.csv", citi_activity('"Feb 18, 2026","SHELL OIL","-$41.20","",""')
        )
        row = '"Feb 19, 2026","SHELL OIL 5744","-$41.20","",""'
        artifact_store.save(costco_scope, "b.csv", citi_activity(row, row))

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 2
        assert result.existing_entry_count == 1
        first, second = state_store.get_entries(costco_scope)
        assert first.evidence == ["a.csv:2:1", "b.csv:2:1"]
        assert second.evidence == ["b.csv:3:1"]

        rerun = engine.extract(costco_scope, "citi")
        assert rerun.new_entry_count == 0
        assert rerun.evidence_added == 0

    def test_bank_id_matches_across_dates(self, engine, artifact_store, state_store, costco_scope):
        artifact_store.save(
            costco_scope,
            "x.json",
            b'{"transactions": [{"date": "2026-02-14", "description": "ACME", '
            b'"amount": "-12.00", "status": "pending", "bankId": "TX-1"}]}',
        )
        artifact_store.save(
            costco_scope,
            "y.json",
            b'{"transactions": [{"date": "2026-02-18", "description": "ACME CORP PAYMENT", '
            b'"amount": "-12.00", "status": "cleared", "bankId": "TX-1"}]}',
        )

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 1
        [entry] = state_store.get_entries(costco_scope)
        assert entry.bank_id == "TX-1"
        assert entry.status == EntryStatus.CLEARED
        assert len(entry.evidence) == 2

    def test_repeated_bank_id_in_one_document(
        self, engine, artifact_store, state_store, costco_scope
    ):
        item = b'{"date": "2026-02-14", "description": "ACME", "amount": "-12.00", "bankId": "T"}'
        data = b'{"transactions": [' + item + b", " + item + b"]}"
        artifact_store.save(costco_scope, "x.json", data)

        result = engine.extract(costco_scope, "citi")

        assert result.new_entry_count == 1
        [entry] = state_store.get_entries(costco_scope)
        assert len(entry.evidence) == 2

    def test_reconciled_entry_only_gains_evidence(
        self, engine, artifact_store, state_store, checking_scope
    ):
        artifact_store.save(
            checking_scope,
            "checking-0217.csv",
            provident_export('"02/17/2026","SAFEWAY #1965 (Pending)","","","-$27.53","$100.00"'),
        )
        engine.extract(checking_scope, "providentcu")
        [entry] = state_store.get_entries(checking_scope)
        entry.reconciled = "txn-1"
        with state_store.immediate() as conn:
            state_store.update_entry(conn, checking_scope, entry)
        artifact_store.save(
            checking_scope,
            "checking-0218.csv",
            provident_export('"02/18/2026","SAFEWAY #1965","","","-$27.53","$100.00"'),
        )

        result = engine.extract(checking_scope, "providentcu")

        assert result.new_entry_count == 0
        assert result.evidence_added == 1
        assert result.updated_entry_count == 0
        [entry] = state_store.get_entries(checking_scope)
        assert entry.status == EntryStatus.PENDING
        assert entry.reconciled == "txn-1"

    def test_tolerances_are_configurable(self, state_store, artifact_store, checking_scope):
        engine = ExtractionEngine(
            state_store, artifact_store, tolerances=DedupTolerances(date_days=0, pending_days=0)
        )
        artifact_store.save(
            checking_scope,
            "checking-0217.csv",
            provident_export('"02/17/2026","SAFEWAY #1965 (Pending)","","","-$27.53","$100.00"'),
        )
        artifact_store.save(
            checking_scope,
            "checking-0218.csv",
            provident_export('"02/18/2026","SAFEWAY #1965","","","-$27.53","$100.00"'),
        )

        result = engine.extract(checking_scope, "providentcu")

        assert result.new_entry_count == 2


class TestDescriptionsSimilar:
    @pytest.mark.parametrize(
        "a, b",
        [
            ("SAFEWAY #1965", "Safeway 1965"),
            ("SHELL OIL", "SHELL OIL 5744"),
            ("AMAZON MKTPLACE PMTS", "AMAZON MKTPLACE WA"),
        ],
    )
    def test_similar(self, a, b):
        assert descriptions_similar(a, b)

    def test_unrelated(self):
        assert not descriptions_similar("COSTCO WHSE #0006", "SHELL OIL 5744")
