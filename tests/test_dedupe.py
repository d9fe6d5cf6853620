"""Tests for deterministic identity functions."""

from decimal import Decimal

import pytest

from scrape_ledger.schemas.dedupe import (
    build_attachment_key,
    compute_file_hash,
    csv_evidence_ref,
    generate_entry_id,
    normalize_amount,
    normalize_description,
    page_evidence_ref,
    parse_amount,
    parse_attachment_key,
)


class TestAmounts:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("$1,037.00", Decimal("1037.00")),
            ("-$109.04", Decimal("-109.04")),
            ("(12.50)", Decimal("-12.50")),
            ("35,70", Decimal("35.70")),
            ("250.00-", Decimal("-250.00")),
            ("+4.1", Decimal("4.1")),
        ],
    )
    def test_parse_amount(self, text, expected):
        assert parse_amount(text) == expected

    def test_parse_amount_rejects_text(self):
        with pytest.raises(ValueError):
            parse_amount("n/a")

    def test_normalize_amount(self):
        assert normalize_amount("-$109.04") == "-109.04"
        assert normalize_amount(Decimal("5")) == "5.00"
        assert normalize_amount(12) == "12.00"
        assert normalize_amount(0.1) == "0.10"

    def test_normalize_amount_rejects_bool(self):
        with pytest.raises(ValueError):
            normalize_amount(True)


class TestEntryId:
    ARGS = ("citiPersonal", "costco", "2026-02-14", "COSTCO WHSE #0006", "-109.04")

    def test_is_stable(self):
        assert generate_entry_id(*self.ARGS) == generate_entry_id(*self.ARGS)
        assert len(generate_entry_id(*self.ARGS)) == 16

    def test_description_whitespace_and_case_ignored(self):
        other = ("citiPersonal", "costco", "2026-02-14", "  costco   whse #0006 ", "-109.04")
        assert generate_entry_id(*self.ARGS) == generate_entry_id(*other)

    def test_amount_format_ignored(self):
        other = self.ARGS[:4] + (Decimal("-109.040"),)
        assert generate_entry_id(*self.ARGS) == generate_entry_id(*other)

    def test_occurrence_distinguishes_identical_rows(self):
        first = generate_entry_id(*self.ARGS, occurrence=0)
        second = generate_entry_id(*self.ARGS, occurrence=1)
        assert first != second

    def test_bank_id_overrides_occurrence(self):
        assert generate_entry_id(*self.ARGS, bank_id="X1", occurrence=0) == generate_entry_id(
            *self.ARGS, bank_id="X1", occurrence=3
        )

    def test_scope_is_part_of_identity(self):
        other = ("citiPersonal", "other_card", *self.ARGS[2:])
        assert generate_entry_id(*self.ARGS) != generate_entry_id(*other)

    def test_unknown_amount(self):
        assert generate_entry_id("l", "a", "2026-01-01", "FEE", None) != generate_entry_id(
            "l", "a", "2026-01-01", "FEE", "0"
        )

    def test_rejects_bad_date(self):
        with pytest.raises(ValueError):
            generate_entry_id("l", "a", "02/14/2026", "x", "1")


class TestAttachmentKeys:
    def test_build_and_parse(self):
        key = build_attachment_key("check", "1042", "2026-01-05", "-250")
        assert key == "check:1042|2026-01-05|-250.00"

        parsed = parse_attachment_key(key)
        assert (parsed.kind, parsed.discriminator, parsed.date, parsed.amount) == (
            "check",
            "1042",
            "2026-01-05",
            "-250.00",
        )

    @pytest.mark.parametrize(
        "kind,discriminator,date",
        [("", "1", "2026-01-05"), ("check", "a|b", "2026-01-05"), ("check", "1", "2026/01/05")],
    )
    def test_build_rejects_bad_parts(self, kind, discriminator, date):
        with pytest.raises(ValueError):
            build_attachment_key(kind, discriminator, date, "1")

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_attachment_key("not-a-key")


class TestEvidenceAndHashes:
    def test_evidence_refs(self):
        assert csv_evidence_ref("activity/2026-02-16-transactions.csv", 2) == (
            "activity/2026-02-16-transactions.csv:2:1"
        )
        assert page_evidence_ref("statement.pdf", 3) == "statement.pdf#page=3"

    def test_file_hash(self):
        assert compute_file_hash(b"abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_normalize_description(self):
        assert normalize_description(None) == ""
        assert normalize_description(" A  b\tC ") == "a b c"
