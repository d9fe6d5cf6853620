"""Tests for login label validation and GL account conflicts."""

import pytest

from scrape_ledger.config import LoginConfig
from scrape_ledger.logins import (
    find_gl_account_conflicts,
    validate_label,
)


class TestValidateLabel:
    @pytest.mark.parametrize(
        "label", ["costco_anywhere_visa_card_by_citi_3743", "checking-1234", "A1"]
    )
    def test_accepts_safe_labels(self, label):
        validate_label(label)

    @pytest.mark.parametrize("label", ["", ".", "..", "a/b", "a b", "x\\y", "naïve"])
    def test_rejects_unsafe_labels(self, label):
        with pytest.raises(ValueError):
            validate_label(label)


class TestGlAccountConflicts:
    def test_no_conflicts(self, logins):
        assert find_gl_account_conflicts(logins.values()) == []

    def test_ignored_labels_never_conflict(self):
        logins = [
            LoginConfig("a", "citi", {"x": None}),
            LoginConfig("b", "citi", {"y": None}),
        ]
        assert find_gl_account_conflicts(logins) == []

    def test_conflict_lists_all_claimants(self):
        logins = [
            LoginConfig("b", "citi", {"card": "Liabilities:Shared"}),
            LoginConfig("a", "citi", {"card": "Liabilities:Shared", "other": "Assets:Cash"}),
        ]

        conflicts = find_gl_account_conflicts(logins)

        assert len(conflicts) == 1
        assert conflicts[0].gl_account == "Liabilities:Shared"
        assert [(e.login_name, e.label) for e in conflicts[0].entries] == [
            ("a", "card"),
            ("b", "card"),
        ]
        assert conflicts[0].to_dict()["entries"][0] == {"loginName": "a", "label": "card"}

