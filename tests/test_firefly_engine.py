"""
Tests for the Firefly III ledger engine.

These tests use the responses library to mock the Firefly API.
"""

import json
from decimal import Decimal

import pytest
import requests
import responses

from scrape_ledger.errors import LedgerConnectionError, LedgerValidationError
from scrape_ledger.reconciliation import (
    FireflyAPIError,
    FireflyLedgerEngine,
    ProposedPosting,
    ProposedTransaction,
)
from scrape_ledger.reconciliation.firefly_engine import transaction_type
from scrape_ledger.schemas.journal_entry import Amount

BASE_URL = "http://firefly.test:8080"
TOKEN = "firefly-token"
COSTCO = "Liabilities:Citi:Costco Visa"
GROCERIES = "Expenses:Groceries"
SOURCE = "citiPersonal/costco:ab12cd34"


def costco_purchase(**overrides) -> ProposedTransaction:
    fields = {
        "date": "2026-02-14",
        "description": "COSTCO WHSE #0006",
        "postings": [
            ProposedPosting(COSTCO, Amount(Decimal("-109.04")), SOURCE),
            ProposedPosting(GROCERIES, None, SOURCE),
        ],
    }
    fields.update(overrides)
    return ProposedTransaction(**fields)


def firefly_transaction(txn_id: str = "42") -> dict:
    return {
        "data": {
            "id": txn_id,
            "attributes": {
                "transactions": [
                    {
                        "date": "2026-02-14T00:00:00+00:00",
                        "amount": "109.040000000000",
                        "description": "COSTCO WHSE #0006",
                        "source_name": COSTCO,
                        "destination_name": GROCERIES,
                        "currency_code": "USD",
                        "external_id": SOURCE,
                        "internal_reference": SOURCE,
                    }
                ]
            },
        }
    }


@pytest.fixture
def engine():
    return FireflyLedgerEngine(BASE_URL, TOKEN, max_retries=0)


class TestTransactionType:
    def test_mapping(self):
        assert transaction_type(COSTCO, GROCERIES) == "withdrawal"
        assert transaction_type("Income:Salary", "Assets:Provident:Checking") == "deposit"
        assert transaction_type("Assets:Provident:Checking", COSTCO) == "transfer"


class TestFireflyLedgerEngine:
    """Test Firefly III ledger engine."""

    @responses.activate
    def test_commit_withdrawal(self, engine):
        """Two-posting purchase becomes one withdrawal split."""
        responses.add(
            responses.POST, f"{BASE_URL}/api/v1/transactions", json={"data": {"id": 42}}
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/api/v1/search/accounts",
            json={
                "data": [
                    {"attributes": {"name": COSTCO, "current_balance": "-109.04",
                                    "currency_code": "USD"}},
                    {"attributes": {"name": GROCERIES, "current_balance": "309.04",
                                    "currency_code": "USD"}},
                ]
            },
        )

        txn = engine.commit(costco_purchase(comment="weekly", tags=[("bankId", "77")]))

        assert txn.id == "42"
        assert txn.postings[1].amount == Amount(Decimal("109.04"))
        assert txn.balances == {
            COSTCO: {"USD": Decimal("-109.04")},
            GROCERIES: {"USD": Decimal("309.04")},
        }

        request = responses.calls[0].request
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        payload = json.loads(request.body)
        assert payload["error_if_duplicate_hash"] is False
        [split] = payload["transactions"]
        assert split["type"] == "withdrawal"
        assert split["amount"] == "109.04"
        assert split["source_name"] == COSTCO
        assert split["destination_name"] == GROCERIES
        assert split["currency_code"] == "USD"
        assert split["external_id"] == SOURCE
        assert split["internal_reference"] == SOURCE
        assert split["notes"] == "weekly"
        assert split["tags"] == ["bankId:77"]

    @responses.activate
    def test_balance_lookup_failure_is_tolerated(self, engine):
        responses.add(
            responses.POST, f"{BASE_URL}/api/v1/transactions", json={"data": {"id": "7"}}
        )
        responses.add(
            responses.GET,
            f"{BASE_URL}/api/v1/search/accounts",
            json={"message": "Forbidden"},
            status=403,
        )

        txn = engine.commit(costco_purchase())

        assert txn.id == "7"
        assert txn.balances == {}

    @responses.activate
    def test_validation_error(self, engine):
        """422 responses surface as ledger validation errors."""
        responses.add(
            responses.POST,
            f"{BASE_URL}/api/v1/transactions",
            json={
                "message": "The given data was invalid.",
                "errors": {"transactions.0.source_name": ["Unknown account"]},
            },
            status=422,
        )

        with pytest.raises(LedgerValidationError, match="Unknown account"):
            engine.commit(costco_purchase())

    @responses.activate
    def test_api_error(self, engine):
        responses.add(
            responses.POST,
            f"{BASE_URL}/api/v1/transactions",
            json={"message": "Unauthenticated."},
            status=401,
        )

        with pytest.raises(FireflyAPIError) as exc_info:
            engine.commit(costco_purchase())
        assert exc_info.value.status_code == 401

    @responses.activate
    def test_connection_error(self, engine):
        responses.add(
            responses.POST,
            f"{BASE_URL}/api/v1/transactions",
            body=requests.exceptions.ConnectionError("refused"),
        )

        with pytest.raises(LedgerConnectionError):
            engine.commit(costco_purchase())

    @responses.activate
    def test_more_than_two_postings_rejected(self, engine):
        txn = costco_purchase(
            postings=[
                ProposedPosting(COSTCO, Amount(Decimal("-10"))),
                ProposedPosting(GROCERIES, Amount(Decimal("4"))),
                ProposedPosting("Expenses:Household", None),
            ]
        )

        with pytest.raises(LedgerValidationError):
            engine.commit(txn)
        assert len(responses.calls) == 0

    @responses.activate
    def test_get(self, engine):
        responses.add(
            responses.GET, f"{BASE_URL}/api/v1/transactions/42", json=firefly_transaction()
        )

        txn = engine.get("42")

        assert txn.date == "2026-02-14"
        assert [(p.account, p.amount.quantity, p.source) for p in txn.postings] == [
            (COSTCO, Decimal("-109.04"), SOURCE),
            (GROCERIES, Decimal("109.04"), SOURCE),
        ]

    @responses.activate
    def test_get_missing(self, engine):
        responses.add(
            responses.GET,
            f"{BASE_URL}/api/v1/transactions/99",
            json={"message": "Resource not found"},
            status=404,
        )

        assert engine.get("99") is None

    @responses.activate
    def test_remove_postings(self, engine):
        responses.add(
            responses.GET, f"{BASE_URL}/api/v1/transactions/42", json=firefly_transaction()
        )
        responses.add(responses.DELETE, f"{BASE_URL}/api/v1/transactions/42", status=204)

        assert not engine.remove_postings("42", "someone/else:1")
        assert engine.remove_postings("42", SOURCE)
        assert responses.calls[-1].request.method == "DELETE"

    @responses.activate
    def test_remove_single_posting_unsupported(self, engine):
        transaction = firefly_transaction()
        transaction["data"]["attributes"]["transactions"][0]["internal_reference"] = "other:1"
        responses.add(responses.GET, f"{BASE_URL}/api/v1/transactions/42", json=transaction)

        with pytest.raises(LedgerValidationError):
            engine.remove_postings("42", SOURCE)
