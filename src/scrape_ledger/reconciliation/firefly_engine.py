"""
Firefly III ledger engine.

A two-posting transaction maps onto one Firefly split:
- the negative posting is the source account, the positive one the
  destination, amount is the absolute value;
- withdrawal when the destination is an Expenses/Income account, deposit
  when only the source is, transfer otherwise;
- GL account names are used verbatim as Firefly account names;
- posting sources travel in external_id (source side) and
  internal_reference (destination side).
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import (
    LedgerConnectionError,
    LedgerError,
    LedgerTransactionNotFoundError,
    LedgerValidationError,
)
from ..schemas.journal_entry import Amount
from .ledger_engine import (
    CommittedPosting,
    CommittedTransaction,
    LedgerEngine,
    ProposedTransaction,
    resolve_postings,
)

logger = logging.getLogger(__name__)

NOMINAL_ROOTS = ("Expenses", "Income", "Revenue")


class FireflyAPIError(LedgerError):
    """Firefly returned a non-success response."""

    def __init__(self, status_code: int, message: str, errors: dict | None = None):
        self.status_code = status_code
        self.errors = errors or {}
        details = []
        for field_name, msgs in self.errors.items():
            if isinstance(msgs, list):
                details.extend(f"{field_name}: {m}" for m in msgs)
            else:
                details.append(f"{field_name}: {msgs}")
        super().__init__(f"Firefly API error {status_code}: {'; '.join(details) or message}")


def _root(account: str) -> str:
    return account.split(":", 1)[0]


def transaction_type(source_account: str, destination_account: str) -> str:
    """Firefly transaction type for a money flow between two GL accounts."""
    if _root(destination_account) in NOMINAL_ROOTS:
        return "withdrawal"
    if _root(source_account) in NOMINAL_ROOTS:
        return "deposit"
    return "transfer"


class FireflyLedgerEngine(LedgerEngine):
    """Ledger engine backed by a Firefly III instance."""

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"API Request: {method} {url}")
        if json_data:
            logger.debug(f"Request body: {json.dumps(json_data, indent=2)}")

        try:
            response = self.session.request(
                method=method, url=url, params=params, json=json_data, timeout=self.timeout
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"Connection error to {url}: {e}")
            raise LedgerConnectionError(
                f"Failed to reach Firefly at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise LedgerError(f"Firefly request failed: {e}") from e

        if not response.ok:
            try:
                body = response.json()
                errors = body.get("errors", {}) or {}
                message = body.get("message", response.reason)
            except ValueError:
                errors, message = {}, response.reason
            logger.error(f"API Error {response.status_code}: {message}")
            if response.status_code == 422:
                error = FireflyAPIError(response.status_code, message, errors)
                raise LedgerValidationError(str(error)) from error
            if response.status_code == 404:
                raise LedgerTransactionNotFoundError(f"{endpoint}: {message}")
            raise FireflyAPIError(response.status_code, message, errors)

        return response

    def commit(self, proposed: ProposedTransaction) -> CommittedTransaction:
        postings = resolve_postings(proposed)
        if len(postings) != 2:
            raise LedgerValidationError(
                f"Firefly engine supports two-posting transactions, got {len(postings)}"
            )
        source, destination = sorted(postings, key=lambda p: p.amount.quantity)
        if source.amount.quantity == 0:
            raise LedgerValidationError("Firefly cannot store a zero-amount transaction")

        split = {
            "type": transaction_type(source.account, destination.account),
            "date": proposed.date,
            "amount": f"{destination.amount.quantity:.2f}",
            "description": proposed.description,
            "source_name": source.account,
            "destination_name": destination.account,
            "currency_code": destination.amount.commodity,
            "tags": [f"{k}:{v}" for k, v in proposed.tags],
        }
        if source.source:
            split["external_id"] = source.source
        if destination.source:
            split["internal_reference"] = destination.source
        if proposed.comment:
            split["notes"] = proposed.comment
        payload = {
            "error_if_duplicate_hash": False,
            "apply_rules": False,
            "transactions": [split],
        }

        response = self._request("POST", "/api/v1/transactions", json_data=payload)
        txn_id = str(response.json().get("data", {}).get("id", ""))
        if not txn_id:
            raise LedgerError("Firefly accepted the transaction but returned no id")
        logger.info(f"Created Firefly transaction id={txn_id}")

        return CommittedTransaction(
            id=txn_id,
            date=proposed.date,
            description=proposed.description,
            postings=[source, destination],
            status=proposed.status,
            balances=self._balances([source.account, destination.account]),
        )

    def _balances(self, accounts: list[str]) -> dict[str, dict[str, Decimal]]:
        balances: dict[str, dict[str, Decimal]] = {}
        for name in accounts:
            try:
                response = self._request(
                    "GET", "/api/v1/search/accounts", params={"query": name, "field": "name"}
                )
            except LedgerError as e:
                logger.warning(f"Could not read Firefly balance of {name}: {e}")
                continue
            for item in response.json().get("data", []):
                attrs = item.get("attributes", {})
                if attrs.get("name") != name:
                    continue
                try:
                    balance = Decimal(str(attrs.get("current_balance")))
                except InvalidOperation:
                    continue
                balances[name] = {attrs.get("currency_code") or "USD": balance}
                break
        return balances

    def get(self, txn_id: str) -> Optional[CommittedTransaction]:
        try:
            response = self._request("GET", f"/api/v1/transactions/{txn_id}")
        except LedgerTransactionNotFoundError:
            return None

        data = response.json().get("data", {})
        splits = data.get("attributes", {}).get("transactions", [])
        if not splits:
            return None
        split = splits[0]
        quantity = Decimal(str(split.get("amount", "0")))
        commodity = split.get("currency_code") or "USD"
        return CommittedTransaction(
            id=str(data.get("id", txn_id)),
            date=(split.get("date") or "")[:10],
            description=split.get("description", ""),
            postings=[
                CommittedPosting(
                    split.get("source_name", ""),
                    Amount(-quantity, commodity),
                    split.get("external_id"),
                ),
                CommittedPosting(
                    split.get("destination_name", ""),
                    Amount(quantity, commodity),
                    split.get("internal_reference"),
                ),
            ],
        )

    def remove(self, txn_id: str) -> None:
        self._request("DELETE", f"/api/v1/transactions/{txn_id}")
        logger.info(f"Deleted Firefly transaction id={txn_id}")

    def remove_postings(self, txn_id: str, source: str) -> bool:
        txn = self.get(txn_id)
        if txn is None:
            raise LedgerTransactionNotFoundError(f"Firefly transaction not found: {txn_id}")
        matching = [p for p in txn.postings if p.source == source]
        if not matching:
            return False
        if len(matching) != len(txn.postings):
            raise LedgerValidationError(
                f"Firefly transaction {txn_id} cannot drop single postings"
            )
        self.remove(txn_id)
        return True
