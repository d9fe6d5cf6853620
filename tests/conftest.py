"""Test fixtures and utilities."""

import random
from datetime import date
from pathlib import Path
from typing import Any, Optional

import pytest

from scrape_ledger.config import LoginConfig
from scrape_ledger.documents import ArtifactStore, CheckpointLedger
from scrape_ledger.driver import (
    DriverContext,
    ProgressWatchdog,
    ScrapeSession,
    StaticSecretStore,
)
from scrape_ledger.driver.page import Download, Page
from scrape_ledger.schemas.documents import Scope
from scrape_ledger.state_store import StateStore

# Citi dashboard activity export (one statement row)
COSTCO_ACTIVITY_CSV = (
    "date,description,amount,note,period\n"
    '"Feb 14, 2026","COSTCO WHSE #0006","-$109.04","","Statement closed Feb 16, 2026"\n'
)

# Provident checking export
PROVIDENT_CHECKING_CSV = (
    '"Date","Description","Comments","Check Number","Amount","Balance"\n'
    '"02/18/2026","UI BENEFIT WA ST EMPLOY SEC ID2911762161","","","$1,037.00","$54,265.70"\n'
    '"02/16/2026","CITI AUTOPAY PAYMENT 3743","","","-$109.04","$53,228.70"\n'
    '"02/10/2026","CHECK","rent","1042","-$1,250.00","$53,337.74"\n'
)

CITI_LOGIN = "citiPersonal"
COSTCO_LABEL = "costco_anywhere_visa_card_by_citi_3743"
COSTCO_GL = "Liabilities:Citi:Costco Visa"
PROVIDENT_LOGIN = "providentJoint"
CHECKING_LABEL = "checking_1234"
CHECKING_GL = "Assets:Provident:Checking"


class FakePage(Page):
    """In-memory page double; records every call in `actions`."""

    def __init__(self, url: str = "about:blank", snapshot_text: str = ""):
        self.current_url = url
        self.snapshot_text = snapshot_text
        self.visible: set[str] = set()
        self.texts: dict[str, str] = {}
        self.evaluations: dict[str, Any] = {}
        self.filled: dict[str, str] = {}
        self.actions: list[tuple[str, str]] = []
        self.download: Optional[Download] = None

    def url(self) -> str:
        return self.current_url

    def goto(self, url: str) -> None:
        self.actions.append(("goto", url))
        self.current_url = url

    def evaluate(self, expression: str) -> Any:
        self.actions.append(("evaluate", expression))
        return self.evaluations.get(expression)

    def click(self, selector: str) -> None:
        self.actions.append(("click", selector))

    def fill(self, selector: str, value: str) -> None:
        self.actions.append(("fill", selector))
        self.filled[selector] = value

    def type(self, selector: str, text: str) -> None:
        self.actions.append(("type", selector))
        self.filled[selector] = self.filled.get(selector, "") + text

    def is_visible(self, selector: str) -> bool:
        return selector in self.visible

    def query_text(self, selector: str) -> Optional[str]:
        return self.texts.get(selector)

    def wait_for_download(self, selector: str, timeout_ms: int = 30_000) -> Download:
        self.actions.append(("download", selector))
        if self.download is None:
            raise TimeoutError(f"no download for {selector}")
        return self.download

    def snapshot(self) -> str:
        return self.snapshot_text


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def ledger_dir(tmp_path) -> Path:
    return tmp_path / "ledger"


@pytest.fixture
def state_store(temp_db) -> StateStore:
    return StateStore(temp_db)


@pytest.fixture
def artifact_store(ledger_dir, state_store) -> ArtifactStore:
    return ArtifactStore(ledger_dir, state_store)


@pytest.fixture
def costco_scope() -> Scope:
    return Scope(CITI_LOGIN, COSTCO_LABEL)


@pytest.fixture
def checking_scope() -> Scope:
    return Scope(PROVIDENT_LOGIN, CHECKING_LABEL)


@pytest.fixture
def costco_csv() -> bytes:
    return COSTCO_ACTIVITY_CSV.encode("utf-8")


@pytest.fixture
def provident_csv() -> bytes:
    return PROVIDENT_CHECKING_CSV.encode("utf-8")


@pytest.fixture
def logins() -> dict[str, LoginConfig]:
    return {
        CITI_LOGIN: LoginConfig(
            name=CITI_LOGIN,
            extension="citi",
            accounts={COSTCO_LABEL: COSTCO_GL, "old_card_0001": None},
        ),
        PROVIDENT_LOGIN: LoginConfig(
            name=PROVIDENT_LOGIN,
            extension="providentcu",
            accounts={CHECKING_LABEL: CHECKING_GL},
        ),
    }


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def checkpoint_ledger(state_store) -> CheckpointLedger:
    return CheckpointLedger(state_store, today=lambda: date(2026, 2, 20))


@pytest.fixture
def secret_store() -> StaticSecretStore:
    return StaticSecretStore({(CITI_LOGIN, "citi.com", "password"): "hunter2-secret"})


@pytest.fixture
def scrape_session() -> ScrapeSession:
    return ScrapeSession(id="20260220-101500", login=CITI_LOGIN)


@pytest.fixture
def driver_context(
    fake_page, artifact_store, checkpoint_ledger, secret_store, scrape_session
) -> DriverContext:
    """Context for the Citi login with username/password declared for citi.com."""
    return DriverContext(
        login=CITI_LOGIN,
        session=scrape_session,
        page=fake_page,
        artifact_store=artifact_store,
        checkpoint_ledger=checkpoint_ledger,
        secret_store=secret_store,
        declared_secrets={"citi.com": ["username", "password"]},
        watchdog=ProgressWatchdog(6),
        rng=random.Random(0),
    )
