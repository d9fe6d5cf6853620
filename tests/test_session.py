"""Tests for scrape sessions and secret stores."""

from datetime import datetime

import pytest

from scrape_ledger.driver import (
    EnvironmentSecretStore,
    ScrapeSession,
    SessionManager,
    StaticSecretStore,
    generate_scrape_session_id,
)
from scrape_ledger.driver.secrets import domain_matches, domain_of
from scrape_ledger.errors import SessionActiveError, SessionCancelledError


class TestSessionManager:
    """At most one active session per process."""

    def test_second_start_rejected(self):
        manager = SessionManager()
        manager.start("citiPersonal")

        with pytest.raises(SessionActiveError):
            manager.start("providentJoint")

    def test_replace_cancels_previous(self):
        manager = SessionManager()
        first = manager.start("citiPersonal")
        second = manager.start("providentJoint", replace=True)

        assert first.cancelled
        assert manager.active is second

    def test_stop_releases(self):
        manager = SessionManager()
        session = manager.start("citiPersonal")
        manager.stop()

        assert session.cancelled
        assert manager.active is None
        manager.start("citiPersonal")

    def test_stop_stale_session_keeps_active(self):
        manager = SessionManager()
        stale = ScrapeSession(id="old", login="citiPersonal")
        active = manager.start("providentJoint")

        manager.stop(stale)

        assert stale.cancelled
        assert manager.active is active

    def test_session_id_format(self):
        assert generate_scrape_session_id(datetime(2026, 2, 20, 10, 15, 0)) == "20260220-101500"


class TestScrapeSession:
    def test_sleep_raises_when_cancelled(self):
        session = ScrapeSession(id="s", login="citiPersonal")
        session.sleep(0)
        session.cancel()

        with pytest.raises(SessionCancelledError):
            session.sleep(5)
        with pytest.raises(SessionCancelledError):
            session.check_cancelled()


class TestSecretStores:
    def test_environment_variable_name(self):
        name = EnvironmentSecretStore.variable_name("citiPersonal", "citi.com", "password")
        assert name == "SCRAPE_LEDGER_SECRET_CITIPERSONAL_CITI_COM_PASSWORD"

    def test_environment_lookup(self):
        store = EnvironmentSecretStore(
            {
                "SCRAPE_LEDGER_SECRET_CITIPERSONAL_CITI_COM_PASSWORD": "pw",
                "SCRAPE_LEDGER_SECRET_CITIPERSONAL_CITI_COM_USERNAME": "",
            }
        )

        assert store.get("citiPersonal", "citi.com", "password") == "pw"
        assert store.get("citiPersonal", "citi.com", "username") is None

    def test_static_store_is_case_insensitive_on_domain(self):
        store = StaticSecretStore()
        store.set("citiPersonal", "Citi.com", "password", "pw")

        assert store.get("citiPersonal", "citi.COM", "password") == "pw"

    def test_domain_helpers(self):
        assert domain_of("https://www.citi.com/login") == "citi.com"
        assert domain_of("about:blank") == ""
        assert domain_matches("online.citi.com", "citi.com")
        assert not domain_matches("notciti.com", "citi.com")
