"""Tests for CLI commands.

These tests verify that all CLI commands are properly registered and run
end-to-end against a temporary config, state database and journal.
"""

import json

import pytest
import yaml
from conftest import (
    CHECKING_GL,
    CHECKING_LABEL,
    CITI_LOGIN,
    COSTCO_ACTIVITY_CSV,
    COSTCO_GL,
    COSTCO_LABEL,
    PROVIDENT_LOGIN,
)

from scrape_ledger.documents import ArtifactStore, CheckpointLedger
from scrape_ledger.runner.main import create_cli, main
from scrape_ledger.schemas.documents import Scope
from scrape_ledger.state_store import StateStore

CSV_NAME = "activity/2026-02-16-transactions.csv"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "SCRAPE_LEDGER_DIR",
        "SCRAPE_LEDGER_STATE_DB",
        "SCRAPE_LEDGER_HEADLESS",
        "FIREFLY_URL",
        "FIREFLY_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


def write_config(path, ledger_dir, logins=None):
    data = {
        "ledger_dir": str(ledger_dir),
        "state_db_path": str(ledger_dir / "state.db"),
        "logins": logins
        or {
            CITI_LOGIN: {"extension": "citi", "accounts": {COSTCO_LABEL: COSTCO_GL}},
            PROVIDENT_LOGIN: {
                "extension": "providentcu",
                "accounts": {CHECKING_LABEL: CHECKING_GL},
            },
        },
    }
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def cli_ledger_dir(tmp_path):
    return tmp_path / "ledger"


@pytest.fixture
def config_path(tmp_path, cli_ledger_dir):
    return write_config(tmp_path / "config.yaml", cli_ledger_dir)


@pytest.fixture
def cli_state(cli_ledger_dir):
    return StateStore(cli_ledger_dir / "state.db")


@pytest.fixture
def stored_export(cli_ledger_dir, cli_state):
    """The Costco activity export, as a scrape would have stored it."""
    scope = Scope(CITI_LOGIN, COSTCO_LABEL)
    ArtifactStore(cli_ledger_dir, cli_state).save(
        scope, CSV_NAME, COSTCO_ACTIVITY_CSV.encode("utf-8"), coverage_end_date="2026-02-16"
    )
    return scope


def run_cli(config_path, *args) -> int:
    return main(["-c", str(config_path), *args])


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        """Verify all expected commands are registered."""
        parser = create_cli()

        subparsers_action = None
        for action in parser._actions:
            if action.dest == "command":
                subparsers_action = action
                break

        assert subparsers_action is not None
        commands = set(subparsers_action.choices.keys())
        assert commands == {
            "scrape",
            "documents",
            "extract",
            "unreconciled",
            "reconcile",
            "transfer",
            "candidates",
            "unreconcile",
            "checkpoints",
            "conflicts",
            "status",
            "init",
        }

    def test_reconcile_arguments(self):
        parser = create_cli()

        args = parser.parse_args(
            ["reconcile", CITI_LOGIN, COSTCO_LABEL, "abc123", "Expenses:Groceries"]
        )
        assert args.login == CITI_LOGIN
        assert args.label == COSTCO_LABEL
        assert args.entry_id == "abc123"
        assert args.counterpart == "Expenses:Groceries"
        assert args.posting is None

        args = parser.parse_args(
            ["reconcile", CITI_LOGIN, COSTCO_LABEL, "abc123", "Expenses:Groceries", "--posting=1"]
        )
        assert args.posting == 1

    def test_extract_file_option_repeats(self):
        parser = create_cli()

        args = parser.parse_args(["extract", CITI_LOGIN, COSTCO_LABEL, "--file", "a.csv"])
        assert args.files == ["a.csv"]

        args = parser.parse_args(
            ["extract", CITI_LOGIN, COSTCO_LABEL, "--file", "a.csv", "--file", "b.csv"]
        )
        assert args.files == ["a.csv", "b.csv"]

    def test_scrape_no_extract_option(self):
        parser = create_cli()

        assert parser.parse_args(["scrape", CITI_LOGIN]).no_extract is False
        assert parser.parse_args(["scrape", CITI_LOGIN, "--no-extract"]).no_extract is True

    def test_scope_arguments_required(self):
        parser = create_cli()

        with pytest.raises(SystemExit):
            parser.parse_args(["extract", CITI_LOGIN])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage:" in capsys.readouterr().out


class TestInitCommand:
    def test_init_writes_default_config(self, tmp_path):
        path = tmp_path / "conf" / "config.yaml"

        assert main(["-c", str(path), "init"]) == 0

        data = yaml.safe_load(path.read_text())
        assert data["reconciliation"]["ledger_engine"] == "journal"
        assert "citiPersonal" in data["logins"]

    def test_init_refuses_to_overwrite(self, config_path, capsys):
        before = config_path.read_text()

        assert run_cli(config_path, "init") == 1

        assert config_path.read_text() == before
        assert "already exists" in capsys.readouterr().out


class TestPipelineCommands:
    """extract -> unreconciled -> reconcile -> unreconcile through main()."""

    def test_documents_json(self, config_path, stored_export, capsys):
        assert run_cli(config_path, "documents", CITI_LOGIN, COSTCO_LABEL, "--json") == 0

        listing = json.loads(capsys.readouterr().out)
        assert [doc["filename"] for doc in listing] == [CSV_NAME]
        assert listing[0]["coverageEndDate"] == "2026-02-16"

    def test_extract(self, config_path, stored_export, cli_state, capsys):
        assert run_cli(config_path, "extract", CITI_LOGIN, COSTCO_LABEL) == 0

        out = capsys.readouterr().out
        assert "New entries:       1" in out
        assert "Extraction completed" in out
        assert len(cli_state.get_entries(stored_export)) == 1

    def test_extract_missing_file_reports_error(self, config_path, stored_export, capsys):
        assert run_cli(config_path, "extract", CITI_LOGIN, COSTCO_LABEL, "--file", "nope.csv") == 1
        assert "nope.csv" in capsys.readouterr().out

    def test_extract_unknown_login(self, config_path, capsys):
        assert run_cli(config_path, "extract", "nobody", COSTCO_LABEL) == 1
        assert "Unknown login: nobody" in capsys.readouterr().out

    def test_reconcile_round_trip(
        self, config_path, stored_export, cli_state, cli_ledger_dir, capsys
    ):
        assert run_cli(config_path, "extract", CITI_LOGIN, COSTCO_LABEL) == 0
        capsys.readouterr()

        assert run_cli(config_path, "unreconciled", CITI_LOGIN, COSTCO_LABEL, "--json") == 0
        pending = json.loads(capsys.readouterr().out)
        assert [entry["description"] for entry in pending] == ["COSTCO WHSE #0006"]
        entry_id = pending[0]["id"]

        reconcile_args = ("reconcile", CITI_LOGIN, COSTCO_LABEL, entry_id, "Expenses:Groceries")
        assert run_cli(config_path, *reconcile_args) == 0
        assert f"Reconciled {entry_id}" in capsys.readouterr().out

        journal = (cli_ledger_dir / "general.journal").read_text()
        assert "COSTCO WHSE #0006" in journal
        assert "Expenses:Groceries" in journal
        assert cli_state.get_unreconciled_entries(stored_export) == []

        assert run_cli(config_path, "status") == 0
        out = capsys.readouterr().out
        assert "Entries reconciled:     1" in out
        assert "Entries unreconciled:   0" in out

        assert run_cli(config_path, "unreconcile", CITI_LOGIN, COSTCO_LABEL, entry_id) == 0
        assert "COSTCO WHSE #0006" not in (cli_ledger_dir / "general.journal").read_text()
        assert len(cli_state.get_unreconciled_entries(stored_export)) == 1

    def test_reconcile_unknown_entry(self, config_path, stored_export, capsys):
        reconcile_args = ("reconcile", CITI_LOGIN, COSTCO_LABEL, "missing", "Expenses:Groceries")
        assert run_cli(config_path, *reconcile_args) == 1
        assert capsys.readouterr().out.startswith("❌")

    def test_unreconcile_not_reconciled(self, config_path, stored_export, cli_state, capsys):
        run_cli(config_path, "extract", CITI_LOGIN, COSTCO_LABEL)
        entry_id = cli_state.get_entries(stored_export)[0].id
        capsys.readouterr()

        assert run_cli(config_path, "unreconcile", CITI_LOGIN, COSTCO_LABEL, entry_id) == 1
        assert "❌" in capsys.readouterr().out


class TestStatusCommands:
    def test_status_empty(self, config_path, capsys):
        assert run_cli(config_path, "status") == 0
        out = capsys.readouterr().out
        assert "Pipeline Status" in out
        assert "Documents saved:        0" in out

    def test_status_lists_labels_with_documents(
        self, config_path, stored_export, cli_ledger_dir, cli_state, capsys
    ):
        ArtifactStore(cli_ledger_dir, cli_state).save(
            Scope(CITI_LOGIN, "old_card_0001"), "a.csv", b"x"
        )

        assert run_cli(config_path, "status") == 0

        out = capsys.readouterr().out
        assert f"{CITI_LOGIN}: documents for 2 label(s)" in out
        assert f"{PROVIDENT_LOGIN}: documents for 0 label(s)" in out
        assert "old_card_0001 has documents but is not in the account mapping" in out
        assert f"{COSTCO_LABEL} has documents" not in out

    def test_status_reports_config_problems(self, tmp_path, cli_ledger_dir, capsys):
        path = write_config(
            tmp_path / "bad.yaml",
            cli_ledger_dir,
            logins={CITI_LOGIN: {"accounts": {COSTCO_LABEL: COSTCO_GL}}},
        )

        assert run_cli(path, "status") == 1
        assert f"login '{CITI_LOGIN}' has no extension" in capsys.readouterr().out

    def test_conflicts_none(self, config_path, capsys):
        assert run_cli(config_path, "conflicts") == 0
        assert "No GL account conflicts" in capsys.readouterr().out

    def test_conflicts_reported(self, tmp_path, cli_ledger_dir, capsys):
        path = write_config(
            tmp_path / "conflict.yaml",
            cli_ledger_dir,
            logins={
                CITI_LOGIN: {"extension": "citi", "accounts": {COSTCO_LABEL: COSTCO_GL}},
                PROVIDENT_LOGIN: {
                    "extension": "providentcu",
                    "accounts": {CHECKING_LABEL: COSTCO_GL},
                },
            },
        )

        assert run_cli(path, "conflicts") == 1
        out = capsys.readouterr().out
        assert COSTCO_GL in out
        assert f"{CITI_LOGIN}/{COSTCO_LABEL}" in out
        assert f"{PROVIDENT_LOGIN}/{CHECKING_LABEL}" in out

    def test_checkpoints(self, config_path, cli_state, capsys):
        ledger = CheckpointLedger(cli_state)
        ledger.record(f"{CITI_LOGIN}:{COSTCO_LABEL}", 1, "2025-12", "found", final=False)
        ledger.record(f"{PROVIDENT_LOGIN}:{CHECKING_LABEL}", 1, "2025-12", "none", final=False)

        assert run_cli(config_path, "checkpoints", CITI_LOGIN) == 0

        out = capsys.readouterr().out
        assert COSTCO_LABEL in out
        assert "v1 2025-12" in out
        assert CHECKING_LABEL not in out
