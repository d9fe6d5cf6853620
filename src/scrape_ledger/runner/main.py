"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..documents import ArtifactStore, CheckpointLedger
from ..driver import load_driver_plugins
from ..driver.playwright_page import open_browser_page
from ..errors import ScrapeLedgerError
from ..extraction import DedupTolerances, ExtractionEngine
from ..logins import find_gl_account_conflicts
from ..reconciliation import ReconciliationEngine
from ..schemas.documents import Scope
from ..services import ScrapeService
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="scrape-ledger",
        description="Scrape institution documents, extract journal entries and reconcile them",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    scrape_parser = subparsers.add_parser("scrape", help="Run a login's driver in the browser")
    scrape_parser.add_argument("login", help="Login name from config.yaml")
    scrape_parser.add_argument(
        "--no-extract",
        action="store_true",
        help="Do not extract entries from newly saved documents",
    )

    documents_parser = subparsers.add_parser("documents", help="List stored documents")
    _add_scope_args(documents_parser)
    documents_parser.add_argument("--json", action="store_true", help="Print JSON")

    extract_parser = subparsers.add_parser("extract", help="Extract journal entries")
    _add_scope_args(extract_parser)
    extract_parser.add_argument(
        "--file",
        dest="files",
        action="append",
        help="Only extract this document (repeatable; default: all documents)",
    )

    unreconciled_parser = subparsers.add_parser(
        "unreconciled", help="List entries not yet reconciled"
    )
    _add_scope_args(unreconciled_parser)
    unreconciled_parser.add_argument("--json", action="store_true", help="Print JSON")

    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Reconcile an entry against a counterpart account"
    )
    _add_scope_args(reconcile_parser)
    reconcile_parser.add_argument("entry_id", help="Journal entry id")
    reconcile_parser.add_argument("counterpart", help="Counterpart GL account")
    reconcile_parser.add_argument(
        "--posting", type=int, default=None, help="Reconcile only this posting index"
    )

    transfer_parser = subparsers.add_parser(
        "transfer", help="Reconcile two entries as one transfer"
    )
    transfer_parser.add_argument("login_a")
    transfer_parser.add_argument("label_a")
    transfer_parser.add_argument("entry_a")
    transfer_parser.add_argument("login_b")
    transfer_parser.add_argument("label_b")
    transfer_parser.add_argument("entry_b")

    candidates_parser = subparsers.add_parser(
        "candidates", help="Suggest the other leg of a transfer"
    )
    _add_scope_args(candidates_parser)
    candidates_parser.add_argument("entry_id", help="Journal entry id")
    candidates_parser.add_argument(
        "--days", type=int, default=None, help="Date window in days (default: from config)"
    )

    unreconcile_parser = subparsers.add_parser("unreconcile", help="Undo a reconciliation")
    _add_scope_args(unreconcile_parser)
    unreconcile_parser.add_argument("entry_id", help="Journal entry id")
    unreconcile_parser.add_argument(
        "--posting", type=int, default=None, help="Unreconcile only this posting index"
    )

    checkpoints_parser = subparsers.add_parser("checkpoints", help="Show scan checkpoints")
    checkpoints_parser.add_argument("login", help="Login name")
    checkpoints_parser.add_argument(
        "scope", nargs="?", default=None, help="Checkpoint scope (default: all of the login)"
    )

    subparsers.add_parser("conflicts", help="Show GL accounts claimed by more than one label")
    subparsers.add_parser("status", help="Show pipeline status and statistics")
    subparsers.add_parser("init", help="Write a default config file")

    return parser


def _add_scope_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("login", help="Login name")
    parser.add_argument("label", help="Account label")


def _stores(config: Config) -> tuple[StateStore, ArtifactStore]:
    state_store = StateStore(config.state_db_path)
    return state_store, ArtifactStore(config.ledger_dir, state_store)


def _extraction_engine(config: Config, state_store: StateStore, artifacts: ArtifactStore):
    settings = config.extraction
    return ExtractionEngine(
        state_store,
        artifacts,
        default_commodity=settings.default_commodity,
        tolerances=DedupTolerances(
            date_days=settings.dedup_date_days,
            pending_days=settings.pending_days,
            pending_amount_abs=settings.pending_amount_abs,
            pending_amount_pct=settings.pending_amount_pct,
        ),
    )


def _extension_for(config: Config, login: str) -> str:
    return config.get_login(login).extension


def cmd_scrape(config: Config, login: str, extract: bool = True) -> int:
    """Run the driver for a login."""
    state_store, artifacts = _stores(config)
    load_driver_plugins()

    service = ScrapeService(
        config,
        artifacts,
        CheckpointLedger(state_store),
        extraction_engine=_extraction_engine(config, state_store, artifacts) if extract else None,
        prompt=input,
    )

    print(f"🌐 Scraping {login}...")
    with open_browser_page(config.driver.profile_dir, headless=config.driver.headless) as page:
        result = service.run(login, page)

    print(f"\n✓ Session {result.scrape_session_id}: {result.saved_count} new document(s)")
    for document in result.report.saved_documents:
        print(f"  📄 {document.scope.label}/{document.filename}")
    for key, value in sorted(result.report.reported_values.items()):
        print(f"  {key}: {value}")
    for label, extraction in result.extraction.items():
        print(
            f"  📊 {label}: {extraction.new_entry_count} new entries, "
            f"{len(extraction.errors)} error(s)"
        )
    return 0


def cmd_documents(config: Config, scope: Scope, as_json: bool = False) -> int:
    """List documents of a scope."""
    _, artifacts = _stores(config)
    documents = artifacts.list(scope)
    if as_json:
        print(json.dumps([doc.to_dict() for doc in documents], indent=2))
        return 0

    for doc in documents:
        coverage = f" (through {doc.coverage_end_date})" if doc.coverage_end_date else ""
        print(f"  📄 {doc.filename}{coverage} [{doc.mime_type}, {doc.size} bytes]")
    print(f"\n✓ {len(documents)} document(s) in {scope}")
    return 0


def cmd_extract(config: Config, scope: Scope, files: list[str] | None) -> int:
    """Extract journal entries from a scope's documents."""
    extension = _extension_for(config, scope.login)
    state_store, artifacts = _stores(config)
    engine = _extraction_engine(config, state_store, artifacts)

    print(f"📊 Extracting {scope}...")
    result = engine.extract(scope, extension, files)

    print(f"  New entries:       {result.new_entry_count}")
    print(f"  Existing entries:  {result.existing_entry_count}")
    print(f"  Evidence added:    {result.evidence_added}")
    print(f"  Updated entries:   {result.updated_entry_count}")
    print(f"  Skipped rows:      {result.skipped_rows}")
    if result.ambiguous:
        print(f"\n⚠️  {len(result.ambiguous)} row(s) matched several entries, left unmerged:")
        for ref in result.ambiguous:
            print(f"   - {ref}")
    if result.errors:
        print("\n⚠️  Errors encountered:")
        for filename, error in sorted(result.errors.items()):
            print(f"   - {filename}: {error}")
        return 1
    print("\n✓ Extraction completed")
    return 0


def cmd_unreconciled(config: Config, scope: Scope, as_json: bool = False) -> int:
    """List unreconciled entries."""
    state_store, _ = _stores(config)
    engine = ReconciliationEngine.from_config(config, state_store)
    entries = engine.get_unreconciled(scope)
    if as_json:
        print(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return 0

    for entry in entries:
        amount = str(entry.amount) if entry.amount is not None else "?"
        print(f"  {entry.id[:12]}  {entry.date}  {amount:>14}  {entry.description}")
    print(f"\n✓ {len(entries)} unreconciled entr{'y' if len(entries) == 1 else 'ies'} in {scope}")
    return 0


def cmd_reconcile(
    config: Config, scope: Scope, entry_id: str, counterpart: str, posting: int | None
) -> int:
    """Reconcile one entry."""
    state_store, _ = _stores(config)
    engine = ReconciliationEngine.from_config(config, state_store)
    txn_id = engine.reconcile(scope, entry_id, counterpart, posting_index=posting)
    print(f"✓ Reconciled {entry_id} → {txn_id}")
    return 0


def cmd_transfer(config: Config, scope_a: Scope, entry_a: str, scope_b: Scope, entry_b: str) -> int:
    """Reconcile two entries as a transfer."""
    state_store, _ = _stores(config)
    engine = ReconciliationEngine.from_config(config, state_store)
    txn_id = engine.reconcile_transfer(scope_a, entry_a, scope_b, entry_b)
    print(f"✓ Transfer {scope_a}:{entry_a} ↔ {scope_b}:{entry_b} → {txn_id}")
    return 0


def cmd_candidates(config: Config, scope: Scope, entry_id: str, days: int | None) -> int:
    """Suggest transfer counterparts."""
    state_store, _ = _stores(config)
    engine = ReconciliationEngine.from_config(config, state_store)
    candidates = engine.find_transfer_candidates(scope, entry_id, date_window_days=days)
    for candidate in candidates:
        marker = "🔁" if candidate.is_tagged_transfer else "  "
        entry = candidate.entry
        print(
            f"  {marker} {candidate.scope} {entry.id[:12]}  {entry.date}  "
            f"{entry.amount}  {entry.description}"
        )
    print(f"\n✓ {len(candidates)} candidate(s)")
    return 0


def cmd_unreconcile(config: Config, scope: Scope, entry_id: str, posting: int | None) -> int:
    """Undo a reconciliation."""
    state_store, _ = _stores(config)
    engine = ReconciliationEngine.from_config(config, state_store)
    engine.unreconcile(scope, entry_id, posting_index=posting)
    print(f"✓ Unreconciled {entry_id}")
    return 0


def cmd_checkpoints(config: Config, login: str, scope: str | None) -> int:
    """Show checkpoints of a login."""
    state_store, _ = _stores(config)
    ledger = CheckpointLedger(state_store)
    prefix = f"{login}:"
    scopes = [prefix + scope] if scope else state_store.list_checkpoint_scopes(prefix)

    print(f"\n📅 Checkpoints for {login} (current period {ledger.current_period()})")
    print("=" * 40)
    for key in scopes:
        print(f"  {key[len(prefix):]}")
        for checkpoint in ledger.list(key):
            final = "final" if checkpoint.final else "open"
            print(
                f"    v{checkpoint.version} {checkpoint.period}  "
                f"{checkpoint.result.value:<5}  {final}"
            )
    print()
    return 0


def cmd_conflicts(config: Config) -> int:
    """Show GL account conflicts."""
    conflicts = find_gl_account_conflicts(config.logins.values())
    if not conflicts:
        print("✓ No GL account conflicts")
        return 0
    print("⚠️  GL accounts claimed by more than one label:")
    for conflict in conflicts:
        claimants = ", ".join(f"{e.login_name}/{e.label}" for e in conflict.entries)
        print(f"   - {conflict.gl_account}: {claimants}")
    return 1


def cmd_status(config: Config) -> int:
    """Show pipeline status."""
    state_store, artifacts = _stores(config)
    stats = state_store.get_stats()

    print("\n📊 Pipeline Status")
    print("=" * 40)
    print(f"  Documents saved:        {stats['documents_saved']}")
    print(f"  Entries total:          {stats['entries_total']}")
    print(f"  Entries reconciled:     {stats['entries_reconciled']}")
    print(f"  Entries unreconciled:   {stats['entries_unreconciled']}")
    print(f"  Final checkpoints:      {stats['checkpoints_final']}")
    print(f"  Ledger transactions:    {stats['ledger_transactions']}")
    print()

    for login in config.logins.values():
        labels = artifacts.list_scopes(login.name)
        print(f"  {login.name}: documents for {len(labels)} label(s)")
        for label in labels:
            if label not in login.accounts:
                print(f"   ⚠️  {label} has documents but is not in the account mapping")
    if config.logins:
        print()

    errors = config.validate()
    if errors:
        print("⚠️  Configuration problems:")
        for error in errors:
            print(f"   - {error}")
        return 1
    return 0


def cmd_init(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1
    if parsed.command == "init":
        return cmd_init(parsed.config)

    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    try:
        return _dispatch(parser, parsed, config)
    except (ScrapeLedgerError, ConfigValidationError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"❌ {e}")
        return 1


def _dispatch(parser: argparse.ArgumentParser, parsed: argparse.Namespace, config: Config) -> int:
    command = parsed.command
    if command == "scrape":
        return cmd_scrape(config, parsed.login, extract=not parsed.no_extract)
    if command == "status":
        return cmd_status(config)
    if command == "conflicts":
        return cmd_conflicts(config)
    if command == "checkpoints":
        return cmd_checkpoints(config, parsed.login, parsed.scope)
    if command == "transfer":
        return cmd_transfer(
            config,
            Scope(parsed.login_a, parsed.label_a),
            parsed.entry_a,
            Scope(parsed.login_b, parsed.label_b),
            parsed.entry_b,
        )

    scope = Scope(parsed.login, parsed.label)
    if command == "documents":
        return cmd_documents(config, scope, parsed.json)
    if command == "extract":
        return cmd_extract(config, scope, parsed.files)
    if command == "unreconciled":
        return cmd_unreconciled(config, scope, parsed.json)
    if command == "reconcile":
        return cmd_reconcile(config, scope, parsed.entry_id, parsed.counterpart, parsed.posting)
    if command == "candidates":
        return cmd_candidates(config, scope, parsed.entry_id, parsed.days)
    if command == "unreconcile":
        return cmd_unreconcile(config, scope, parsed.entry_id, parsed.posting)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
