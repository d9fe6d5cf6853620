"""
Configuration management (SSOT).

This module defines ALL configuration for the scrape-ledger pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Logins are read-only to the pipeline. They are edited by the operator in
  config.yaml and never written back by any command except `init`.
- A GL account may be claimed by at most one (login, label) pair. Conflicts
  are reported by validate(), never silently resolved.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class LoginConfig:
    """A named credential/configuration profile.

    accounts maps account label -> GL account. A value of None means the
    label is known but intentionally ignored (never reconciled).
    """

    name: str
    extension: str
    accounts: dict[str, str | None] = field(default_factory=dict)

    def gl_account_for(self, label: str) -> str | None:
        """GL account mapped to a label (None if unknown or ignored)."""
        return self.accounts.get(label)

    def is_ignored(self, label: str) -> bool:
        """Check if a label is explicitly mapped to no account."""
        return label in self.accounts and self.accounts[label] is None


@dataclass
class DriverConfig:
    """Driver runtime settings."""

    # Steps without a new progress name before the run is aborted
    progress_threshold: int = 6
    # Hard ceiling on total steps per run
    max_steps: int = 200
    # Human pacing delay between steps (milliseconds, inclusive range)
    step_delay_ms: tuple[int, int] = (800, 1400)
    # Browser settings
    headless: bool = False
    profile_dir: Path | None = None
    # Run extraction for labels that received new documents after a scrape
    auto_extract: bool = True


@dataclass
class ExtractionConfig:
    """Extraction settings."""

    # Commodity used when a parser finds no explicit currency
    default_commodity: str = "USD"
    # Fuzzy match: rows this many days apart with equal amounts may be one transaction
    dedup_date_days: int = 1
    # A cleared row may finalize a pending entry this many days older
    pending_days: int = 7
    # Pending and final amounts may differ by this much (absolute) or this fraction
    pending_amount_abs: Decimal = Decimal("5.00")
    pending_amount_pct: Decimal = Decimal("0.20")


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # Ledger engine backend: "journal" (local general.journal) or "firefly"
    ledger_engine: str = "journal"
    # Optional hledger binary used to validate the generated journal
    hledger_path: str | None = None
    # Date window (days) for suggesting transfer counterparts
    transfer_window_days: int = 3
    # Reject transfers whose legs are not equal and sign-opposite
    require_transfer_amounts_match: bool = True


@dataclass
class FireflyConfig:
    """Firefly III configuration (only used with ledger_engine = "firefly")."""

    base_url: str
    token: str
    timeout: int = 30
    max_retries: int = 3


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    ledger_dir: Path = field(default_factory=lambda: Path("ledger"))
    state_db_path: Path = field(default_factory=lambda: Path("ledger/state.db"))
    driver: DriverConfig = field(default_factory=DriverConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    firefly: FireflyConfig | None = None
    logins: dict[str, LoginConfig] = field(default_factory=dict)

    def get_login(self, name: str) -> LoginConfig:
        """Get a login by name.

        Raises:
            ConfigValidationError: If the login is not configured
        """
        try:
            return self.logins[name]
        except KeyError:
            raise ConfigValidationError(f"Unknown login: {name}") from None

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        from .logins import find_gl_account_conflicts, validate_label

        errors: list[str] = []

        if self.driver.progress_threshold < 1:
            errors.append("driver.progress_threshold must be >= 1")
        if self.driver.max_steps < self.driver.progress_threshold:
            errors.append("driver.max_steps must be >= driver.progress_threshold")
        low, high = self.driver.step_delay_ms
        if low < 0 or high < low:
            errors.append("driver.step_delay_ms must be a non-negative [min, max] range")

        if self.extraction.dedup_date_days < 0 or self.extraction.pending_days < 0:
            errors.append("extraction.dedup_date_days and pending_days must be >= 0")
        if self.extraction.pending_amount_abs < 0 or self.extraction.pending_amount_pct < 0:
            errors.append("extraction.pending_amount_abs and pending_amount_pct must be >= 0")

        if self.reconciliation.ledger_engine not in ("journal", "firefly"):
            errors.append("reconciliation.ledger_engine must be 'journal' or 'firefly'")
        if self.reconciliation.ledger_engine == "firefly":
            if self.firefly is None or not self.firefly.base_url:
                errors.append("firefly.base_url is required when ledger_engine is 'firefly'")

        for login in self.logins.values():
            if not login.extension:
                errors.append(f"login '{login.name}' has no extension")
            for label in login.accounts:
                try:
                    validate_label(label)
                except ValueError as e:
                    errors.append(f"login '{login.name}': {e}")

        for conflict in find_gl_account_conflicts(self.logins.values()):
            claimants = ", ".join(f"{e.login_name}/{e.label}" for e in conflict.entries)
            errors.append(f"GL account '{conflict.gl_account}' is claimed by: {claimants}")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    return default


def _load_logins(data: dict) -> dict[str, LoginConfig]:
    logins: dict[str, LoginConfig] = {}
    for name, login_data in (data or {}).items():
        login_data = login_data or {}
        accounts = {
            str(label): (str(gl) if gl else None)
            for label, gl in (login_data.get("accounts") or {}).items()
        }
        logins[name] = LoginConfig(
            name=name,
            extension=login_data.get("extension", ""),
            accounts=accounts,
        )
    return logins


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - SCRAPE_LEDGER_DIR
    - SCRAPE_LEDGER_STATE_DB
    - SCRAPE_LEDGER_HEADLESS (true/false)
    - FIREFLY_URL
    - FIREFLY_TOKEN
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    ledger_dir = Path(os.environ.get("SCRAPE_LEDGER_DIR", data.get("ledger_dir", "ledger")))
    state_db = os.environ.get(
        "SCRAPE_LEDGER_STATE_DB", data.get("state_db_path", str(ledger_dir / "state.db"))
    )

    # Driver config
    driver_data = data.get("driver", {})
    delay = driver_data.get("step_delay_ms", [800, 1400])
    profile_dir = driver_data.get("profile_dir")
    driver = DriverConfig(
        progress_threshold=int(driver_data.get("progress_threshold", 6)),
        max_steps=int(driver_data.get("max_steps", 200)),
        step_delay_ms=(int(delay[0]), int(delay[1])),
        headless=_env_bool("SCRAPE_LEDGER_HEADLESS", driver_data.get("headless", False)),
        profile_dir=Path(profile_dir) if profile_dir else None,
        auto_extract=driver_data.get("auto_extract", True),
    )

    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        default_commodity=extraction_data.get("default_commodity", "USD"),
        dedup_date_days=int(extraction_data.get("dedup_date_days", 1)),
        pending_days=int(extraction_data.get("pending_days", 7)),
        pending_amount_abs=Decimal(str(extraction_data.get("pending_amount_abs", "5.00"))),
        pending_amount_pct=Decimal(str(extraction_data.get("pending_amount_pct", "0.20"))),
    )

    recon_data = data.get("reconciliation", {})
    reconciliation = ReconciliationConfig(
        ledger_engine=recon_data.get("ledger_engine", "journal"),
        hledger_path=recon_data.get("hledger_path"),
        transfer_window_days=int(recon_data.get("transfer_window_days", 3)),
        require_transfer_amounts_match=recon_data.get("require_transfer_amounts_match", True),
    )

    # Firefly config (optional backend)
    firefly_data = data.get("firefly")
    firefly_url = os.environ.get("FIREFLY_URL")
    firefly = None
    if firefly_data or firefly_url:
        firefly_data = firefly_data or {}
        firefly = FireflyConfig(
            base_url=firefly_url or firefly_data.get("base_url", ""),
            token=os.environ.get("FIREFLY_TOKEN", firefly_data.get("token", "")),
            timeout=int(firefly_data.get("timeout", 30)),
            max_retries=int(firefly_data.get("max_retries", 3)),
        )

    return Config(
        ledger_dir=ledger_dir,
        state_db_path=Path(state_db),
        driver=driver,
        extraction=extraction,
        reconciliation=reconciliation,
        firefly=firefly,
        logins=_load_logins(data.get("logins", {})),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# scrape-ledger configuration
#
# Logins are maintained by hand. The pipeline reads them but never edits them.
# Map each account label to a GL account, or to null to ignore that account.

ledger_dir: "ledger"                  # Artifacts and general.journal live here
state_db_path: "ledger/state.db"      # SQLite state (documents, journals, checkpoints)

driver:
  progress_threshold: 6               # Abort after this many steps without new progress
  max_steps: 200                      # Hard ceiling on steps per run
  step_delay_ms: [800, 1400]          # Human pacing between steps
  headless: false
  profile_dir: null                   # Persistent browser profile directory
  auto_extract: true                  # Extract new documents after each scrape

extraction:
  default_commodity: "USD"
  dedup_date_days: 1                  # Same amount, similar description, dates this close
  pending_days: 7                     # Window for a pending charge to post
  pending_amount_abs: 5.00            # Posted amount may differ by this much (tips)
  pending_amount_pct: 0.20            # ...or by this fraction

reconciliation:
  ledger_engine: "journal"            # "journal" (general.journal) or "firefly"
  hledger_path: null                  # Set to validate general.journal with hledger
  transfer_window_days: 3
  require_transfer_amounts_match: true

# firefly:
#   base_url: "http://localhost:8080"
#   token: "YOUR_FIREFLY_TOKEN"

logins:
  citiPersonal:
    extension: "citi"
    accounts:
      costco_anywhere_visa_card_by_citi_3743: "Liabilities:Citi:Costco Visa"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
