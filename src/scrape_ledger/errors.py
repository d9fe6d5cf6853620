"""
Exception hierarchy (SSOT).

Every error the pipeline raises on purpose derives from ScrapeLedgerError so
callers (CLI, services) can tell pipeline failures apart from programming
errors.

Taxonomy:
- Driver errors are structural and abort a scrape session. They carry the
  full step history so institution-side UI drift can be diagnosed.
- Store errors reject malformed input; they never mean "already exists"
  (an existing artifact is a skip, not an error).
- Reconciliation errors are raised per call with the scope and entry id and
  always leave the journal unchanged.
- Ledger errors come from the external ledger engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .driver.watchdog import StepRecord
    from .schemas.documents import Scope


class ScrapeLedgerError(Exception):
    """Base class for all pipeline errors."""

    pass


# ============================================================================
# Driver runtime
# ============================================================================


class DriverError(ScrapeLedgerError):
    """Fatal driver failure. Aborts the session."""

    def __init__(self, message: str, history: list[StepRecord] | None = None):
        self.message = message
        self.history = list(history or [])
        super().__init__(message)

    def __str__(self) -> str:
        if not self.history:
            return self.message
        lines = [self.message, "Step history:"]
        for record in self.history:
            marker = "+" if record.new else " "
            lines.append(
                f"  {marker} step {record.step}: [{record.state}] {record.progress_name} "
                f"({record.url})"
            )
        return "\n".join(lines)


class NoProgressError(DriverError):
    """The driver produced no new progress name within the watchdog threshold."""

    pass


class UnclassifiedStateError(DriverError):
    """The page state matched no handler and the script defines no recovery."""

    pass


class SiteError(DriverError):
    """The institution site surfaced an explicit error marker."""

    pass


class StepLimitError(DriverError):
    """The hard step ceiling was reached."""

    pass


class SessionCancelledError(DriverError):
    """The scrape session was stopped while the driver was running."""

    pass


class SessionActiveError(ScrapeLedgerError):
    """Another automation session is already active in this process."""

    pass


class SecretAccessError(ScrapeLedgerError):
    """A driver asked for a secret it did not declare."""

    pass


class DriverNotFoundError(ScrapeLedgerError):
    """No driver script is registered for an extension id."""

    def __init__(self, extension_id: str):
        self.extension_id = extension_id
        super().__init__(f"No driver registered for extension '{extension_id}'")


# ============================================================================
# Artifact store / checkpoints
# ============================================================================


class InvalidFilenameError(ScrapeLedgerError, ValueError):
    """Artifact filename is not a safe relative path."""

    pass


class ArtifactConflictError(ScrapeLedgerError):
    """A file with different bytes already occupies an artifact's final path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Unrecorded file with different content already at {path}")


class CheckpointError(ScrapeLedgerError, ValueError):
    """Invalid checkpoint record (e.g. finalizing the current period)."""

    pass


# ============================================================================
# Extraction
# ============================================================================


class ExtractionError(ScrapeLedgerError):
    """Extraction failed for a scope."""

    pass


class UnknownExtensionError(ExtractionError):
    """No parsers are registered for an extension id."""

    def __init__(self, extension_id: str):
        self.extension_id = extension_id
        super().__init__(f"No extraction parsers registered for extension '{extension_id}'")


# ============================================================================
# Reconciliation
# ============================================================================


class ReconciliationError(ScrapeLedgerError):
    """Reconciliation call failed. The journal is left unchanged."""

    def __init__(self, message: str, scope: Scope | None = None, entry_id: str | None = None):
        self.scope = scope
        self.entry_id = entry_id
        prefix = ""
        if scope is not None and entry_id is not None:
            prefix = f"[{scope} {entry_id}] "
        elif scope is not None:
            prefix = f"[{scope}] "
        super().__init__(f"{prefix}{message}")


class EntryNotFoundError(ReconciliationError):
    pass


class AlreadyReconciledError(ReconciliationError):
    pass


class NotReconciledError(ReconciliationError):
    pass


class MissingCounterpartError(ReconciliationError):
    pass


class UnmappedAccountError(ReconciliationError):
    """Scope has no GL account (unknown label or intentionally ignored)."""

    pass


class MissingAmountError(ReconciliationError):
    """Entry has no amount and the ledger may not infer more than one posting."""

    pass


class TransferMismatchError(ReconciliationError):
    """The two legs of a transfer do not carry equal and opposite amounts."""

    pass


class LedgerRejectedError(ReconciliationError):
    """The ledger engine rejected the proposed transaction."""

    pass


# ============================================================================
# Ledger engine
# ============================================================================


class LedgerError(ScrapeLedgerError):
    """Base class for ledger engine failures."""

    pass


class LedgerValidationError(LedgerError):
    """Proposed transaction is invalid (unbalanced, bad syntax, failed assertion)."""

    pass


class LedgerConnectionError(LedgerError):
    """Ledger engine could not be reached."""

    pass


class LedgerTransactionNotFoundError(LedgerError):
    """Referenced ledger transaction does not exist."""

    pass
