"""Artifact store and checkpoint ledger."""

from .checkpoints import CheckpointLedger, month_range, period_key, shift_period
from .store import ArtifactStore, SaveResult, validate_filename

__all__ = [
    "ArtifactStore",
    "SaveResult",
    "validate_filename",
    "CheckpointLedger",
    "period_key",
    "month_range",
    "shift_period",
]
