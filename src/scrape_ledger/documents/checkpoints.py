"""
Checkpoint ledger: month-level markers of historical scans.

A checkpoint records whether a past period was scanned and what was found,
keyed by a free-form checkpoint scope chosen by the driver
(e.g. "citi:checks:<label>"), a version and a period (YYYY-MM).

Rules:
- Only past periods may be final. The current period is always rescanned.
- A final checkpoint is never downgraded.
- Bumping the version ignores every checkpoint recorded under other versions.
"""

import logging
import re
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Optional

from ..errors import CheckpointError
from ..schemas.documents import Checkpoint, CheckpointResult
from ..state_store import StateStore

logger = logging.getLogger(__name__)

_PERIOD = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def period_key(value: date | datetime | str) -> str:
    """
    Period key (YYYY-MM) of a date.

    Examples:
        >>> period_key("2026-02-14")
        '2026-02'
    """
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return f"{value.year:04d}-{value.month:02d}"


def validate_period(period: str) -> str:
    if not _PERIOD.match(period or ""):
        raise CheckpointError(f"period must be YYYY-MM, got: {period!r}")
    return period


def _split(period: str) -> tuple[int, int]:
    validate_period(period)
    year, month = period.split("-")
    return int(year), int(month)


def month_range(start: str, end: str) -> list[str]:
    """Inclusive list of periods from start to end (empty when start > end)."""
    year, month = _split(start)
    end_year, end_month = _split(end)
    periods = []
    while (year, month) <= (end_year, end_month):
        periods.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return periods


def shift_period(period: str, months: int) -> str:
    """Period that is `months` months after (negative: before) period."""
    year, month = _split(period)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


class CheckpointLedger:
    """Checkpoint persistence and scan planning over the state store."""

    def __init__(self, state_store: StateStore, today: Optional[Callable[[], date]] = None):
        self.state_store = state_store
        self._today = today or date.today

    def current_period(self) -> str:
        return period_key(self._today())

    def get(self, scope: str, version: int, period: str) -> Optional[Checkpoint]:
        return self.state_store.get_checkpoint(scope, version, validate_period(period))

    def is_final(self, scope: str, version: int, period: str) -> bool:
        """True if a final checkpoint exists for exactly this (scope, version, period)."""
        checkpoint = self.get(scope, version, period)
        return checkpoint is not None and checkpoint.final

    def record(
        self,
        scope: str,
        version: int,
        period: str,
        result: CheckpointResult | str,
        final: bool,
    ) -> Checkpoint:
        """
        Record a scan result.

        Raises:
            CheckpointError: If final is requested for the current or a future
                period, or the arguments are malformed
        """
        if not scope:
            raise CheckpointError("checkpoint scope must not be empty")
        validate_period(period)
        result = CheckpointResult(result)
        if final and period >= self.current_period():
            raise CheckpointError(
                f"cannot record final checkpoint for {period}: "
                f"only periods before {self.current_period()} can be final"
            )

        checkpoint = self.state_store.upsert_checkpoint(scope, version, period, result, final)
        if final and not checkpoint.final:
            raise CheckpointError(f"final checkpoint for {scope} {period} was not persisted")
        logger.debug(
            "Checkpoint %s v%d %s: %s%s",
            scope,
            version,
            period,
            checkpoint.result.value,
            " (final)" if checkpoint.final else "",
        )
        return checkpoint

    def periods_to_scan(
        self,
        scope: str,
        version: int,
        periods: Iterable[str],
        current_period: Optional[str] = None,
    ) -> list[str]:
        """
        Filter candidate periods down to those that still need scanning.

        Non-final periods are kept; the current period is always kept (and
        included even if absent from `periods`). Order follows `periods`.
        """
        current = current_period or self.current_period()
        final = {
            c.period for c in self.state_store.list_checkpoints(scope, version) if c.final
        }
        selected = []
        for period in periods:
            validate_period(period)
            if period in selected:
                continue
            if period == current or period not in final:
                selected.append(period)
        if current not in selected:
            selected.append(current)
        return selected

    def list(self, scope: str, version: Optional[int] = None) -> list[Checkpoint]:
        return self.state_store.list_checkpoints(scope, version)
