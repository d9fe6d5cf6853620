"""
Progress watchdog.

Every driver step reports a progress name. A name seen for the first time is
progress; repeating names is not. When more than `threshold` steps pass since
the last new name, the run is aborted with NoProgressError carrying the full
step history.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import NoProgressError

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_THRESHOLD = 6


@dataclass(frozen=True)
class StepRecord:
    """One executed driver step."""

    step: int
    url: str
    state: Optional[str]
    progress_name: str
    new: bool


class ProgressWatchdog:
    """Tracks progress names per run and enforces the no-progress threshold."""

    def __init__(self, threshold: int = DEFAULT_PROGRESS_THRESHOLD):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got: {threshold}")
        self.threshold = threshold
        self.progress_names: list[str] = []
        self.first_seen: dict[str, int] = {}
        self.history: list[StepRecord] = []
        self.last_new_step = 0

    def record(self, step: int, url: str, state: Optional[str], progress_name: str) -> StepRecord:
        """Append a step's progress name to the ordered log."""
        new = progress_name not in self.first_seen
        if new:
            self.first_seen[progress_name] = step
            self.last_new_step = step
        self.progress_names.append(progress_name)
        record = StepRecord(step=step, url=url, state=state, progress_name=progress_name, new=new)
        self.history.append(record)
        return record

    def check(self, step: int) -> None:
        """
        Raise NoProgressError if step - last_new_step exceeds the threshold.

        With threshold 6 and a new name at step 1 followed by repeats, the
        check first fails at step 8.
        """
        if step - self.last_new_step > self.threshold:
            raise NoProgressError(
                f"no progress in last {self.threshold} steps "
                f"(last new progress at step {self.last_new_step})",
                self.history,
            )

    def has_progress(self, progress_name: str) -> bool:
        return progress_name in self.first_seen
