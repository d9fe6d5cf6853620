"""Incremental page snapshot diffs for driver logging."""

import difflib
from typing import Optional


class SnapshotTracker:
    """Keeps the previous snapshot per named track and diffs against it."""

    def __init__(self) -> None:
        self._previous: dict[str, str] = {}

    def diff(self, snapshot: str, track: str = "state-loop", incremental: bool = True) -> str:
        """
        Return the snapshot, or a unified diff against the previous snapshot
        of the same track when incremental.
        """
        previous: Optional[str] = self._previous.get(track)
        self._previous[track] = snapshot
        if not incremental or previous is None:
            return snapshot
        if previous == snapshot:
            return "(no changes)"
        lines = difflib.unified_diff(
            previous.splitlines(),
            snapshot.splitlines(),
            fromfile=f"{track}@previous",
            tofile=f"{track}@current",
            lineterm="",
        )
        return "\n".join(lines)

    def reset(self, track: Optional[str] = None) -> None:
        if track is None:
            self._previous.clear()
        else:
            self._previous.pop(track, None)
