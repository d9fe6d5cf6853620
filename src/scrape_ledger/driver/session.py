"""
Scrape sessions.

At most one automation session is active per process. Sessions are started
and stopped explicitly through the SessionManager; stopping a session sets a
cancellation flag that the driver runtime checks at every step boundary and
during waits.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..errors import SessionActiveError, SessionCancelledError

logger = logging.getLogger(__name__)


def generate_scrape_session_id(now: Optional[datetime] = None) -> str:
    """Session id in YYYYMMDD-HHMMSS form (local time)."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


@dataclass
class ScrapeSession:
    """One automation session for a login."""

    id: str
    login: str
    started_at: datetime = field(default_factory=datetime.now)
    _cancelled: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check_cancelled(self) -> None:
        """Raise SessionCancelledError if the session was stopped."""
        if self._cancelled.is_set():
            raise SessionCancelledError(f"scrape session {self.id} for {self.login} was stopped")

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early and raising if the session is stopped."""
        if self._cancelled.wait(timeout=max(0.0, seconds)):
            self.check_cancelled()


class SessionManager:
    """Process-wide owner of the single active scrape session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Optional[ScrapeSession] = None

    @property
    def active(self) -> Optional[ScrapeSession]:
        with self._lock:
            return self._active

    def start(self, login: str, replace: bool = False) -> ScrapeSession:
        """
        Start a session for a login.

        Raises:
            SessionActiveError: If a session is already active and replace is False
        """
        with self._lock:
            if self._active is not None:
                if not replace:
                    raise SessionActiveError(
                        f"session {self._active.id} for {self._active.login} is already active"
                    )
                logger.info("Replacing active session %s", self._active.id)
                self._active.cancel()
            session = ScrapeSession(id=generate_scrape_session_id(), login=login)
            self._active = session
            logger.info("Started scrape session %s for %s", session.id, login)
            return session

    def stop(self, session: Optional[ScrapeSession] = None) -> None:
        """Cancel and release the active session (or only `session` if given)."""
        with self._lock:
            if self._active is None:
                return
            if session is not None and session is not self._active:
                session.cancel()
                return
            self._active.cancel()
            logger.info("Stopped scrape session %s", self._active.id)
            self._active = None


_manager: Optional[SessionManager] = None
_manager_lock = threading.Lock()


def get_session_manager() -> SessionManager:
    """Process-wide SessionManager."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = SessionManager()
        return _manager
