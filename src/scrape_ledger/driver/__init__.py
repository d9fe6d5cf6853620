"""
Driver runtime for per-institution scraping scripts.

Scripts implement DriverScript and only ever see a DriverContext; the
runtime owns the step loop, the progress watchdog and session cancellation.
"""

from .capabilities import DriverContext, RestrictedPage, ScopedCheckpoints
from .page import Download, Page
from .registry import get_driver, list_drivers, load_driver_plugins, register_driver
from .runtime import DriverRuntime, DriverScript, RunReport, StepResult
from .secrets import EnvironmentSecretStore, SecretStore, StaticSecretStore
from .session import (
    ScrapeSession,
    SessionManager,
    generate_scrape_session_id,
    get_session_manager,
)
from .snapshot import SnapshotTracker
from .watchdog import ProgressWatchdog, StepRecord

__all__ = [
    "DriverContext",
    "RestrictedPage",
    "ScopedCheckpoints",
    "Download",
    "Page",
    "DriverRuntime",
    "DriverScript",
    "RunReport",
    "StepResult",
    "register_driver",
    "get_driver",
    "list_drivers",
    "load_driver_plugins",
    "SecretStore",
    "EnvironmentSecretStore",
    "StaticSecretStore",
    "ScrapeSession",
    "SessionManager",
    "generate_scrape_session_id",
    "get_session_manager",
    "SnapshotTracker",
    "ProgressWatchdog",
    "StepRecord",
]
