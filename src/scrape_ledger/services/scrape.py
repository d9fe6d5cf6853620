"""
Scrape service.

Runs one login's driver script against a page inside an explicit scrape
session, then extracts journal entries from the documents the run stored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ..driver import (
    DriverContext,
    DriverRuntime,
    EnvironmentSecretStore,
    Page,
    ProgressWatchdog,
    RunReport,
    SecretStore,
    SessionManager,
    get_driver,
    get_session_manager,
)
from ..schemas.documents import Scope

if TYPE_CHECKING:
    from ..config import Config
    from ..documents import ArtifactStore, CheckpointLedger
    from ..extraction import ExtractionEngine, ExtractionResult

logger = logging.getLogger(__name__)


@dataclass
class ScrapeResult:
    """Outcome of a scrape run."""

    login: str
    scrape_session_id: str
    report: RunReport
    extraction: dict[str, ExtractionResult] = field(default_factory=dict)

    @property
    def saved_count(self) -> int:
        return len(self.report.saved_documents)


class ScrapeService:
    """Drives a login's institution script and stores what it downloads."""

    def __init__(
        self,
        config: Config,
        artifact_store: ArtifactStore,
        checkpoint_ledger: CheckpointLedger,
        extraction_engine: Optional[ExtractionEngine] = None,
        secret_store: Optional[SecretStore] = None,
        session_manager: Optional[SessionManager] = None,
        prompt: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.config = config
        self.artifact_store = artifact_store
        self.checkpoint_ledger = checkpoint_ledger
        self.extraction_engine = extraction_engine
        self.secret_store = secret_store or EnvironmentSecretStore()
        self.session_manager = session_manager or get_session_manager()
        self.prompt = prompt

    def run(self, login_name: str, page: Page) -> ScrapeResult:
        """
        Run the driver for a login.

        Raises:
            ConfigValidationError: Unknown login
            DriverNotFoundError: No driver for the login's extension
            SessionActiveError: Another session is running
            DriverError: The driver run failed (documents saved before the
                failure stay stored)
        """
        login = self.config.get_login(login_name)
        script = get_driver(login.extension)
        driver_config = self.config.driver

        session = self.session_manager.start(login.name)
        logger.info(f"Scrape session {session.id} started for {login.name} ({login.extension})")
        try:
            ctx = DriverContext(
                login=login.name,
                session=session,
                page=page,
                artifact_store=self.artifact_store,
                checkpoint_ledger=self.checkpoint_ledger,
                secret_store=self.secret_store,
                declared_secrets=script.secrets,
                watchdog=ProgressWatchdog(driver_config.progress_threshold),
                prompt=self.prompt,
            )
            report = DriverRuntime(
                script,
                ctx,
                max_steps=driver_config.max_steps,
                step_delay_ms=driver_config.step_delay_ms,
            ).run()
        finally:
            self.session_manager.stop(session)

        result = ScrapeResult(login=login.name, scrape_session_id=session.id, report=report)
        logger.info(
            f"Scrape session {session.id} finished: {result.saved_count} new document(s) "
            f"in {report.steps} steps"
        )

        if driver_config.auto_extract and self.extraction_engine is not None:
            self._extract_new(login.name, login.extension, report, result)
        return result

    def _extract_new(
        self, login: str, extension: str, report: RunReport, result: ScrapeResult
    ) -> None:
        by_label: dict[str, list[str]] = {}
        for document in report.saved_documents:
            by_label.setdefault(document.scope.label, []).append(document.filename)

        for label in sorted(by_label):
            result.extraction[label] = self.extraction_engine.extract(
                Scope(login, label), extension, by_label[label]
            )
