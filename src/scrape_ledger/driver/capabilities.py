"""
Capability surface handed to driver scripts.

Driver scripts are semi-trusted per-institution code. They receive a
DriverContext and nothing else: a restricted page proxy, logging, artifact
saving and listing for their own login, checkpoints namespaced to their
login, value reporting, declared-secret resolution and cancellable waits.
Stores, paths and the secret store itself stay on the host side.
"""

import logging
import random
from collections.abc import Callable
from typing import Any, Optional

from ..documents import ArtifactStore, CheckpointLedger
from ..errors import ScrapeLedgerError, SecretAccessError, SiteError
from ..schemas.documents import (
    Checkpoint,
    CheckpointResult,
    Document,
    Scope,
)
from .page import Download, Page
from .secrets import SecretStore, domain_matches, domain_of
from .session import ScrapeSession
from .snapshot import SnapshotTracker
from .watchdog import ProgressWatchdog

logger = logging.getLogger(__name__)
script_logger = logging.getLogger("scrape_ledger.driver.script")

REDACTED = "[REDACTED]"


class RestrictedPage:
    """Page proxy exposing only the operations driver scripts may use."""

    def __init__(
        self,
        page: Page,
        resolve_fill_value: Callable[[str], str],
        scrub: Callable[[str], str],
        tracker: Optional[SnapshotTracker] = None,
    ):
        self.__page = page
        self.__resolve = resolve_fill_value
        self.__scrub = scrub
        self.__tracker = tracker or SnapshotTracker()

    def url(self) -> str:
        return self.__page.url()

    def goto(self, url: str) -> None:
        self.__page.goto(url)

    def evaluate(self, expression: str) -> Any:
        result = self.__page.evaluate(expression)
        return self.__scrub(result) if isinstance(result, str) else result

    def click(self, selector: str) -> None:
        self.__page.click(selector)

    def fill(self, selector: str, value: str) -> None:
        """Fill a field. A declared secret name is replaced by the secret host-side."""
        self.__page.fill(selector, self.__resolve(value))

    def type(self, selector: str, text: str) -> None:
        self.__page.type(selector, text)

    def is_visible(self, selector: str) -> bool:
        return self.__page.is_visible(selector)

    def query_text(self, selector: str) -> Optional[str]:
        text = self.__page.query_text(selector)
        return self.__scrub(text) if text is not None else None

    def wait_for_download(self, selector: str, timeout_ms: int = 30_000) -> Download:
        return self.__page.wait_for_download(selector, timeout_ms)

    def snapshot(self, track: str = "state-loop", incremental: bool = True) -> str:
        """Page snapshot, or its diff against the previous snapshot of the track."""
        return self.__tracker.diff(self.__scrub(self.__page.snapshot()), track, incremental)


class ScopedCheckpoints:
    """Checkpoint ledger view namespaced to one login."""

    def __init__(self, ledger: CheckpointLedger, login: str):
        self._ledger = ledger
        self._login = login

    def _key(self, scope: str) -> str:
        return f"{self._login}:{scope}"

    def current_period(self) -> str:
        return self._ledger.current_period()

    def is_final(self, scope: str, version: int, period: str) -> bool:
        return self._ledger.is_final(self._key(scope), version, period)

    def record(
        self, scope: str, version: int, period: str, result: CheckpointResult | str, final: bool
    ) -> Checkpoint:
        return self._ledger.record(self._key(scope), version, period, result, final)

    def periods_to_scan(self, scope: str, version: int, periods: list[str]) -> list[str]:
        return self._ledger.periods_to_scan(self._key(scope), version, periods)


class DriverContext:
    """Everything a driver script may touch during one run."""

    def __init__(
        self,
        login: str,
        session: ScrapeSession,
        page: Page,
        artifact_store: ArtifactStore,
        checkpoint_ledger: CheckpointLedger,
        secret_store: SecretStore,
        declared_secrets: Optional[dict[str, list[str]]] = None,
        watchdog: Optional[ProgressWatchdog] = None,
        prompt: Optional[Callable[[str], str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.login = login
        self.session = session
        self.watchdog = watchdog or ProgressWatchdog()
        self.checkpoints = ScopedCheckpoints(checkpoint_ledger, login)
        self.reported_values: dict[str, str] = {}
        self.saved_documents: list[Document] = []

        self._artifact_store = artifact_store
        self._secret_store = secret_store
        self._declared = {
            domain.lower(): set(names) for domain, names in (declared_secrets or {}).items()
        }
        self._revealed: set[str] = set()
        self._prompt = prompt
        self._rng = rng or random.Random()
        self.page = RestrictedPage(page, self._resolve_fill_value, self._scrub)

    # Logging and reporting

    def log(self, message: str) -> None:
        script_logger.info("[%s] %s", self.login, self._scrub(message))

    def report_value(self, key: str, value: str) -> None:
        """Report a named value (balances, counts, status) for this run."""
        self.reported_values[key] = str(value)
        logger.debug("[%s] reported %s=%s", self.login, key, value)

    # Progress

    @property
    def progress_names(self) -> list[str]:
        return list(self.watchdog.progress_names)

    def has_progress(self, progress_name: str) -> bool:
        return self.watchdog.has_progress(progress_name)

    def fail(self, message: str) -> None:
        """Abort the run because the site shows an explicit error."""
        raise SiteError(message, self.watchdog.history)

    # Waiting

    def wait(self, ms: int) -> None:
        """Cancellable wait."""
        self.session.sleep(ms / 1000)

    def human_pace(self, min_ms: int, max_ms: int) -> None:
        """Wait a random duration within [min_ms, max_ms]."""
        self.wait(self._rng.randint(min_ms, max_ms))

    def prompt(self, message: str) -> str:
        """Ask the operator for input (e.g. a one-time passcode)."""
        if self._prompt is None:
            raise ScrapeLedgerError(f"no operator prompt available: {message}")
        return self._prompt(message)

    # Artifacts

    def save_resource(
        self,
        filename: str,
        data: bytes | str,
        *,
        label: str,
        coverage_end_date: Optional[str] = None,
        mime_type: Optional[str] = None,
        **metadata: Any,
    ) -> bool:
        """
        Save an artifact for one of this login's account labels.

        Returns:
            True if stored, False if the filename (or attachment) already exists
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        scope = Scope(self.login, label)
        result = self._artifact_store.save(
            scope,
            filename,
            data,
            metadata,
            coverage_end_date=coverage_end_date,
            mime_type=mime_type,
            scrape_session_id=self.session.id,
        )
        if result.stored and result.document is not None:
            self.saved_documents.append(result.document)
            self._record_checkpoint_metadata(result.document)
        return result.stored

    def save_downloaded_resource(
        self,
        download: Download,
        filename: Optional[str] = None,
        *,
        label: str,
        coverage_end_date: Optional[str] = None,
        mime_type: Optional[str] = None,
        **metadata: Any,
    ) -> bool:
        """Save a browser download under filename (default: suggested name)."""
        name = filename or download.suggested_filename or download.path.name
        return self.save_resource(
            name,
            download.path.read_bytes(),
            label=label,
            coverage_end_date=coverage_end_date,
            mime_type=mime_type,
            **metadata,
        )

    def list_documents(self, label: str) -> list[dict]:
        """Listing of this login's documents for a label."""
        return [doc.to_dict() for doc in self._artifact_store.list(Scope(self.login, label))]

    def _record_checkpoint_metadata(self, document: Document) -> None:
        meta = document.meta
        if not (meta.checkpoint_scope and meta.checkpoint_month and meta.checkpoint_version):
            return
        logger.debug("Recording checkpoint carried by %s", document.filename)
        self.checkpoints.record(
            meta.checkpoint_scope,
            meta.checkpoint_version,
            meta.checkpoint_month,
            meta.checkpoint_result or CheckpointResult.FOUND,
            meta.checkpoint_final,
        )

    # Secrets

    def _declared_domains(self, name: str) -> list[str]:
        return sorted(domain for domain, names in self._declared.items() if name in names)

    def _resolve_fill_value(self, value: str) -> str:
        name = value.strip()
        domains = self._declared_domains(name) if name else []
        if not domains:
            return value

        host = domain_of(self.page.url())
        if not host:
            raise SecretAccessError(
                f"secret '{name}' referenced before top-level navigation"
            )
        for domain in domains:
            if domain_matches(host, domain):
                secret = self._secret_store.get(self.login, domain, name)
                if secret is None:
                    raise SecretAccessError(
                        f"secret '{name}' is declared for '{domain}' but not stored"
                    )
                self._revealed.add(secret)
                return secret
        raise SecretAccessError(
            f"secret '{name}' is declared for {', '.join(domains)} "
            f"but the current domain is '{host}'"
        )

    def read_secret(self, name: str) -> Optional[str]:
        """
        Read a declared secret (None when not stored).

        Raises:
            SecretAccessError: If the name is not declared by the driver
        """
        domains = self._declared_domains(name)
        if not domains:
            raise SecretAccessError(f"secret '{name}' is not declared by this driver")

        domain = domains[0]
        if len(domains) > 1:
            host = domain_of(self.page.url())
            matching = [d for d in domains if host and domain_matches(host, d)]
            if len(matching) != 1:
                raise SecretAccessError(
                    f"secret '{name}' is declared for {', '.join(domains)}; "
                    f"cannot choose one for '{host or 'about:blank'}'"
                )
            domain = matching[0]

        secret = self._secret_store.get(self.login, domain, name)
        if secret is not None:
            self._revealed.add(secret)
        return secret

    def _scrub(self, text: str) -> str:
        for secret in self._revealed:
            if secret:
                text = text.replace(secret, REDACTED)
        return text
