"""
Playwright implementation of the driver Page interface.

Requires the optional "browser" extra (pip install scrape-ledger[browser]).
"""

import logging
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from ..errors import ScrapeLedgerError
from .page import Download, Page

logger = logging.getLogger(__name__)


class PlaywrightPage(Page):
    """Adapter over playwright.sync_api.Page."""

    def __init__(self, page: Any, download_dir: Optional[Path] = None):
        self._page = page
        self._download_dir = Path(download_dir or tempfile.mkdtemp(prefix="scrape-ledger-dl-"))

    def url(self) -> str:
        return self._page.url

    def goto(self, url: str) -> None:
        self._page.goto(url)

    def evaluate(self, expression: str) -> Any:
        return self._page.evaluate(expression)

    def click(self, selector: str) -> None:
        self._page.click(selector)

    def fill(self, selector: str, value: str) -> None:
        self._page.fill(selector, value)

    def type(self, selector: str, text: str) -> None:
        self._page.locator(selector).first.press_sequentially(text)

    def is_visible(self, selector: str) -> bool:
        return self._page.is_visible(selector)

    def query_text(self, selector: str) -> Optional[str]:
        element = self._page.query_selector(selector)
        return element.inner_text() if element is not None else None

    def wait_for_download(self, selector: str, timeout_ms: int = 30_000) -> Download:
        with self._page.expect_download(timeout=timeout_ms) as download_info:
            self._page.click(selector)
        download = download_info.value
        target = self._download_dir / download.suggested_filename
        download.save_as(target)
        return Download(path=target, suggested_filename=download.suggested_filename)

    def snapshot(self) -> str:
        return self._page.locator("body").aria_snapshot()


@contextmanager
def open_browser_page(
    profile_dir: Optional[Path] = None, headless: bool = False
) -> Iterator[PlaywrightPage]:
    """
    Launch Chromium with a persistent profile and yield its first page.

    Raises:
        ScrapeLedgerError: If playwright is not installed
    """
    try:
        from playwright.sync_api import sync_playwright
    except ImportError as e:
        raise ScrapeLedgerError(
            "playwright is not installed; install scrape-ledger[browser]"
        ) from e

    user_data_dir = Path(profile_dir or tempfile.mkdtemp(prefix="scrape-ledger-profile-"))
    user_data_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Launching browser (profile=%s, headless=%s)", user_data_dir, headless)

    with sync_playwright() as playwright:
        context = playwright.chromium.launch_persistent_context(
            str(user_data_dir), headless=headless, accept_downloads=True
        )
        try:
            page = context.pages[0] if context.pages else context.new_page()
            yield PlaywrightPage(page)
        finally:
            context.close()
