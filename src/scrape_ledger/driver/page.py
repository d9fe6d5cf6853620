"""
Browser page interface seen by the driver runtime.

The runtime and its capability proxy only ever talk to this interface; the
Playwright adapter (playwright_page.py) is one implementation, test doubles
are another.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


@dataclass
class Download:
    """A file downloaded by the browser."""

    path: Path
    suggested_filename: Optional[str] = None


class Page(ABC):
    """Minimal page surface used by driver scripts."""

    @abstractmethod
    def url(self) -> str:
        """Current top-level URL ("about:blank" before first navigation)."""

    @abstractmethod
    def goto(self, url: str) -> None:
        pass

    @abstractmethod
    def evaluate(self, expression: str) -> Any:
        """Evaluate a JavaScript expression and return its JSON-compatible value."""

    @abstractmethod
    def click(self, selector: str) -> None:
        pass

    @abstractmethod
    def fill(self, selector: str, value: str) -> None:
        pass

    @abstractmethod
    def type(self, selector: str, text: str) -> None:
        pass

    @abstractmethod
    def is_visible(self, selector: str) -> bool:
        pass

    @abstractmethod
    def query_text(self, selector: str) -> Optional[str]:
        """Inner text of the first match, or None when nothing matches."""

    @abstractmethod
    def wait_for_download(self, selector: str, timeout_ms: int = 30_000) -> Download:
        """Click selector and wait for the download it triggers."""

    @abstractmethod
    def snapshot(self) -> str:
        """Text snapshot of the page (accessibility tree or similar)."""
