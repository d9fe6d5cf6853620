"""
Extractor router - chooses a parser per artifact.

Each driver extension id maps to an ordered list of parsers; the first
parser (highest priority) whose can_parse() accepts the artifact wins.
"""

import logging
from typing import Optional

from ..errors import UnknownExtensionError
from ..schemas.documents import Document
from .base import BaseParser
from .csv_parser import CitiActivityCsvParser, GenericCsvParser, ProvidentCsvParser
from .json_parser import JsonTransactionsParser
from .pdf_parser import ProvidentStatementPdfParser

logger = logging.getLogger(__name__)


def default_parsers() -> dict[str, list[BaseParser]]:
    """Built-in extension id -> parsers mapping."""
    return {
        "citi": [CitiActivityCsvParser(), JsonTransactionsParser()],
        "providentcu": [ProvidentCsvParser(), ProvidentStatementPdfParser()],
        "generic": [GenericCsvParser(), JsonTransactionsParser()],
    }


class ExtractorRouter:
    """Routes artifacts to parsers by extension id."""

    def __init__(self, parsers: Optional[dict[str, list[BaseParser]]] = None):
        self._parsers: dict[str, list[BaseParser]] = {}
        for extension_id, extension_parsers in (parsers or default_parsers()).items():
            for parser in extension_parsers:
                self.register(extension_id, parser)

    def register(self, extension_id: str, parser: BaseParser) -> None:
        parsers = self._parsers.setdefault(extension_id, [])
        parsers.append(parser)
        # Sort by priority (highest first), stable for equal priorities
        parsers.sort(key=lambda p: -p.priority)

    def extensions(self) -> list[str]:
        return sorted(self._parsers)

    def parsers_for(self, extension_id: str) -> list[BaseParser]:
        """
        Raises:
            UnknownExtensionError: If no parsers are registered for extension_id
        """
        parsers = self._parsers.get(extension_id)
        if not parsers:
            raise UnknownExtensionError(extension_id)
        return list(parsers)

    def select(self, extension_id: str, document: Document, data: bytes) -> Optional[BaseParser]:
        """First parser that accepts the artifact, or None."""
        for parser in self.parsers_for(extension_id):
            if parser.can_parse(document, data):
                logger.debug("%s -> %s", document.filename, parser.name)
                return parser
        return None
