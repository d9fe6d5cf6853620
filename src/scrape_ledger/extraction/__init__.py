"""
Extraction engine: artifacts -> candidate journal entries.
"""

from .base import BaseParser, ExtractedTransaction
from .csv_parser import CitiActivityCsvParser, GenericCsvParser, ProvidentCsvParser
from .dedup import DedupTolerances, DocumentMatcher, MatchKind, descriptions_similar
from .engine import ExtractionEngine, ExtractionResult
from .json_parser import JsonTransactionsParser
from .pdf_parser import ProvidentStatementPdfParser, parse_statement_text
from .router import ExtractorRouter, default_parsers
from .transfers import TransferType, classify_transfer, is_probable_transfer

__all__ = [
    "BaseParser",
    "ExtractedTransaction",
    "CitiActivityCsvParser",
    "ProvidentCsvParser",
    "GenericCsvParser",
    "JsonTransactionsParser",
    "ProvidentStatementPdfParser",
    "parse_statement_text",
    "ExtractorRouter",
    "default_parsers",
    "DedupTolerances",
    "DocumentMatcher",
    "MatchKind",
    "descriptions_similar",
    "ExtractionEngine",
    "ExtractionResult",
    "TransferType",
    "classify_transfer",
    "is_probable_transfer",
]
