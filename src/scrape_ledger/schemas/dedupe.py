"""
Dedupe key generation (CRITICAL).

This module defines THE deterministic identity functions.
This is the ONLY way to generate entry ids and attachment keys in the system.

Entry ID format: {sha256[:16]}
    hash = SHA256(login|label|date|amount commodity|description|discriminator)
    discriminator = "bank:{bankId}" when the source provides a bank id,
                    otherwise "occ:{n}" where n is the occurrence index of the
                    same (date, amount, description) within the source document.

Because the document name is NOT part of the hash, the same transaction seen
in two overlapping documents (e.g. a monthly CSV and a year-to-date CSV)
produces the same id, and the second sighting only adds evidence.

Attachment key format: {kind}:{discriminator}|{date}|{normalized-amount}

All ids must be:
- Stable: Same inputs always produce same output
- Collision-resistant: Different transactions produce different IDs
- Reproducible: Can be regenerated from stored data
"""

import hashlib
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

# ============================================================================
# SSOT Constants
# ============================================================================

# Length of the hash prefix used as entry id
HASH_PREFIX_LENGTH = 16

# Separator between attachment key fields
ATTACHMENT_KEY_SEPARATOR = "|"

_WHITESPACE = re.compile(r"\s+")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class AttachmentKeyComponents:
    """Parsed attachment key."""

    kind: str
    discriminator: str
    date: str
    amount: str


def normalize_amount(amount: Decimal | str | float | int) -> str:
    """
    Normalize amount to consistent format for hashing.

    Accepts "$1,037.00", "-$50.00", "(12.50)" and European "35,70".

    Returns:
        Normalized amount string with 2 decimal places

    Raises:
        ValueError: If the amount cannot be parsed
    """
    if isinstance(amount, bool):
        raise ValueError(f"amount must be numeric, got: {amount!r}")
    if isinstance(amount, float):
        amount = Decimal(str(amount))
    elif isinstance(amount, int):
        amount = Decimal(amount)
    elif isinstance(amount, str):
        amount = parse_amount(amount)
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, float or int, got: {type(amount)}")

    return f"{amount:.2f}"


def parse_amount(text: str) -> Decimal:
    """
    Parse a display amount into a Decimal.

    Handles currency symbols, thousands separators, leading/trailing minus,
    parenthesized negatives and a comma decimal separator.

    Raises:
        ValueError: If the text is not an amount
    """
    cleaned = text.strip().replace("$", "").replace(" ", "")
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if cleaned.endswith("-"):
        negative = True
        cleaned = cleaned[:-1]
    if cleaned.startswith("-"):
        negative = not negative
        cleaned = cleaned[1:]
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]

    if "," in cleaned and "." not in cleaned and re.search(r",\d{2}$", cleaned):
        # European format: 35,70
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        value = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"not an amount: {text!r}") from e

    return -value if negative else value


def normalize_description(value: Optional[str]) -> str:
    """Normalize a description for hashing (lowercase, collapsed whitespace)."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip().lower()


def compute_entry_hash(
    login: str,
    label: str,
    date: str,
    description: str,
    amount: Decimal | str | None = None,
    commodity: str = "USD",
    bank_id: Optional[str] = None,
    occurrence: int = 0,
) -> str:
    """
    Compute a deterministic hash for a candidate entry.

    Hash components (in order):
    - login, label: the scope
    - date: YYYY-MM-DD
    - amount + commodity: normalized, or "-" when unknown
    - description: normalized
    - discriminator: bank id, or occurrence index within the source document

    Returns:
        64-character lowercase hex SHA256 hash
    """
    if not date or not _DATE.match(date):
        raise ValueError(f"date must be in YYYY-MM-DD format, got: {date}")

    amount_part = "-" if amount is None else f"{normalize_amount(amount)} {commodity.upper()}"
    if bank_id:
        discriminator = f"bank:{bank_id.strip()}"
    else:
        if occurrence < 0:
            raise ValueError(f"occurrence must be non-negative, got: {occurrence}")
        discriminator = f"occ:{occurrence}"

    canonical = "|".join(
        [
            login,
            label,
            date,
            amount_part,
            normalize_description(description),
            discriminator,
        ]
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_entry_id(
    login: str,
    label: str,
    date: str,
    description: str,
    amount: Decimal | str | None = None,
    commodity: str = "USD",
    bank_id: Optional[str] = None,
    occurrence: int = 0,
) -> str:
    """
    Generate the stable entry id for a candidate journal entry.

    Examples:
        >>> generate_entry_id("citiPersonal", "costco", "2026-02-14", "COSTCO WHSE #0006", "-109.04")
        '3f1c...'  # 16 hex chars, deterministic
    """
    full_hash = compute_entry_hash(
        login, label, date, description, amount, commodity, bank_id, occurrence
    )
    return full_hash[:HASH_PREFIX_LENGTH]


def build_attachment_key(
    kind: str,
    discriminator: str,
    date: str,
    amount: Decimal | str | float | int,
) -> str:
    """
    Build the logical key linking an attachment (e.g. a check image) to a
    transaction.

    Examples:
        >>> build_attachment_key("check", "1042", "2026-01-05", "-250")
        'check:1042|2026-01-05|-250.00'
    """
    if not kind or ":" in kind or ATTACHMENT_KEY_SEPARATOR in kind:
        raise ValueError(f"invalid attachment kind: {kind!r}")
    if not discriminator or ATTACHMENT_KEY_SEPARATOR in discriminator:
        raise ValueError(f"invalid attachment discriminator: {discriminator!r}")
    if not date or not _DATE.match(date):
        raise ValueError(f"date must be in YYYY-MM-DD format, got: {date}")

    return ATTACHMENT_KEY_SEPARATOR.join(
        [f"{kind}:{discriminator.strip()}", date, normalize_amount(amount)]
    )


def parse_attachment_key(key: str) -> AttachmentKeyComponents:
    """
    Parse an attachment key back into its components.

    Raises:
        ValueError: If the key format is invalid
    """
    parts = key.split(ATTACHMENT_KEY_SEPARATOR)
    if len(parts) != 3 or ":" not in parts[0]:
        raise ValueError(f"Unrecognized attachment key format: {key[:40]}")
    kind, discriminator = parts[0].split(":", 1)
    return AttachmentKeyComponents(
        kind=kind, discriminator=discriminator, date=parts[1], amount=parts[2]
    )


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()


def csv_evidence_ref(filename: str, row: int, column: int = 1) -> str:
    """Evidence reference for a CSV cell: {filename}:{row}:{column} (1-based)."""
    return f"{filename}:{row}:{column}"


def page_evidence_ref(filename: str, page: int) -> str:
    """Evidence reference for a page of a paged document (PDF)."""
    return f"{filename}#page={page}"
