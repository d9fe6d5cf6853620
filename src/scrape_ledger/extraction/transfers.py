"""
Heuristic transfer detection.

Flags descriptions that look like payments between the operator's own
accounts so they can be reconciled as transfers instead of expenses.
"""

from enum import Enum
from typing import Optional

TRANSFER_PATTERNS = (
    "TRANSFER TO",
    "TRANSFER FROM",
    "XFER TO",
    "XFER FROM",
    "ONLINE TRANSFER",
    "FUNDS TRANSFER",
    "WIRE TRANSFER",
    "ACH TRANSFER",
    "INTERNAL TRANSFER",
    "PAYMENT THANK YOU",
    "PAYMENT - THANK YOU",
    "AUTOPAY",
    "AUTO PAY",
    "AUTO-PAY",
    "AUTOMATIC PAYMENT",
    "VENMO",
    "ZELLE",
    "PAYPAL TRANSFER",
    "DIRECT DEBIT",
    "DIRECT DEPOSIT",
    "BALANCE TRANSFER",
    "CC PAYMENT",
    "CREDIT CARD PAYMENT",
    "CARDMEMBER SVCS",
    "INTERNET PAYMENT",
    "EPAYMENT",
    "MOBILE PAYMENT",
)

_CREDIT_CARD = (
    "PAYMENT THANK YOU",
    "PAYMENT - THANK YOU",
    "CC PAYMENT",
    "CREDIT CARD PAYMENT",
    "CARDMEMBER SVCS",
)
_PEER_TO_PEER = ("VENMO", "ZELLE", "PAYPAL TRANSFER")
_OUTGOING = ("TRANSFER TO", "XFER TO", "AUTOPAY", "AUTO PAY", "AUTO-PAY", "AUTOMATIC PAYMENT")
_INCOMING = ("TRANSFER FROM", "XFER FROM", "DIRECT DEPOSIT")


class TransferType(str, Enum):
    """Kind of probable transfer."""

    GENERIC = "generic"
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    CREDIT_CARD_PAYMENT = "credit-card-payment"
    PEER_TO_PEER = "peer-to-peer"


def is_probable_transfer(description: str) -> bool:
    upper = (description or "").upper()
    return any(pattern in upper for pattern in TRANSFER_PATTERNS)


def classify_transfer(description: str) -> Optional[TransferType]:
    """
    Classify a probable transfer; None if the description is not one.

    Examples:
        >>> classify_transfer("ONLINE TRANSFER TO SAVINGS")
        <TransferType.OUTGOING: 'outgoing'>
    """
    if not is_probable_transfer(description):
        return None
    upper = description.upper()

    if any(p in upper for p in _CREDIT_CARD):
        return TransferType.CREDIT_CARD_PAYMENT
    if any(p in upper for p in _PEER_TO_PEER):
        return TransferType.PEER_TO_PEER
    if any(p in upper for p in _OUTGOING):
        return TransferType.OUTGOING
    if any(p in upper for p in _INCOMING):
        return TransferType.INCOMING
    return TransferType.GENERIC
