"""
Login profile helpers.

Logins are operator-maintained. This module only validates them and reports
GL account conflicts; it never rewrites a login.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .config import LoginConfig

LABEL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class GlAccountConflictEntry:
    """One (login, label) pair claiming a GL account."""

    login_name: str
    label: str


@dataclass
class GlAccountConflict:
    """A GL account claimed by more than one (login, label) pair."""

    gl_account: str
    entries: list[GlAccountConflictEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "glAccount": self.gl_account,
            "entries": [{"loginName": e.login_name, "label": e.label} for e in self.entries],
        }


def validate_label(label: str) -> None:
    """
    Validate an account label.

    Labels become directory names under the ledger, so they are restricted to
    letters, digits, underscore and dash.

    Raises:
        ValueError: If the label is empty or contains other characters
    """
    if not label:
        raise ValueError("account label must not be empty")
    if label in (".", ".."):
        raise ValueError(f"account label '{label}' is reserved")
    if not LABEL_PATTERN.match(label):
        raise ValueError(
            f"account label '{label}' may only contain letters, digits, '_' and '-'"
        )


def find_gl_account_conflicts(logins: Iterable[LoginConfig]) -> list[GlAccountConflict]:
    """
    Scan all logins and return GL accounts mapped by more than one label.

    Conflicts are sorted by GL account; entries keep login/label order.
    """
    claims: dict[str, list[GlAccountConflictEntry]] = {}
    for login in sorted(logins, key=lambda item: item.name):
        for label in sorted(login.accounts):
            gl_account = login.accounts[label]
            if not gl_account:
                continue
            claims.setdefault(gl_account, []).append(
                GlAccountConflictEntry(login_name=login.name, label=label)
            )

    return [
        GlAccountConflict(gl_account=gl_account, entries=entries)
        for gl_account, entries in sorted(claims.items())
        if len(entries) > 1
    ]

