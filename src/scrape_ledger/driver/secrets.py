"""
Secret stores.

Drivers never see a secret store. They declare the secret names they use per
domain, and the capability layer resolves a declared name host-side when a
script fills a field with it. Absence of a secret is a normal result (None),
not an error.
"""

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Optional
from urllib.parse import urlsplit

ENV_PREFIX = "SCRAPE_LEDGER_SECRET_"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


def _env_part(value: str) -> str:
    return _NON_ALNUM.sub("_", value).strip("_").upper()


def domain_of(url: str) -> str:
    """Lowercase host of a URL without a leading "www."."""
    host = (urlsplit(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def domain_matches(host: str, domain: str) -> bool:
    """True if host is domain or one of its subdomains."""
    domain = domain.lower().lstrip(".")
    if domain.startswith("www."):
        domain = domain[4:]
    return host == domain or host.endswith("." + domain)


class SecretStore(ABC):
    """Read-only lookup of (login, domain, name) -> secret value."""

    @abstractmethod
    def get(self, login: str, domain: str, name: str) -> Optional[str]:
        """Return the secret, or None when it is not stored."""


class EnvironmentSecretStore(SecretStore):
    """
    Secrets from environment variables named
    SCRAPE_LEDGER_SECRET_<LOGIN>_<DOMAIN>_<NAME> (non-alphanumerics -> "_").
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    @staticmethod
    def variable_name(login: str, domain: str, name: str) -> str:
        return ENV_PREFIX + "_".join(_env_part(p) for p in (login, domain, name))

    def get(self, login: str, domain: str, name: str) -> Optional[str]:
        value = self._environ.get(self.variable_name(login, domain, name))
        return value if value else None


class StaticSecretStore(SecretStore):
    """In-memory secrets keyed by (login, domain, name)."""

    def __init__(self, secrets: Optional[dict[tuple[str, str, str], str]] = None):
        self._secrets = dict(secrets or {})

    def set(self, login: str, domain: str, name: str, value: str) -> None:
        self._secrets[(login, domain.lower(), name)] = value

    def get(self, login: str, domain: str, name: str) -> Optional[str]:
        return self._secrets.get((login, domain.lower(), name))
