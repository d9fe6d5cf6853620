"""
CLI runner module.

Provides commands:
- scrape: Run a login's driver script in the browser
- documents / extract: Inspect stored documents and extract entries
- unreconciled / reconcile / transfer / candidates / unreconcile: GL linking
- checkpoints / conflicts / status / init
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
