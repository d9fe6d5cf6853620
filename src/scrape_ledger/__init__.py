"""
Institution scrape → Artifact store → Journal entries → Double-entry ledger

A deterministic, resumable pipeline that drives per-institution automation
scripts against a browser, stores the documents they produce exactly once,
extracts candidate journal entries from them, and reconciles those entries
into a double-entry ledger without double-counting.
"""

__version__ = "0.1.0"
