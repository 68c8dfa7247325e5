"""Ledger recording and embedding backfill."""

from .pipeline import BackfillResult, LedgerIndexer, utc_now

__all__ = [
    "BackfillResult",
    "LedgerIndexer",
    "utc_now",
]
