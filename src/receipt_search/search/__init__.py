"""Matchers and ranking helpers for ledger search."""

from .accounts import AccountResolution, AccountResolver
from .fallbacks import FallbackResult, FallbackStrategy, parse_iso_datetime, run_fallbacks
from .merchant import match_merchant, merchant_matches
from .ranker import RankedItem, rank_matches
from .semantic import SemanticIndex, SemanticMatcher

__all__ = [
    "AccountResolution",
    "AccountResolver",
    "FallbackResult",
    "FallbackStrategy",
    "parse_iso_datetime",
    "run_fallbacks",
    "match_merchant",
    "merchant_matches",
    "RankedItem",
    "rank_matches",
    "SemanticIndex",
    "SemanticMatcher",
]
