"""
Lexical merchant matching for store searches.

Merchant names are short, low-entropy strings, so store lookups use literal
case-insensitive substring containment instead of embeddings.
"""

from __future__ import annotations

from collections.abc import Iterable

from ..storage import TransactionRecord
from ..trace import SearchTrace
from .ranker import RankedItem


def merchant_matches(term: str, merchant: str | None) -> bool:
    needle = term.strip().lower()
    if not needle or not merchant:
        return False
    return needle in merchant.lower()


def match_merchant(
    term: str,
    transactions: Iterable[TransactionRecord],
    *,
    limit: int | None = 20,
    trace: SearchTrace | None = None,
) -> tuple[list[RankedItem], SearchTrace]:
    """Return transactions whose merchant contains *term*, most recent first."""
    if trace is None:
        trace = SearchTrace()
    hits = [
        RankedItem(record=txn, similarity=1.0, matched_by="merchant")
        for txn in transactions
        if merchant_matches(term, txn.merchant)
    ]
    hits.sort(key=lambda item: item.record_id)
    hits.sort(key=lambda item: item.record.date, reverse=True)
    if limit is not None:
        hits = hits[: max(limit, 1)]
    trace = trace.record(
        "match",
        "merchant substring match complete",
        term=term,
        matches=len(hits),
        merchants=sorted({str(item.record.merchant) for item in hits}),
    )
    return hits, trace
