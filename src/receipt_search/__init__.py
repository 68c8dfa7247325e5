"""
Receipt Search - natural-language search over itemized receipts.

This package answers questions such as "When did I last buy milk?" against a
ledger of accounts, transactions and receipt line items, using Google Gemini
embeddings for product matching and DuckDB for storage.

Example usage:
    >>> from receipt_search import DuckDBStorage, EmbeddingProvider, QueryParser, QueryRouter
    >>> router = QueryRouter(DuckDBStorage("ledger.duckdb"), EmbeddingProvider())
    >>> parsed = await QueryParser().parse("When did I last buy milk?")
    >>> outcome = await router.route(parsed, message="When did I last buy milk?")
"""

from .config import SearchPolicy, resolve_db_path
from .embeddings import EmbeddingProvider
from .errors import (
    InvalidQueryError,
    ReceiptSearchError,
    TransactionNotFoundError,
    UnsupportedQueryError,
)
from .indexing import BackfillResult, LedgerIndexer
from .models import (
    LatestOccurrence,
    LatestReceiptFromStore,
    ParsedQuery,
    ProductSearch,
    SearchQuery,
    StoreSearch,
    TransactionListing,
)
from .parser import QueryParser
from .receipts import Receipt, ReceiptReconstructor, group_by_transaction
from .router import QueryRouter, SearchOutcome
from .similarity import cosine_scores, cosine_similarity
from .storage import DuckDBStorage
from .trace import SearchTrace

__all__ = [
    # Routing
    "QueryRouter",
    "SearchOutcome",
    "QueryParser",
    # Models
    "ParsedQuery",
    "SearchQuery",
    "ProductSearch",
    "StoreSearch",
    "LatestOccurrence",
    "LatestReceiptFromStore",
    "TransactionListing",
    # Receipts
    "Receipt",
    "ReceiptReconstructor",
    "group_by_transaction",
    # Storage and indexing
    "DuckDBStorage",
    "LedgerIndexer",
    "BackfillResult",
    "EmbeddingProvider",
    # Support
    "SearchPolicy",
    "SearchTrace",
    "cosine_scores",
    "cosine_similarity",
    "resolve_db_path",
    "ReceiptSearchError",
    "TransactionNotFoundError",
    "UnsupportedQueryError",
    "InvalidQueryError",
]
