"""
Exception taxonomy for the search core.

None of these escape ``QueryRouter.route``; the router turns them into
outcome statuses the response layer can explain to the user.
"""

from __future__ import annotations


class ReceiptSearchError(Exception):
    """Base class for all search-core errors."""


class TransactionNotFoundError(ReceiptSearchError, LookupError):
    """Raised when a referenced transaction does not exist."""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class UnsupportedQueryError(ReceiptSearchError, ValueError):
    """Raised when a parsed query does not map to any search mode."""


class InvalidQueryError(ReceiptSearchError, ValueError):
    """Raised when a parsed query maps to a mode but lacks required fields."""
