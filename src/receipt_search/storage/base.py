"""
Storage interfaces and data models for ledger persistence.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class AccountRecord:
    """A named account that transactions are booked against."""

    id: str
    name: str
    type: str
    created_at: datetime
    embedding: list[float] | None = None

    def embedding_text(self) -> str:
        return f"{self.name} {self.type} account"


@dataclass(frozen=True)
class TransactionRecord:
    """A booked transaction, optionally itemized by receipt line items."""

    id: str
    account_id: str
    description: str
    amount: float
    date: datetime
    created_at: datetime
    category: str | None = None
    merchant: str | None = None
    embedding: list[float] | None = None

    @property
    def sort_date(self) -> datetime:
        return self.date

    def embedding_text(self) -> str:
        return f"{self.description} {self.category or ''} {self.merchant or ''}"


@dataclass(frozen=True)
class ReceiptItemRecord:
    """A single line item printed on a transaction's receipt."""

    id: str
    transaction_id: str
    item_description: str
    item_amount: float
    created_at: datetime
    category: str | None = None
    embedding: list[float] | None = None

    @property
    def sort_date(self) -> datetime:
        return self.created_at

    def embedding_text(self) -> str:
        return self.item_description


class StorageBackend(Protocol):
    """Protocol for persistence operations used by search and indexing."""

    def initialize(self) -> None:
        """Initialize required tables/indexes."""

    def create_account(self, account: AccountRecord) -> None:
        """Insert an account row (and its embedding when present)."""

    def create_transaction(self, transaction: TransactionRecord) -> None:
        """Insert a transaction row (and its embedding when present)."""

    def create_receipt_item(self, item: ReceiptItemRecord) -> None:
        """Insert a receipt line item (and its embedding when present)."""

    def list_accounts(self) -> list[AccountRecord]:
        """List all accounts ordered by name."""

    def list_transactions(
        self,
        *,
        account_id: str | None = None,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[TransactionRecord]:
        """List transactions, most recent first, optionally filtered."""

    def list_receipt_items(self, *, account_id: str | None = None) -> list[ReceiptItemRecord]:
        """List all receipt items, optionally scoped to one account."""

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        """Fetch a transaction by id."""

    def get_receipt_items(self, transaction_id: str) -> list[ReceiptItemRecord]:
        """Return the line items of a transaction in creation order."""

    def list_missing_embeddings(self, kind: str) -> list[Any]:
        """Return rows of *kind* (accounts, transactions, receipt_items) lacking embeddings."""

    def store_embeddings(self, kind: str, embeddings: list[tuple[str, list[float]]]) -> int:
        """Store (row_id, embedding) pairs for *kind*. Return count written."""


def record_to_dict(record: Any, *, include_embedding: bool = False) -> dict[str, Any]:
    """Serialize a record for JSON surfaces; timestamps become ISO strings."""
    data = asdict(record)
    if not include_embedding:
        data.pop("embedding", None)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data
