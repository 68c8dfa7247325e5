"""
Ledger recording and embedding backfill.

Rows are embedded when they are recorded. A row whose embedding could not be
produced is still stored; ``backfill_embeddings`` fills such gaps later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from ..embeddings import EmbeddingProvider
from ..storage import (
    AccountRecord,
    ReceiptItemRecord,
    StorageBackend,
    TransactionRecord,
    new_id,
)

logger = logging.getLogger(__name__)

_BACKFILL_KINDS: tuple[str, ...] = ("accounts", "transactions", "receipt_items")


def utc_now() -> datetime:
    """Current time as naive UTC, the form every stored timestamp takes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class BackfillResult:
    """Summary output for a backfill run."""

    accounts: int = 0
    transactions: int = 0
    receipt_items: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.accounts + self.transactions + self.receipt_items


class LedgerIndexer:
    """Record ledger rows together with their embeddings."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider | None = None,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider

    def record_account(
        self,
        name: str,
        type: str,
        *,
        account_id: str | None = None,
        created_at: datetime | None = None,
    ) -> AccountRecord:
        account = AccountRecord(
            id=account_id or new_id("acct"),
            name=name,
            type=type,
            created_at=created_at or utc_now(),
        )
        account = self._with_embedding(account)
        self.storage.create_account(account)
        return account

    def record_transaction(
        self,
        account_id: str,
        description: str,
        amount: float,
        *,
        date: datetime | None = None,
        category: str | None = None,
        merchant: str | None = None,
        transaction_id: str | None = None,
        created_at: datetime | None = None,
    ) -> TransactionRecord:
        now = utc_now()
        transaction = TransactionRecord(
            id=transaction_id or new_id("txn"),
            account_id=account_id,
            description=description,
            amount=float(amount),
            date=date or now,
            created_at=created_at or now,
            category=category,
            merchant=merchant,
        )
        transaction = self._with_embedding(transaction)
        self.storage.create_transaction(transaction)
        return transaction

    def record_receipt_item(
        self,
        transaction_id: str,
        item_description: str,
        item_amount: float,
        *,
        category: str | None = None,
        item_id: str | None = None,
        created_at: datetime | None = None,
    ) -> ReceiptItemRecord:
        item = ReceiptItemRecord(
            id=item_id or new_id("item"),
            transaction_id=transaction_id,
            item_description=item_description,
            item_amount=abs(float(item_amount)),
            created_at=created_at or utc_now(),
            category=category,
        )
        item = self._with_embedding(item)
        self.storage.create_receipt_item(item)
        return item

    def backfill_embeddings(self) -> BackfillResult:
        """Embed every stored row that has no embedding yet."""
        if self.embedding_provider is None:
            raise ValueError("An embedding provider is required to backfill embeddings.")

        written: dict[str, int] = {}
        failed = 0
        for kind in _BACKFILL_KINDS:
            rows = self.storage.list_missing_embeddings(kind)
            logger.info("Found %d %s without embeddings", len(rows), kind)
            written[kind] = 0
            batch_size = self.embedding_provider.batch_size
            for start in range(0, len(rows), batch_size):
                batch = rows[start : start + batch_size]
                try:
                    vectors = self.embedding_provider.embed_records(batch)
                except Exception as exc:
                    logger.error("Embedding batch for %s failed: %s", kind, exc)
                    failed += len(batch)
                    continue

                pairs = [
                    (row.id, vector)
                    for row, vector in zip(batch, vectors)
                    if vector
                ]
                failed += len(batch) - len(pairs)
                written[kind] += self.storage.store_embeddings(kind, pairs)

        result = BackfillResult(
            accounts=written["accounts"],
            transactions=written["transactions"],
            receipt_items=written["receipt_items"],
            failed=failed,
        )
        logger.info(
            "Backfill wrote %d embeddings (%d failed)", result.total, result.failed
        )
        return result

    def _with_embedding(self, record: Any) -> Any:
        if self.embedding_provider is None:
            return record
        text = record.embedding_text()
        try:
            vectors = self.embedding_provider.embed_records([record])
        except Exception as exc:
            logger.warning("Could not embed %s %r: %s", type(record).__name__, text, exc)
            return record
        if not vectors or not vectors[0]:
            logger.warning("Empty embedding for %s %r", type(record).__name__, text)
            return record
        return replace(record, embedding=vectors[0])
