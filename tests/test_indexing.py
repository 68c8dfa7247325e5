"""Tests for recording ledger rows and backfilling embeddings."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from receipt_search.embeddings import EmbeddingProvider
from receipt_search.indexing import LedgerIndexer
from receipt_search.search import parse_iso_datetime
from receipt_search.storage import DuckDBStorage
from .conftest import FakeEmbeddingClient, make_provider, seed_ledger


class _FlakyModels:
    """Fails every call whose batch contains a poisoned text."""

    def __init__(self, poisoned: str) -> None:
        self.poisoned = poisoned
        self.inner = FakeEmbeddingClient().models

    def embed_content(self, *, model: str, contents: list[str], config: dict):
        if self.poisoned in contents:
            raise RuntimeError("quota exceeded")
        return self.inner.embed_content(model=model, contents=contents, config=config)


def test_recorded_rows_carry_embeddings(tmp_path: Path) -> None:
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    indexer = LedgerIndexer(storage, embedding_provider=make_provider())

    account = indexer.record_account("Household Budget", "budget")
    txn = indexer.record_transaction(account.id, "Groceries", -5.0, merchant="Costco")
    item = indexer.record_receipt_item(txn.id, "Bananas", -1.49)

    stored = storage.get_receipt_items(txn.id)
    assert stored[0].embedding == [0.0, 1.0, 0.0, 0.0]
    assert item.item_amount == pytest.approx(1.49)
    assert account.id.startswith("acct_")
    assert storage.list_missing_embeddings("receipt_items") == []
    storage.close()


def test_embedding_text_per_kind(tmp_path: Path) -> None:
    client = FakeEmbeddingClient()
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    indexer = LedgerIndexer(storage, embedding_provider=EmbeddingProvider(client=client, dim=4))

    account = indexer.record_account("Angelica's Checking", "expenses")
    txn = indexer.record_transaction(
        account.id, "Weekly shop", -20.0, category="groceries", merchant="Target"
    )
    indexer.record_receipt_item(txn.id, "Whole Milk 1gal", 4.99)

    texts = [call["contents"][0] for call in client.models.calls]
    assert texts == [
        "Angelica's Checking expenses account",
        "Weekly shop groceries Target",
        "Whole Milk 1gal",
    ]
    storage.close()


def test_embedding_failure_still_records_row(tmp_path: Path) -> None:
    client = FakeEmbeddingClient()
    client.models = _FlakyModels("Bananas")
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    indexer = LedgerIndexer(storage, embedding_provider=EmbeddingProvider(client=client, dim=4))

    account = indexer.record_account("Household Budget", "budget")
    txn = indexer.record_transaction(account.id, "Shop", -1.0)
    item = indexer.record_receipt_item(txn.id, "Bananas", 1.49)

    assert item.embedding is None
    assert [row.id for row in storage.list_missing_embeddings("receipt_items")] == [item.id]
    storage.close()


def test_backfill_embeds_missing_rows(tmp_path: Path) -> None:
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    seed_ledger(storage, None)
    indexer = LedgerIndexer(storage, embedding_provider=make_provider())

    result = indexer.backfill_embeddings()

    assert result.accounts == 3
    assert result.transactions == 4
    assert result.receipt_items == 5
    assert result.failed == 0
    assert result.total == 12
    for kind in ("accounts", "transactions", "receipt_items"):
        assert storage.list_missing_embeddings(kind) == []

    # A second run has nothing left to do.
    assert indexer.backfill_embeddings().total == 0
    storage.close()


def test_backfill_counts_failed_batches(tmp_path: Path) -> None:
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    seed_ledger(storage, None)
    client = FakeEmbeddingClient()
    client.models = _FlakyModels("Bananas")
    provider = EmbeddingProvider(client=client, dim=4, batch_size=1)

    result = LedgerIndexer(storage, embedding_provider=provider).backfill_embeddings()

    assert result.failed == 1
    assert result.receipt_items == 4
    assert [row.item_description for row in storage.list_missing_embeddings("receipt_items")] == [
        "Bananas"
    ]
    storage.close()


def test_backfill_requires_provider(tmp_path: Path) -> None:
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))

    with pytest.raises(ValueError, match="embedding provider"):
        LedgerIndexer(storage).backfill_embeddings()
    storage.close()


def test_default_timestamps_fall_inside_aware_utc_range(tmp_path: Path) -> None:
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    indexer = LedgerIndexer(storage)
    account = indexer.record_account("Household Budget", "budget")

    before = datetime.now(timezone.utc) - timedelta(minutes=1)
    txn = indexer.record_transaction(account.id, "Coffee", -3.0, category="dining")
    after = datetime.now(timezone.utc) + timedelta(minutes=1)

    assert txn.date.tzinfo is None
    assert txn.created_at == txn.date
    start = parse_iso_datetime(before.isoformat())
    end = parse_iso_datetime(after.isoformat().replace("+00:00", "Z"))
    found = storage.list_transactions(start=start, end=end)
    storage.close()

    assert [row.id for row in found] == [txn.id]
