"""Tests for receipt reconstruction and grouping."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from receipt_search.errors import TransactionNotFoundError
from receipt_search.indexing import LedgerIndexer
from receipt_search.receipts import ReceiptReconstructor, group_by_transaction, receipt_total
from receipt_search.search.ranker import RankedItem
from receipt_search.storage import DuckDBStorage, ReceiptItemRecord


@pytest.fixture()
def three_item_receipt(tmp_path: Path):
    storage = DuckDBStorage(str(tmp_path / "receipt.duckdb"))
    indexer = LedgerIndexer(storage)
    account = indexer.record_account("Household Budget", "budget")
    txn = indexer.record_transaction(
        account.id,
        "Weekly shop",
        -21.48,
        date=datetime(2024, 3, 1),
        merchant="Trader Joe's",
        transaction_id="txn_weekly",
    )
    same_instant = datetime(2024, 3, 1, 12, 0)
    indexer.record_receipt_item(txn.id, "Eggs", 4.99, item_id="z_eggs", created_at=same_instant)
    indexer.record_receipt_item(txn.id, "Olive Oil", 12.99, item_id="a_oil", created_at=same_instant)
    indexer.record_receipt_item(txn.id, "Bread", 3.50, item_id="m_bread", created_at=same_instant)
    other = indexer.record_transaction(
        account.id,
        "Pharmacy run",
        -9.98,
        date=datetime(2024, 3, 1),
        merchant="CVS",
        transaction_id="txn_other",
    )
    indexer.record_receipt_item(other.id, "Eggs", 4.99, item_id="b_other_eggs", created_at=same_instant)
    indexer.record_receipt_item(other.id, "Aspirin", 4.99, item_id="c_aspirin", created_at=same_instant)
    yield storage
    storage.close()


@pytest.mark.asyncio
async def test_reconstruct_lists_items_in_entry_order_with_total(three_item_receipt) -> None:
    receipt = await ReceiptReconstructor(three_item_receipt).reconstruct("txn_weekly")

    assert receipt.transaction.id == "txn_weekly"
    assert [item.item_description for item in receipt.items] == ["Eggs", "Olive Oil", "Bread"]
    assert len(receipt.items) == 3
    assert all(item.transaction_id == "txn_weekly" for item in receipt.items)
    assert receipt.total == pytest.approx(21.48)
    assert receipt.highlighted_item_id is None
    assert not any(line.highlighted for line in receipt.lines)


@pytest.mark.asyncio
async def test_receipts_of_neighbouring_transactions_do_not_mix(three_item_receipt) -> None:
    other = await ReceiptReconstructor(three_item_receipt).reconstruct("txn_other")

    assert [item.id for item in other.items] == ["b_other_eggs", "c_aspirin"]
    assert all(item.transaction_id == "txn_other" for item in other.items)
    assert other.total == pytest.approx(9.98)

@pytest.mark.asyncio
async def test_reconstruct_highlights_requested_item(three_item_receipt) -> None:
    receipt = await ReceiptReconstructor(three_item_receipt).reconstruct(
        "txn_weekly", highlight_item_id="a_oil"
    )

    assert [line.highlighted for line in receipt.lines] == [False, True, False]
    assert receipt.highlighted_item_id == "a_oil"
    data = receipt.to_dict()
    assert data["item_count"] == 3
    assert data["items"][1]["highlighted"] is True


@pytest.mark.asyncio
async def test_reconstruct_ignores_highlight_from_other_receipt(three_item_receipt) -> None:
    receipt = await ReceiptReconstructor(three_item_receipt).reconstruct(
        "txn_weekly", highlight_item_id="b_other_eggs"
    )

    assert receipt.highlighted_item_id is None


@pytest.mark.asyncio
async def test_reconstruct_marks_matched_items_on_this_receipt_only(three_item_receipt) -> None:
    receipt = await ReceiptReconstructor(three_item_receipt).reconstruct(
        "txn_weekly", matched_item_ids=["m_bread", "z_eggs", "b_other_eggs"]
    )

    assert [line.matched for line in receipt.lines] == [True, False, True]
    assert receipt.matched_item_ids == ("z_eggs", "m_bread")
    assert receipt.highlighted_item_id is None

@pytest.mark.asyncio
async def test_reconstruct_unknown_transaction_raises(three_item_receipt) -> None:
    with pytest.raises(TransactionNotFoundError) as excinfo:
        await ReceiptReconstructor(three_item_receipt).reconstruct("txn_missing")

    assert excinfo.value.transaction_id == "txn_missing"


@pytest.mark.asyncio
async def test_transaction_without_items_has_zero_total(three_item_receipt) -> None:
    LedgerIndexer(three_item_receipt).record_transaction(
        three_item_receipt.list_accounts()[0].id,
        "Refund",
        10.0,
        transaction_id="txn_refund",
    )

    receipt = await ReceiptReconstructor(three_item_receipt).reconstruct("txn_refund")

    assert receipt.items == []
    assert receipt.total == 0


def _match(item_id: str, transaction_id: str, similarity: float) -> RankedItem:
    record = ReceiptItemRecord(
        id=item_id,
        transaction_id=transaction_id,
        item_description=item_id,
        item_amount=1.0,
        created_at=datetime(2024, 1, 1),
    )
    return RankedItem(record=record, similarity=similarity)


def test_group_by_transaction_keeps_first_seen_order() -> None:
    matches = [
        _match("i1", "t2", 0.9),
        _match("i2", "t1", 0.85),
        _match("i3", "t2", 0.8),
    ]

    groups = group_by_transaction(matches)

    assert [group.transaction_id for group in groups] == ["t2", "t1"]
    assert groups[0].matched_item_ids == ["i1", "i3"]


def test_receipt_total_uses_absolute_amounts() -> None:
    items = [
        ReceiptItemRecord("a", "t", "x", -4.99, datetime(2024, 1, 1)),
        ReceiptItemRecord("b", "t", "y", 3.5, datetime(2024, 1, 1)),
    ]

    assert receipt_total(items) == pytest.approx(8.49)
