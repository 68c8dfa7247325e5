"""
Receipt reconstruction from matched rows.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from typing import Any

from .errors import TransactionNotFoundError
from .search.ranker import RankedItem
from .storage import ReceiptItemRecord, StorageBackend, TransactionRecord, record_to_dict


@dataclass(frozen=True)
class ReceiptLine:
    item: ReceiptItemRecord
    highlighted: bool = False
    matched: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = record_to_dict(self.item)
        data["highlighted"] = self.highlighted
        data["matched"] = self.matched
        return data


@dataclass(frozen=True)
class Receipt:
    """A transaction with its line items in entry order and their total."""

    transaction: TransactionRecord
    lines: list[ReceiptLine]
    total: float
    highlighted_item_id: str | None = None
    matched_item_ids: tuple[str, ...] = ()

    @property
    def items(self) -> list[ReceiptItemRecord]:
        return [line.item for line in self.lines]

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction": record_to_dict(self.transaction),
            "items": [line.to_dict() for line in self.lines],
            "total": self.total,
            "item_count": len(self.lines),
            "highlighted_item_id": self.highlighted_item_id,
            "matched_item_ids": list(self.matched_item_ids),
        }


@dataclass(frozen=True)
class TransactionGroup:
    """Matched line items that share a transaction, in rank order."""

    transaction_id: str
    matches: list[RankedItem] = field(default_factory=list)

    @property
    def matched_item_ids(self) -> list[str]:
        return [match.record_id for match in self.matches]


def group_by_transaction(matches: Iterable[RankedItem]) -> list[TransactionGroup]:
    """Group line-item matches so each transaction appears once, best first."""
    groups: dict[str, list[RankedItem]] = {}
    for match in matches:
        groups.setdefault(str(match.record.transaction_id), []).append(match)
    return [
        TransactionGroup(transaction_id=transaction_id, matches=grouped)
        for transaction_id, grouped in groups.items()
    ]


def receipt_total(items: Iterable[ReceiptItemRecord]) -> float:
    """Sum of absolute line amounts, rounded to cents."""
    return round(sum(abs(item.item_amount) for item in items), 2)


class ReceiptReconstructor:
    """Rebuild full itemized receipts for transactions."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def reconstruct(
        self,
        transaction_id: str,
        *,
        highlight_item_id: str | None = None,
        matched_item_ids: Collection[str] = (),
    ) -> Receipt:
        """Rebuild one receipt.

        *highlight_item_id* marks the single item a latest-purchase answer is
        about; *matched_item_ids* marks every item a product search matched.
        Ids that are not on this receipt are ignored.
        """
        transaction = await asyncio.to_thread(self.storage.get_transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)

        items = await asyncio.to_thread(self.storage.get_receipt_items, transaction_id)
        lines = [
            ReceiptLine(
                item=item,
                highlighted=item.id == highlight_item_id,
                matched=item.id in matched_item_ids,
            )
            for item in items
        ]
        return Receipt(
            transaction=transaction,
            lines=lines,
            total=receipt_total(items),
            highlighted_item_id=highlight_item_id if any(line.highlighted for line in lines) else None,
            matched_item_ids=tuple(line.item.id for line in lines if line.matched),
        )
