"""Storage backends for ledger persistence."""

from .base import (
    AccountRecord,
    ReceiptItemRecord,
    StorageBackend,
    TransactionRecord,
    record_to_dict,
)
from .duckdb import DuckDBStorage, new_id

__all__ = [
    "AccountRecord",
    "ReceiptItemRecord",
    "StorageBackend",
    "TransactionRecord",
    "DuckDBStorage",
    "new_id",
    "record_to_dict",
]
