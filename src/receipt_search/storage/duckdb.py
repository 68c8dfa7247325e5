"""
DuckDB storage backend for ledger persistence.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import duckdb

from .base import AccountRecord, ReceiptItemRecord, TransactionRecord

# kind -> (row table, embedding table)
_EMBEDDING_TABLES: dict[str, tuple[str, str]] = {
    "accounts": ("accounts", "account_embeddings"),
    "transactions": ("transactions", "transaction_embeddings"),
    "receipt_items": ("receipt_items", "receipt_item_embeddings"),
}

_ACCOUNT_COLUMNS = "a.id, a.name, a.type, a.created_at, e.embedding"
_TRANSACTION_COLUMNS = (
    "t.id, t.account_id, t.description, t.amount, t.date, t.created_at, "
    "t.category, t.merchant, e.embedding"
)
_ITEM_COLUMNS = (
    "r.id, r.transaction_id, r.item_description, r.item_amount, r.created_at, "
    "r.category, e.embedding"
)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class DuckDBStorage:
    """DuckDB-backed persistence for accounts, transactions, and receipt items."""

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            self.db_path = str(Path(db_path).expanduser().resolve())
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.read_only = read_only
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    def initialize(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                type VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id VARCHAR PRIMARY KEY,
                account_id VARCHAR NOT NULL REFERENCES accounts(id),
                description VARCHAR NOT NULL,
                amount DOUBLE NOT NULL,
                category VARCHAR,
                merchant VARCHAR,
                date TIMESTAMP NOT NULL,
                created_at TIMESTAMP NOT NULL
            );
            """
        )
        self._conn.execute("CREATE SEQUENCE IF NOT EXISTS receipt_item_seq START 1;")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS receipt_items (
                id VARCHAR PRIMARY KEY,
                transaction_id VARCHAR NOT NULL REFERENCES transactions(id),
                item_description VARCHAR NOT NULL,
                item_amount DOUBLE NOT NULL,
                category VARCHAR,
                created_at TIMESTAMP NOT NULL,
                seq BIGINT NOT NULL DEFAULT nextval('receipt_item_seq')
            );
            """
        )
        # Embeddings are write-once, so they live in side tables and are never updated.
        for row_table, embedding_table in _EMBEDDING_TABLES.values():
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {embedding_table} (
                    row_id VARCHAR PRIMARY KEY REFERENCES {row_table}(id),
                    embedding DOUBLE[] NOT NULL
                );
                """
            )

    def create_account(self, account: AccountRecord) -> None:
        self._conn.execute(
            "INSERT INTO accounts (id, name, type, created_at) VALUES (?, ?, ?, ?)",
            [account.id, account.name, account.type, account.created_at],
        )
        if account.embedding:
            self.store_embeddings("accounts", [(account.id, account.embedding)])

    def create_transaction(self, transaction: TransactionRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO transactions (
                id, account_id, description, amount, category, merchant, date, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                transaction.id,
                transaction.account_id,
                transaction.description,
                transaction.amount,
                transaction.category,
                transaction.merchant,
                transaction.date,
                transaction.created_at,
            ],
        )
        if transaction.embedding:
            self.store_embeddings("transactions", [(transaction.id, transaction.embedding)])

    def create_receipt_item(self, item: ReceiptItemRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO receipt_items (
                id, transaction_id, item_description, item_amount, category, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                item.id,
                item.transaction_id,
                item.item_description,
                item.item_amount,
                item.category,
                item.created_at,
            ],
        )
        if item.embedding:
            self.store_embeddings("receipt_items", [(item.id, item.embedding)])

    def list_accounts(self) -> list[AccountRecord]:
        rows = self._conn.execute(
            f"""
            SELECT {_ACCOUNT_COLUMNS}
            FROM accounts a
            LEFT JOIN account_embeddings e ON e.row_id = a.id
            ORDER BY a.name ASC, a.id ASC
            """
        ).fetchall()
        return [self._row_to_account(row) for row in rows]

    def list_transactions(
        self,
        *,
        account_id: str | None = None,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[TransactionRecord]:
        sql = f"""
            SELECT {_TRANSACTION_COLUMNS}
            FROM transactions t
            LEFT JOIN transaction_embeddings e ON e.row_id = t.id
            WHERE 1 = 1
        """
        params: list[Any] = []
        if account_id is not None:
            sql += " AND t.account_id = ?"
            params.append(account_id)
        if category is not None:
            sql += " AND lower(t.category) = lower(?)"
            params.append(category)
        if start is not None:
            sql += " AND t.date >= ?"
            params.append(start)
        if end is not None:
            sql += " AND t.date <= ?"
            params.append(end)
        sql += " ORDER BY t.date DESC, t.created_at DESC, t.id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    def list_receipt_items(self, *, account_id: str | None = None) -> list[ReceiptItemRecord]:
        sql = f"""
            SELECT {_ITEM_COLUMNS}
            FROM receipt_items r
            JOIN transactions t ON t.id = r.transaction_id
            LEFT JOIN receipt_item_embeddings e ON e.row_id = r.id
        """
        params: list[Any] = []
        if account_id is not None:
            sql += " WHERE t.account_id = ?"
            params.append(account_id)
        sql += " ORDER BY r.created_at ASC, r.seq ASC"
        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_receipt_item(row) for row in rows]

    def get_transaction(self, transaction_id: str) -> TransactionRecord | None:
        row = self._conn.execute(
            f"""
            SELECT {_TRANSACTION_COLUMNS}
            FROM transactions t
            LEFT JOIN transaction_embeddings e ON e.row_id = t.id
            WHERE t.id = ?
            LIMIT 1
            """,
            [transaction_id],
        ).fetchone()
        if row is None:
            return None
        return self._row_to_transaction(row)

    def get_receipt_items(self, transaction_id: str) -> list[ReceiptItemRecord]:
        rows = self._conn.execute(
            f"""
            SELECT {_ITEM_COLUMNS}
            FROM receipt_items r
            LEFT JOIN receipt_item_embeddings e ON e.row_id = r.id
            WHERE r.transaction_id = ?
            ORDER BY r.created_at ASC, r.seq ASC
            """,
            [transaction_id],
        ).fetchall()
        return [self._row_to_receipt_item(row) for row in rows]

    def list_missing_embeddings(self, kind: str) -> list[Any]:
        row_table, embedding_table = self._embedding_tables(kind)
        if kind == "accounts":
            columns, alias, converter = _ACCOUNT_COLUMNS, "a", self._row_to_account
        elif kind == "transactions":
            columns, alias, converter = _TRANSACTION_COLUMNS, "t", self._row_to_transaction
        else:
            columns, alias, converter = _ITEM_COLUMNS, "r", self._row_to_receipt_item
        rows = self._conn.execute(
            f"""
            SELECT {columns}
            FROM {row_table} {alias}
            LEFT JOIN {embedding_table} e ON e.row_id = {alias}.id
            WHERE e.row_id IS NULL
            ORDER BY {alias}.created_at ASC, {alias}.id ASC
            """
        ).fetchall()
        return [converter(row) for row in rows]

    def store_embeddings(self, kind: str, embeddings: list[tuple[str, list[float]]]) -> int:
        _, embedding_table = self._embedding_tables(kind)
        pairs = [(row_id, list(vector)) for row_id, vector in embeddings if vector]
        if not pairs:
            return 0

        placeholders = ", ".join(["?"] * len(pairs))
        existing = {
            str(row[0])
            for row in self._conn.execute(
                f"SELECT row_id FROM {embedding_table} WHERE row_id IN ({placeholders})",
                [row_id for row_id, _ in pairs],
            ).fetchall()
        }
        fresh: dict[str, list[float]] = {}
        for row_id, vector in pairs:
            if row_id not in existing and row_id not in fresh:
                fresh[row_id] = vector
        if not fresh:
            return 0

        self._conn.executemany(
            f"INSERT INTO {embedding_table} (row_id, embedding) VALUES (?, ?)",
            [(row_id, vector) for row_id, vector in fresh.items()],
        )
        return len(fresh)

    @staticmethod
    def _embedding_tables(kind: str) -> tuple[str, str]:
        try:
            return _EMBEDDING_TABLES[kind]
        except KeyError:
            raise ValueError(
                f"Unknown embedding kind {kind!r}. "
                f"Expected one of: {', '.join(sorted(_EMBEDDING_TABLES))}"
            ) from None

    @staticmethod
    def _embedding(value: Any) -> list[float] | None:
        if value is None:
            return None
        return [float(v) for v in value]

    @classmethod
    def _row_to_account(cls, row: tuple[Any, ...]) -> AccountRecord:
        return AccountRecord(
            id=str(row[0]),
            name=str(row[1]),
            type=str(row[2]),
            created_at=row[3],
            embedding=cls._embedding(row[4]),
        )

    @classmethod
    def _row_to_transaction(cls, row: tuple[Any, ...]) -> TransactionRecord:
        return TransactionRecord(
            id=str(row[0]),
            account_id=str(row[1]),
            description=str(row[2]),
            amount=float(row[3]),
            date=row[4],
            created_at=row[5],
            category=row[6],
            merchant=row[7],
            embedding=cls._embedding(row[8]),
        )

    @classmethod
    def _row_to_receipt_item(cls, row: tuple[Any, ...]) -> ReceiptItemRecord:
        return ReceiptItemRecord(
            id=str(row[0]),
            transaction_id=str(row[1]),
            item_description=str(row[2]),
            item_amount=float(row[3]),
            created_at=row[4],
            category=row[5],
            embedding=cls._embedding(row[6]),
        )
