from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from google.genai.types import (
    Candidate,
    Content,
    GenerateContentResponse,
    HttpOptions,
    Part,
)

from receipt_search.embeddings import EmbeddingProvider
from receipt_search.indexing import LedgerIndexer
from receipt_search.models import ParsedQuery
from receipt_search.storage import DuckDBStorage

# Hand-picked 4-d vectors so similarities are easy to reason about:
# axis 0 is "milk", axis 1 "banana", axis 2 "snack", axis 3 "bread".
VECTORS: dict[str, list[float]] = {
    "milk": [1.0, 0.0, 0.0, 0.0],
    "Whole Milk 1gal": [0.98, 0.2, 0.0, 0.0],
    "Organic 2% Milk": [0.95, 0.31, 0.0, 0.0],
    "burger buns": [0.0, 0.0, 0.0, 1.0],
    "Burger Buns 8ct": [0.1, 0.0, 0.0, 0.995],
    "Bananas": [0.0, 1.0, 0.0, 0.0],
    "Potato Chips": [0.0, 0.0, 1.0, 0.0],
    "Angelica": [0.0, 0.0, 0.7, 0.7],
}
DEFAULT_VECTOR = [0.0, 0.0, 0.0, 0.0]


@dataclass
class FakeEmbedding:
    values: list[float]


@dataclass
class FakeEmbedResult:
    embeddings: list[FakeEmbedding]


class FakeEmbedModels:
    """Returns the vector registered for each text; records every call."""

    def __init__(self, vectors: dict[str, list[float]]) -> None:
        self.vectors = vectors
        self.calls: list[dict[str, Any]] = []

    def embed_content(self, *, model: str, contents: list[str], config: dict) -> FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        return FakeEmbedResult(
            embeddings=[
                FakeEmbedding(values=list(self.vectors.get(text, DEFAULT_VECTOR)))
                for text in contents
            ]
        )


class FakeAsyncEmbedModels:
    def __init__(self, sync_models: FakeEmbedModels) -> None:
        self._sync = sync_models

    async def embed_content(self, *, model: str, contents: list[str], config: dict) -> FakeEmbedResult:
        return self._sync.embed_content(model=model, contents=contents, config=config)


class FakeAio:
    def __init__(self, models: Any) -> None:
        self.models = models


class FakeEmbeddingClient:
    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.models = FakeEmbedModels(dict(VECTORS if vectors is None else vectors))
        self.aio = FakeAio(FakeAsyncEmbedModels(self.models))


class FailingQueryEmbedder:
    """Stands in for a provider whose query embedding always errors."""

    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or RuntimeError("embedding service unavailable")
        self.calls = 0

    async def embed_query(self, query: str) -> list[float]:
        self.calls += 1
        raise self.exc


class EmptyQueryEmbedder:
    async def embed_query(self, query: str) -> list[float]:
        return []


class MockModels:
    def __init__(self, payload: str) -> None:
        self.payload = payload
        self.calls: list[dict[str, Any]] = []

    async def generate_content(self, *args, **kwargs) -> GenerateContentResponse:
        self.calls.append(kwargs)
        return GenerateContentResponse(
            candidates=[
                Candidate(
                    content=Content(role="model", parts=[Part.from_text(text=self.payload)])
                )
            ]
        )


class MockGenAIClient:
    """Parser client that always answers with the given descriptor."""

    def __init__(
        self,
        parsed: ParsedQuery | None = None,
        *,
        raw: str | None = None,
        http_options: HttpOptions | None = None,
    ) -> None:
        payload = raw if raw is not None else (parsed or ParsedQuery()).model_dump_json(by_alias=True)
        self.aio = FakeAio(MockModels(payload))


def make_provider(vectors: dict[str, list[float]] | None = None) -> EmbeddingProvider:
    return EmbeddingProvider(client=FakeEmbeddingClient(vectors), dim=4, batch_size=2)


@pytest.fixture()
def embedding_provider() -> EmbeddingProvider:
    return make_provider()


def seed_ledger(storage: DuckDBStorage, provider: EmbeddingProvider | None) -> dict[str, str]:
    """Populate a small household ledger and return the ids tests refer to."""
    indexer = LedgerIndexer(storage, embedding_provider=provider)
    household = indexer.record_account("Household Budget", "budget", account_id="acct_household")
    checking = indexer.record_account("Angelica's Checking", "expenses", account_id="acct_ang_chk")
    indexer.record_account("Angelica's Savings", "savings", account_id="acct_ang_sav")

    def buy(
        txn_id: str,
        account_id: str,
        merchant: str,
        when: datetime,
        items: list[tuple[str, str, float]],
    ) -> None:
        total = sum(amount for _, _, amount in items)
        indexer.record_transaction(
            account_id,
            f"Purchase at {merchant}",
            -total,
            date=when,
            category="groceries",
            merchant=merchant,
            transaction_id=txn_id,
            created_at=when,
        )
        for item_id, description, amount in items:
            indexer.record_receipt_item(
                txn_id,
                description,
                amount,
                category="groceries",
                item_id=item_id,
                created_at=when,
            )

    buy(
        "txn_costco_jan",
        household.id,
        "Costco Wholesale",
        datetime(2024, 1, 5, 10, 0),
        [
            ("item_whole_milk", "Whole Milk 1gal", 4.99),
            ("item_bananas", "Bananas", 1.49),
        ],
    )
    buy(
        "txn_target_jan",
        checking.id,
        "Target",
        datetime(2024, 1, 20, 18, 30),
        [
            ("item_organic_milk", "Organic 2% Milk", 5.49),
            ("item_chips", "Potato Chips", 3.50),
        ],
    )
    buy(
        "txn_costco_feb",
        household.id,
        "Costco Wholesale",
        datetime(2024, 2, 2, 9, 15),
        [("item_buns", "Burger Buns 8ct", 3.99)],
    )
    indexer.record_transaction(
        household.id,
        "Monthly salary",
        2500.0,
        date=datetime(2024, 2, 1, 8, 0),
        category="income",
        transaction_id="txn_salary",
        created_at=datetime(2024, 2, 1, 8, 0),
    )
    return {"household": household.id, "checking": checking.id}


@pytest.fixture()
def ledger(tmp_path: Path, embedding_provider: EmbeddingProvider):
    storage = DuckDBStorage(str(tmp_path / "ledger.duckdb"))
    seed_ledger(storage, embedding_provider)
    yield storage
    storage.close()
