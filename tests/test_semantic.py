"""Tests for the semantic matcher over in-memory collections."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from receipt_search.search.semantic import SemanticIndex, SemanticMatcher
from receipt_search.similarity import cosine_similarity
from receipt_search.storage import DuckDBStorage
from .conftest import EmptyQueryEmbedder, FailingQueryEmbedder, seed_ledger


class _SlowEmbedder:
    async def embed_query(self, query: str) -> list[float]:
        await asyncio.sleep(5)
        return [1.0, 0.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_search_returns_matches_above_threshold(ledger: DuckDBStorage, embedding_provider) -> None:
    matcher = SemanticMatcher(embedding_provider)

    matches, trace = await matcher.search("milk", ledger.list_receipt_items(), threshold=0.5)

    assert [item.record_id for item in matches] == ["item_organic_milk", "item_whole_milk"]
    assert all(item.similarity >= 0.5 for item in matches)
    assert all(item.matched_by == "semantic" for item in matches)
    assert trace.stages() == ["embed", "match"]


@pytest.mark.asyncio
async def test_search_with_high_threshold_drops_weaker_match(ledger: DuckDBStorage, embedding_provider) -> None:
    matcher = SemanticMatcher(embedding_provider)

    matches, _ = await matcher.search("milk", ledger.list_receipt_items(), threshold=0.97)

    assert [item.record_id for item in matches] == ["item_whole_milk"]


@pytest.mark.asyncio
async def test_empty_query_vector_returns_no_matches(ledger: DuckDBStorage) -> None:
    matcher = SemanticMatcher(EmptyQueryEmbedder())

    matches, trace = await matcher.search("coffee", ledger.list_receipt_items(), threshold=0.5)

    assert matches == []
    assert trace.steps[-1].message == "empty query vector"


@pytest.mark.asyncio
async def test_provider_error_degrades_to_no_matches(ledger: DuckDBStorage) -> None:
    embedder = FailingQueryEmbedder()
    matcher = SemanticMatcher(embedder)

    matches, trace = await matcher.search("milk", ledger.list_receipt_items(), threshold=0.5)

    assert matches == []
    assert embedder.calls == 1
    assert trace.steps[-1].data["error"] == "embedding service unavailable"


@pytest.mark.asyncio
async def test_provider_timeout_degrades_to_no_matches(ledger: DuckDBStorage) -> None:
    matcher = SemanticMatcher(_SlowEmbedder(), embed_timeout=0.01)

    matches, trace = await matcher.search("milk", ledger.list_receipt_items(), threshold=0.5)

    assert matches == []
    assert trace.steps[-1].message == "embedding provider timed out"


@pytest.mark.asyncio
async def test_missing_provider_degrades_to_no_matches(ledger: DuckDBStorage) -> None:
    matcher = SemanticMatcher(None)

    matches, _ = await matcher.search("milk", ledger.list_receipt_items(), threshold=0.5)

    assert matches == []


@pytest.mark.asyncio
async def test_empty_collection_skips_embedding() -> None:
    embedder = FailingQueryEmbedder()
    matcher = SemanticMatcher(embedder)

    matches, trace = await matcher.search("milk", [], threshold=0.5)

    assert matches == []
    assert embedder.calls == 0
    assert trace.steps[-1].message == "empty collection"


def test_rows_without_embeddings_score_zero(tmp_path) -> None:
    storage = DuckDBStorage(str(tmp_path / "bare.duckdb"))
    seed_ledger(storage, None)
    scored = SemanticIndex(storage.list_receipt_items()).score([1.0, 0.0, 0.0, 0.0])
    storage.close()

    assert scored
    assert all(item.similarity == 0.0 for item in scored)


def test_index_scores_match_pairwise_cosine() -> None:
    rows = [
        SimpleNamespace(id="same", embedding=[1.0, 0.0, 0.0, 0.0]),
        SimpleNamespace(id="angled", embedding=[0.6, 0.8, 0.0, 0.0]),
        SimpleNamespace(id="short", embedding=[1.0, 0.0]),
        SimpleNamespace(id="zero", embedding=[0.0, 0.0, 0.0, 0.0]),
        SimpleNamespace(id="missing", embedding=None),
    ]
    query = [2.0, 0.0, 0.0, 0.0]

    scored = SemanticIndex(rows).score(query)

    assert [item.record_id for item in scored] == ["same", "angled", "short", "zero", "missing"]
    assert [item.similarity for item in scored] == pytest.approx([1.0, 0.6, 0.0, 0.0, 0.0])
    for row, item in zip(rows[:2], scored):
        assert item.similarity == pytest.approx(cosine_similarity(query, row.embedding))
