"""
Vector-based semantic search over in-memory row collections.

Embeds a query and scores stored row embeddings via cosine similarity. The
index is rebuilt from a fresh read on every call; nothing is cached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from ..similarity import cosine_scores
from ..trace import SearchTrace
from .ranker import RankedItem, rank_matches

logger = logging.getLogger(__name__)


class QueryEmbedder(Protocol):
    async def embed_query(self, query: str) -> list[float]: ...


class SemanticIndex:
    """Transient, read-only view of rows and their stored embeddings."""

    def __init__(self, rows: Iterable[Any]) -> None:
        self._rows = list(rows)

    def __len__(self) -> int:
        return len(self._rows)

    def score(self, query_vector: Sequence[float]) -> list[RankedItem]:
        """Score every row against *query_vector*.

        Rows without an embedding, or with one of a different length, score 0.
        """
        dim = len(query_vector)
        positions: list[int] = []
        vectors: list[Sequence[float]] = []
        for position, row in enumerate(self._rows):
            embedding = getattr(row, "embedding", None)
            if embedding and len(embedding) == dim:
                positions.append(position)
                vectors.append(embedding)

        similarities = [0.0] * len(self._rows)
        for position, similarity in zip(positions, cosine_scores(query_vector, vectors)):
            similarities[position] = float(similarity)
        return [
            RankedItem(record=row, similarity=similarity)
            for row, similarity in zip(self._rows, similarities)
        ]


class SemanticMatcher:
    """Embed a search term and rank a collection against it."""

    def __init__(
        self,
        embedding_provider: QueryEmbedder | None,
        *,
        tie_gap: float = 0.05,
        embed_timeout: float | None = 10.0,
    ) -> None:
        self.embedding_provider = embedding_provider
        self.tie_gap = tie_gap
        self.embed_timeout = embed_timeout

    async def query_vector(
        self, term: str, trace: SearchTrace
    ) -> tuple[list[float], SearchTrace]:
        """Embed *term*, degrading any provider failure to an empty vector."""
        if self.embedding_provider is None:
            logger.info("No embedding provider configured; skipping semantic match for %r", term)
            return [], trace.record("embed", "no embedding provider configured", term=term)
        try:
            vector = await asyncio.wait_for(
                self.embedding_provider.embed_query(term),
                timeout=self.embed_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Embedding provider timed out for term %r", term)
            return [], trace.record("embed", "embedding provider timed out", term=term)
        except Exception as exc:
            logger.warning("Embedding provider failed for term %r: %s", term, exc)
            return [], trace.record(
                "embed", "embedding provider failed", term=term, error=str(exc)
            )

        vector = list(vector or [])
        if not vector:
            logger.info("Embedding provider returned no vector for term %r", term)
            return [], trace.record("embed", "empty query vector", term=term)
        return vector, trace.record("embed", "query embedded", term=term, dim=len(vector))

    async def search(
        self,
        term: str,
        collection: Iterable[Any],
        *,
        threshold: float,
        trace: SearchTrace | None = None,
    ) -> tuple[list[RankedItem], SearchTrace]:
        """Return rows scoring at least *threshold*, best and most recent first."""
        if trace is None:
            trace = SearchTrace()
        index = SemanticIndex(collection)
        if len(index) == 0:
            return [], trace.record("match", "empty collection", term=term)

        query_vector, trace = await self.query_vector(term, trace)
        if not query_vector:
            return [], trace

        ranked = rank_matches(
            index.score(query_vector),
            threshold=threshold,
            tie_gap=self.tie_gap,
        )
        trace = trace.record(
            "match",
            "semantic ranking complete",
            term=term,
            candidates=len(index),
            threshold=threshold,
            matches=len(ranked),
            top=[
                {"id": item.record_id, "similarity": round(item.similarity, 4)}
                for item in ranked[:5]
            ],
        )
        return ranked, trace
