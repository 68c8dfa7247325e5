"""
Gemini embeddings for ledger rows and search terms.

Rows are embedded as documents when recorded or backfilled; search terms are
embedded as queries on the async search path. Every vector a collection
stores must have the configured dimensionality, so a vector of any other
length is discarded and reported as missing.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any, Protocol

from google.genai import Client as GenAIClient

logger = logging.getLogger(__name__)

DOCUMENT_TASK = "RETRIEVAL_DOCUMENT"
QUERY_TASK = "RETRIEVAL_QUERY"

_DEFAULT_MODEL = "gemini-embedding-001"
_DEFAULT_DIM = 768
_DEFAULT_BATCH_SIZE = 50


class Embeddable(Protocol):
    def embedding_text(self) -> str: ...


class EmbeddingProvider:
    """Google GenAI embedding client configured for the ledger."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        dim: int | None = None,
        batch_size: int | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("RECEIPT_SEARCH_EMBEDDING_MODEL", _DEFAULT_MODEL)
        self.dim = dim or int(os.getenv("RECEIPT_SEARCH_EMBEDDING_DIM", str(_DEFAULT_DIM)))
        self.batch_size = max(
            1,
            batch_size
            or int(os.getenv("RECEIPT_SEARCH_EMBEDDING_BATCH_SIZE", str(_DEFAULT_BATCH_SIZE))),
        )

        if client is None:
            api_key = api_key or os.getenv("GOOGLE_API_KEY")
            if api_key is None:
                raise ValueError(
                    "GOOGLE_API_KEY not found. "
                    "Provide api_key or set the environment variable."
                )
            client = GenAIClient(api_key=api_key)
        self._client = client

    def _config(self, task_type: str) -> dict[str, Any]:
        return {"task_type": task_type, "output_dimensionality": self.dim}

    def _vector(self, embedding: Any) -> list[float]:
        values = list(getattr(embedding, "values", None) or [])
        if values and len(values) != self.dim:
            logger.warning(
                "Discarding %d-d embedding from %s (expected %d)", len(values), self.model, self.dim
            )
            return []
        return values

    def embed_texts(self, texts: Sequence[str], *, task_type: str = DOCUMENT_TASK) -> list[list[float]]:
        """Embed *texts* in batches; one vector (possibly empty) per text, in order."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            result = self._client.models.embed_content(
                model=self.model, contents=batch, config=self._config(task_type)
            )
            returned = [self._vector(embedding) for embedding in (result.embeddings or [])]
            # Pad so a short response never shifts vectors onto the wrong rows.
            returned += [[] for _ in range(len(batch) - len(returned))]
            vectors.extend(returned[: len(batch)])
        return vectors

    def embed_records(self, records: Sequence[Embeddable]) -> list[list[float]]:
        """Embed ledger rows using each row's own embedding text."""
        return self.embed_texts([record.embedding_text() for record in records])

    async def embed_query(self, query: str) -> list[float]:
        """Embed a search term; an empty list means no usable vector came back."""
        result = await self._client.aio.models.embed_content(
            model=self.model, contents=[query], config=self._config(QUERY_TASK)
        )
        if not result.embeddings:
            return []
        return self._vector(result.embeddings[0])
