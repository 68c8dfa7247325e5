"""
FastAPI server for receipt search.

Exposes natural-language search, structured search (parser bypassed),
receipt lookup and embedding backfill over a DuckDB ledger.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import SearchPolicy, resolve_db_path
from .embeddings import EmbeddingProvider
from .errors import TransactionNotFoundError
from .indexing import LedgerIndexer
from .logging_config import setup_logging
from .models import ParsedQuery
from .parser import QueryParser
from .receipts import ReceiptReconstructor
from .router import QueryRouter
from .storage import DuckDBStorage

logger = logging.getLogger(__name__)

app = FastAPI(title="Receipt Search", description="Search itemized receipts in plain language")

_backfill_lock = asyncio.Lock()


class SearchRequest(BaseModel):
    """Request model for natural-language search."""

    message: str
    db_path: str | None = None
    debug: bool = False


class StructuredSearchRequest(BaseModel):
    """Request model for search with an already-parsed query.

    Send either the parser's descriptor as ``query`` or a classified
    search mode such as ``{"mode": "store_search", "term": "Costco"}`` as
    ``search``.
    """

    query: ParsedQuery | None = None
    search: dict[str, Any] | None = None
    message: str | None = None
    db_path: str | None = None
    debug: bool = False


class BackfillRequest(BaseModel):
    db_path: str | None = None


def get_embedding_provider() -> EmbeddingProvider | None:
    try:
        return EmbeddingProvider()
    except ValueError:
        return None


def get_parser() -> QueryParser:
    return QueryParser()


def _open_ledger(db_path: str | None) -> DuckDBStorage | None:
    resolved_db_path = resolve_db_path(db_path)
    if not Path(resolved_db_path).exists():
        return None
    return DuckDBStorage(resolved_db_path, read_only=True, initialize=False)


async def _run_search(
    parsed: ParsedQuery | None,
    message: str | None,
    db_path: str | None,
    debug: bool,
    search: dict[str, Any] | None = None,
):
    storage = _open_ledger(db_path)
    if storage is None:
        return JSONResponse({"error": "No ledger found at this path."}, status_code=404)
    try:
        router = QueryRouter(storage, get_embedding_provider(), policy=SearchPolicy.from_env())
        if search is not None:
            outcome = await router.execute(search)
        else:
            outcome = await router.route(parsed, message=message)
    finally:
        storage.close()
    return {
        "message": message,
        "parsed": parsed.model_dump(by_alias=True, exclude_none=True) if parsed is not None else None,
        "outcome": outcome.to_dict(include_trace=debug),
    }


@app.post("/api/search")
async def search(request: SearchRequest):
    """Parse a question with the LLM and answer it from the ledger."""
    try:
        try:
            parser = get_parser()
        except ValueError as exc:
            return JSONResponse({"error": str(exc)}, status_code=503)
        parsed = await parser.parse(request.message)
        return await _run_search(parsed, request.message, request.db_path, request.debug)
    except Exception as exc:
        logger.exception("Search failed for %r", request.message)
        return JSONResponse({"error": str(exc)}, status_code=500)


@app.post("/api/search/structured")
async def search_structured(request: StructuredSearchRequest):
    """Answer an already-parsed query without calling the parser."""
    if request.query is None and request.search is None:
        return JSONResponse(
            {"error": "Provide either a parsed query or a search mode."}, status_code=422
        )
    try:
        return await _run_search(
            request.query, request.message, request.db_path, request.debug, request.search
        )
    except Exception as exc:
        logger.exception("Structured search failed")
        return JSONResponse({"error": str(exc)}, status_code=500)


@app.get("/api/receipts/{transaction_id}")
async def get_receipt(
    transaction_id: str, highlight: str | None = None, db_path: str | None = None
):
    """Return the full itemized receipt of one transaction."""
    try:
        storage = _open_ledger(db_path)
        if storage is None:
            return JSONResponse({"error": "No ledger found at this path."}, status_code=404)
        try:
            receipt = await ReceiptReconstructor(storage).reconstruct(
                transaction_id, highlight_item_id=highlight
            )
        finally:
            storage.close()
        return receipt.to_dict()
    except TransactionNotFoundError as exc:
        return JSONResponse({"error": str(exc)}, status_code=404)
    except Exception as exc:
        logger.exception("Receipt lookup failed for %s", transaction_id)
        return JSONResponse({"error": str(exc)}, status_code=500)


@app.post("/api/embeddings/backfill")
async def backfill_embeddings(request: BackfillRequest):
    """Embed every ledger row that is missing an embedding."""
    provider = get_embedding_provider()
    if provider is None:
        return JSONResponse(
            {"error": "GOOGLE_API_KEY is required to generate embeddings."}, status_code=400
        )
    try:
        async with _backfill_lock:
            resolved_db_path = resolve_db_path(request.db_path)
            storage = DuckDBStorage(resolved_db_path)
            try:
                indexer = LedgerIndexer(storage, embedding_provider=provider)
                result = await asyncio.to_thread(indexer.backfill_embeddings)
            finally:
                storage.close()
        return {
            "db_path": resolved_db_path,
            "accounts": result.accounts,
            "transactions": result.transactions,
            "receipt_items": result.receipt_items,
            "failed": result.failed,
        }
    except Exception as exc:
        logger.exception("Embedding backfill failed")
        return JSONResponse({"error": str(exc)}, status_code=500)


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    setup_logging()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
