"""
Query routing: classify a parsed question into a search mode and run it.

The router is the boundary of the search core. Whatever goes wrong locally
(no embedding, unknown transaction, ambiguous account, unusable descriptor)
comes back as a ``SearchOutcome`` status rather than an exception.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal, TypeAlias

from pydantic import ValidationError

from .config import SearchPolicy
from .errors import InvalidQueryError, TransactionNotFoundError, UnsupportedQueryError
from .models import (
    DateRange,
    LatestOccurrence,
    LatestReceiptFromStore,
    ParsedQuery,
    ProductSearch,
    SearchMode,
    SearchQuery,
    StoreSearch,
    TransactionListing,
    parse_search_query,
)
from .receipts import Receipt, ReceiptReconstructor, group_by_transaction
from .search import (
    AccountResolver,
    FallbackStrategy,
    RankedItem,
    SemanticMatcher,
    match_merchant,
    parse_iso_datetime,
    run_fallbacks,
)
from .search.semantic import QueryEmbedder
from .storage import StorageBackend, TransactionRecord, record_to_dict
from .trace import SearchTrace

logger = logging.getLogger(__name__)

OutcomeStatus: TypeAlias = Literal["ok", "no_results", "not_found", "ambiguous", "rejected"]

_LATEST_PURCHASE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bwhen\s+did\s+i\s+(?:last\s+)?buy\s+(?P<item>.+)", re.IGNORECASE),
    re.compile(r"\bwhat\s+was\s+my\s+last\s+purchase\s+of\s+(?P<item>.+)", re.IGNORECASE),
)
_TRAILING_NOISE_RE = re.compile(
    r"(?:\s+(?:the\s+last\s+time|last\s+time|most\s+recently|recently|last))?[\s?.!]*$",
    re.IGNORECASE,
)


def extract_latest_purchase_term(message: str | None) -> str | None:
    """Return the item of a "when did I (last) buy X" style question, if any."""
    if not message:
        return None
    for pattern in _LATEST_PURCHASE_PATTERNS:
        match = pattern.search(message)
        if match:
            item = _TRAILING_NOISE_RE.sub("", match.group("item")).strip()
            if item:
                return item
    return None


@dataclass(frozen=True)
class SearchOutcome:
    """Everything the response layer needs to answer, plus the debug trace."""

    mode: SearchMode | None
    status: OutcomeStatus
    term: str | None = None
    matches: list[RankedItem] = field(default_factory=list)
    receipts: list[Receipt] = field(default_factory=list)
    candidates: list[RankedItem] = field(default_factory=list)
    message: str | None = None
    trace: SearchTrace = field(default_factory=SearchTrace)
    query: SearchQuery | None = None

    @property
    def transactions(self) -> list[TransactionRecord]:
        """Matched transactions, for the modes that match transactions directly."""
        return [item.record for item in self.matches if isinstance(item.record, TransactionRecord)]

    def to_dict(self, *, include_trace: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mode": self.mode,
            "status": self.status,
            "term": self.term,
            "message": self.message,
            "matches": [_ranked_to_dict(item) for item in self.matches],
            "receipts": [receipt.to_dict() for receipt in self.receipts],
            "candidates": [_ranked_to_dict(item) for item in self.candidates],
            "transactions": [record_to_dict(txn) for txn in self.transactions],
        }
        if include_trace:
            data["trace"] = self.trace.to_list()
        return data


def _ranked_to_dict(item: RankedItem) -> dict[str, Any]:
    return {
        "id": item.record_id,
        "similarity": round(item.similarity, 6),
        "matched_by": item.matched_by,
        "record": record_to_dict(item.record),
    }


class QueryRouter:
    """Dispatch parsed questions to the matchers and the receipt reconstructor."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: QueryEmbedder | None,
        *,
        policy: SearchPolicy | None = None,
    ) -> None:
        self.storage = storage
        self.policy = policy if policy is not None else SearchPolicy()
        self.matcher = SemanticMatcher(
            embedding_provider,
            tie_gap=self.policy.tie_gap,
            embed_timeout=self.policy.embed_timeout,
        )
        self.account_resolver = AccountResolver(
            self.matcher,
            threshold=self.policy.account_threshold,
            min_lead=self.policy.account_lead,
        )
        self.reconstructor = ReceiptReconstructor(storage)

    def classify(self, parsed: ParsedQuery, message: str | None = None) -> SearchQuery:
        """Map the parser's descriptor (and the raw message) onto one search mode."""
        params = parsed.parameters

        # The parser regularly misfiles temporal product questions as store
        # searches; the phrasing alone decides these.
        override_term = extract_latest_purchase_term(message)
        if override_term is not None:
            return LatestOccurrence(
                term=override_term,
                search_type="product",
                account_name=params.account_name,
            )

        if parsed.query_type == "latest_receipt":
            return LatestReceiptFromStore(
                term=self._require_term(parsed),
                account_name=params.account_name,
            )

        if parsed.query_type == "semantic_search":
            term = self._require_term(parsed)
            if params.is_latest:
                return LatestOccurrence(
                    term=term,
                    search_type=params.search_type or "product",
                    account_name=params.account_name,
                )
            if params.search_type == "store":
                return StoreSearch(term=term, account_name=params.account_name)
            return ProductSearch(term=term, account_name=params.account_name)

        if parsed.query_type == "transactions":
            return TransactionListing(
                category=params.category,
                date_range=params.date_range,
                account_name=params.account_name,
            )

        raise UnsupportedQueryError(
            f"Query type {parsed.query_type!r} is not handled by receipt search."
        )

    async def route(self, parsed: ParsedQuery, *, message: str | None = None) -> SearchOutcome:
        """Classify and execute; never raises for local failure modes."""
        trace = SearchTrace().record(
            "parse",
            "descriptor received",
            query_type=parsed.query_type,
            parameters=parsed.parameters.model_dump(exclude_none=True),
        )
        try:
            query = self.classify(parsed, message)
        except (UnsupportedQueryError, InvalidQueryError) as exc:
            logger.info("Rejected query %r: %s", parsed.intent or message, exc)
            return SearchOutcome(
                mode=None,
                status="rejected",
                message=str(exc),
                trace=trace.record("route", "rejected", reason=str(exc)),
            )

        trace = trace.record(
            "route",
            "classified",
            mode=query.mode,
            overridden=extract_latest_purchase_term(message) is not None,
        )
        return await self.execute(query, trace=trace)

    async def execute(
        self,
        query: SearchQuery | dict[str, Any],
        *,
        trace: SearchTrace | None = None,
    ) -> SearchOutcome:
        """Run one classified query.

        A plain dict is validated against the ``SearchQuery`` union first; a
        dict that fits no mode is rejected without touching the ledger.
        """
        if trace is None:
            trace = SearchTrace()
        if isinstance(query, dict):
            try:
                query = parse_search_query(query)
            except ValidationError as exc:
                reason = "; ".join(
                    f"{'.'.join(str(part) for part in error['loc']) or 'query'}: {error['msg']}"
                    for error in exc.errors()
                )
                logger.info("Rejected search query: %s", reason)
                return SearchOutcome(
                    mode=None,
                    status="rejected",
                    message=f"Invalid search query: {reason}",
                    trace=trace.record("route", "rejected", reason=reason),
                )
            trace = trace.record("route", "validated", mode=query.mode)
        term = getattr(query, "term", None)

        account_id: str | None = None
        if query.account_name:
            accounts = await asyncio.to_thread(self.storage.list_accounts)
            resolution, trace = await self.account_resolver.resolve(
                query.account_name, accounts, trace=trace
            )
            if resolution.status == "ambiguous":
                return SearchOutcome(
                    mode=query.mode,
                    status="ambiguous",
                    term=term,
                    candidates=resolution.candidates,
                    message=(
                        f"Several accounts match {query.account_name!r}; "
                        "please say which one you mean."
                    ),
                    trace=trace,
                    query=query,
                )
            if resolution.account is None:
                return SearchOutcome(
                    mode=query.mode,
                    status="not_found",
                    term=term,
                    message=f"Could not find an account matching {query.account_name!r}.",
                    trace=trace,
                    query=query,
                )
            account_id = resolution.account.id

        try:
            if isinstance(query, ProductSearch):
                return await self._product_search(query, account_id, trace)
            elif isinstance(query, StoreSearch):
                return await self._store_search(query, account_id, trace)
            elif isinstance(query, LatestOccurrence):
                return await self._latest_occurrence(query, account_id, trace)
            elif isinstance(query, LatestReceiptFromStore):
                return await self._latest_receipt(query, account_id, trace)
            else:
                return await self._transaction_listing(query, account_id, trace)
        except TransactionNotFoundError as exc:
            logger.warning("Receipt reconstruction failed: %s", exc)
            return SearchOutcome(
                mode=query.mode,
                status="not_found",
                term=term,
                message=f"Could not find the receipt for transaction {exc.transaction_id}.",
                trace=trace.record("receipt", "transaction not found", transaction=exc.transaction_id),
                query=query,
            )

    async def _product_search(
        self, query: ProductSearch, account_id: str | None, trace: SearchTrace
    ) -> SearchOutcome:
        items = await asyncio.to_thread(self.storage.list_receipt_items, account_id=account_id)
        matches, trace = await self.matcher.search(
            query.term, items, threshold=self.policy.item_threshold, trace=trace
        )
        if not matches:
            return self._no_results(query, trace)

        receipts: list[Receipt] = []
        for group in group_by_transaction(matches):
            receipts.append(
                await self.reconstructor.reconstruct(
                    group.transaction_id, matched_item_ids=group.matched_item_ids
                )
            )
        trace = trace.record(
            "receipt", "receipts grouped by transaction", items=len(matches), receipts=len(receipts)
        )
        return SearchOutcome(
            mode=query.mode,
            status="ok",
            term=query.term,
            matches=matches,
            receipts=receipts,
            trace=trace,
            query=query,
        )

    async def _store_search(
        self, query: StoreSearch, account_id: str | None, trace: SearchTrace
    ) -> SearchOutcome:
        transactions = await asyncio.to_thread(
            self.storage.list_transactions, account_id=account_id
        )
        matches, trace = match_merchant(
            query.term, transactions, limit=self.policy.store_result_limit, trace=trace
        )
        if not matches:
            return self._no_results(query, trace)
        return SearchOutcome(
            mode=query.mode,
            status="ok",
            term=query.term,
            matches=matches,
            trace=trace,
            query=query,
        )

    async def _latest_occurrence(
        self, query: LatestOccurrence, account_id: str | None, trace: SearchTrace
    ) -> SearchOutcome:
        if query.search_type == "store":
            transactions = await asyncio.to_thread(
                self.storage.list_transactions, account_id=account_id
            )
            matches, trace = match_merchant(query.term, transactions, limit=None, trace=trace)
        else:
            items = await asyncio.to_thread(
                self.storage.list_receipt_items, account_id=account_id
            )
            matches, trace = await self.matcher.search(
                query.term, items, threshold=self.policy.item_threshold, trace=trace
            )
        if not matches:
            return self._no_results(query, trace)

        top = matches[0]
        if query.search_type == "store":
            receipt = await self.reconstructor.reconstruct(top.record_id)
        else:
            receipt = await self.reconstructor.reconstruct(
                top.record.transaction_id, highlight_item_id=top.record_id
            )
        trace = trace.record(
            "receipt",
            "latest occurrence selected",
            match=top.record_id,
            transaction=receipt.transaction.id,
            discarded=len(matches) - 1,
        )
        return SearchOutcome(
            mode=query.mode,
            status="ok",
            term=query.term,
            matches=[top],
            receipts=[receipt],
            trace=trace,
            query=query,
        )

    async def _latest_receipt(
        self, query: LatestReceiptFromStore, account_id: str | None, trace: SearchTrace
    ) -> SearchOutcome:
        transactions = await asyncio.to_thread(
            self.storage.list_transactions, account_id=account_id
        )
        matches, trace = match_merchant(query.term, transactions, limit=None, trace=trace)
        if not matches:
            return self._no_results(query, trace)

        latest = max(matches, key=lambda item: item.record.date)
        receipt = await self.reconstructor.reconstruct(latest.record_id)
        trace = trace.record(
            "receipt", "most recent visit selected", transaction=latest.record_id
        )
        return SearchOutcome(
            mode=query.mode,
            status="ok",
            term=query.term,
            matches=[latest],
            receipts=[receipt],
            trace=trace,
            query=query,
        )

    async def _transaction_listing(
        self, query: TransactionListing, account_id: str | None, trace: SearchTrace
    ) -> SearchOutcome:
        storage = self.storage

        async def category_and_date_range() -> list[TransactionRecord] | None:
            if not query.category or query.date_range is None:
                return None
            start, end = _parse_date_range(query.date_range)
            return await asyncio.to_thread(
                storage.list_transactions,
                account_id=account_id,
                category=query.category,
                start=start,
                end=end,
            )

        async def category() -> list[TransactionRecord] | None:
            if not query.category:
                return None
            return await asyncio.to_thread(
                storage.list_transactions, account_id=account_id, category=query.category
            )

        async def date_range() -> list[TransactionRecord] | None:
            if query.date_range is None:
                return None
            start, end = _parse_date_range(query.date_range)
            return await asyncio.to_thread(
                storage.list_transactions, account_id=account_id, start=start, end=end
            )

        async def recent() -> list[TransactionRecord] | None:
            return await asyncio.to_thread(
                storage.list_transactions, account_id=account_id, limit=query.limit
            )

        result, trace = await run_fallbacks(
            [
                FallbackStrategy("category_and_date_range", category_and_date_range),
                FallbackStrategy("category", category),
                FallbackStrategy("date_range", date_range),
                FallbackStrategy("recent", recent),
            ],
            trace=trace,
        )
        matches = [
            RankedItem(record=txn, similarity=1.0, matched_by=result.strategy or "none")
            for txn in result.results
        ]
        return SearchOutcome(
            mode=query.mode,
            status="ok" if matches else "no_results",
            term=query.category,
            matches=matches,
            trace=trace,
            query=query,
        )

    @staticmethod
    def _require_term(parsed: ParsedQuery) -> str:
        term = (parsed.parameters.search_term or "").strip()
        if not term:
            raise InvalidQueryError(
                f"A search term is required for {parsed.query_type!r} queries."
            )
        return term

    @staticmethod
    def _no_results(query: SearchQuery, trace: SearchTrace) -> SearchOutcome:
        term = getattr(query, "term", None)
        return SearchOutcome(
            mode=query.mode,
            status="no_results",
            term=term,
            message=f"No matches found for {term!r}. Try a different search term.",
            trace=trace,
            query=query,
        )


def _parse_date_range(date_range: DateRange) -> tuple[datetime, datetime]:
    start = parse_iso_datetime(date_range.start)
    end = parse_iso_datetime(date_range.end)
    if "T" not in date_range.end and " " not in date_range.end.strip():
        # A bare end date covers that whole day.
        end = end + timedelta(days=1) - timedelta(microseconds=1)
    if start > end:
        raise ValueError(f"Date range starts after it ends: {date_range.start} > {date_range.end}")
    return start, end
