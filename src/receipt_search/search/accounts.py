"""
Account-name resolution.

Three tiers, first decisive one wins:

1. exact case-insensitive name match;
2. a single account whose name contains the term (several is ambiguous);
3. embedding similarity above a threshold, accepted only when the top hit
   clearly leads the runner-up.

An unclear outcome is reported as ambiguous so the caller can ask the user
to clarify instead of guessing.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from ..storage import AccountRecord
from ..trace import SearchTrace
from .ranker import RankedItem
from .semantic import SemanticIndex, SemanticMatcher

ResolutionStatus = Literal["resolved", "ambiguous", "not_found"]


@dataclass(frozen=True)
class AccountResolution:
    """Outcome of resolving an account-name hint."""

    status: ResolutionStatus
    term: str
    account: AccountRecord | None = None
    candidates: list[RankedItem] = field(default_factory=list)
    matched_by: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status == "resolved"


class AccountResolver:
    """Resolve a free-text account hint to one account, or explain why not."""

    def __init__(
        self,
        matcher: SemanticMatcher,
        *,
        threshold: float = 0.65,
        min_lead: float = 0.15,
    ) -> None:
        self.matcher = matcher
        self.threshold = threshold
        self.min_lead = min_lead

    async def resolve(
        self,
        term: str,
        accounts: Iterable[AccountRecord],
        *,
        trace: SearchTrace | None = None,
    ) -> tuple[AccountResolution, SearchTrace]:
        if trace is None:
            trace = SearchTrace()
        candidates = list(accounts)
        needle = term.strip().lower()

        for account in candidates:
            if account.name.strip().lower() == needle:
                trace = trace.record("account", "exact name match", term=term, account=account.id)
                return self._resolved(term, account, "exact"), trace

        containing = [account for account in candidates if needle and needle in account.name.lower()]
        if len(containing) == 1:
            trace = trace.record(
                "account", "single substring match", term=term, account=containing[0].id
            )
            return self._resolved(term, containing[0], "substring"), trace
        if len(containing) > 1:
            trace = trace.record(
                "account",
                "several accounts contain the term",
                term=term,
                candidates=[account.name for account in containing],
            )
            return (
                AccountResolution(
                    status="ambiguous",
                    term=term,
                    candidates=[
                        RankedItem(record=account, similarity=1.0, matched_by="substring")
                        for account in containing
                    ],
                    matched_by="substring",
                ),
                trace,
            )

        return await self._resolve_semantic(term, candidates, trace)

    async def _resolve_semantic(
        self,
        term: str,
        accounts: list[AccountRecord],
        trace: SearchTrace,
    ) -> tuple[AccountResolution, SearchTrace]:
        if not accounts:
            trace = trace.record("account", "no accounts to search", term=term)
            return AccountResolution(status="not_found", term=term), trace

        query_vector, trace = await self.matcher.query_vector(term, trace)
        if not query_vector:
            return AccountResolution(status="not_found", term=term), trace

        hits = [
            item
            for item in SemanticIndex(accounts).score(query_vector)
            if item.similarity >= self.threshold
        ]
        hits.sort(key=lambda item: (-item.similarity, item.record_id))
        similarities = [round(item.similarity, 4) for item in hits]

        if not hits:
            trace = trace.record(
                "account", "no semantic match above threshold", term=term, threshold=self.threshold
            )
            return AccountResolution(status="not_found", term=term), trace

        if len(hits) == 1 or hits[0].similarity - hits[1].similarity >= self.min_lead:
            trace = trace.record(
                "account",
                "semantic match",
                term=term,
                account=hits[0].record_id,
                similarities=similarities,
            )
            return (
                AccountResolution(
                    status="resolved",
                    term=term,
                    account=hits[0].record,
                    candidates=hits,
                    matched_by="semantic",
                ),
                trace,
            )

        trace = trace.record(
            "account",
            "semantic matches too close to call",
            term=term,
            similarities=similarities,
            min_lead=self.min_lead,
        )
        return (
            AccountResolution(
                status="ambiguous", term=term, candidates=hits, matched_by="semantic"
            ),
            trace,
        )

    @staticmethod
    def _resolved(term: str, account: AccountRecord, matched_by: str) -> AccountResolution:
        return AccountResolution(
            status="resolved",
            term=term,
            account=account,
            candidates=[RankedItem(record=account, similarity=1.0, matched_by=matched_by)],
            matched_by=matched_by,
        )
