"""
Ordered fallback strategies for transaction listings.

Each strategy either declines (returns ``None``), fails (raises
``ValueError``, e.g. on an unparseable date), or answers with a list, which
may be empty. The first strategy that answers wins; every attempt is logged
and traced.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..trace import SearchTrace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackStrategy:
    name: str
    run: Callable[[], Awaitable[list[Any] | None]]


@dataclass(frozen=True)
class FallbackResult:
    strategy: str | None
    results: list[Any] = field(default_factory=list)
    attempts: list[tuple[str, str]] = field(default_factory=list)


async def run_fallbacks(
    strategies: Sequence[FallbackStrategy],
    *,
    trace: SearchTrace | None = None,
) -> tuple[FallbackResult, SearchTrace]:
    if trace is None:
        trace = SearchTrace()
    attempts: list[tuple[str, str]] = []

    for strategy in strategies:
        try:
            results = await strategy.run()
        except ValueError as exc:
            logger.info("Fallback strategy %s failed: %s", strategy.name, exc)
            attempts.append((strategy.name, "failed"))
            trace = trace.record("fallback", "strategy failed", strategy=strategy.name, error=str(exc))
            continue

        if results is None:
            attempts.append((strategy.name, "skipped"))
            trace = trace.record("fallback", "strategy not applicable", strategy=strategy.name)
            continue

        logger.debug("Fallback strategy %s answered with %d rows", strategy.name, len(results))
        attempts.append((strategy.name, "answered"))
        trace = trace.record(
            "fallback", "strategy answered", strategy=strategy.name, rows=len(results)
        )
        return FallbackResult(strategy=strategy.name, results=results, attempts=attempts), trace

    trace = trace.record("fallback", "no strategy answered")
    return FallbackResult(strategy=None, attempts=attempts), trace


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 date or timestamp; raise ValueError when malformed."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    # Stored timestamps are naive UTC.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
