"""
Ranking helpers for similarity-scored candidates.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class RankedItem:
    """A candidate row with the score that put it in the result set."""

    record: Any
    similarity: float
    matched_by: str = "semantic"

    @property
    def record_id(self) -> str:
        return str(self.record.id)

    @property
    def sort_date(self) -> datetime | None:
        return getattr(self.record, "sort_date", None)


def _date_key(item: RankedItem) -> datetime:
    return item.sort_date or datetime.min


def rank_matches(
    scored: list[RankedItem],
    *,
    threshold: float,
    tie_gap: float = 0.05,
) -> list[RankedItem]:
    """Filter by *threshold* and order by similarity with a recency tie-break.

    Candidates whose similarity is within *tie_gap* of their neighbour are
    treated as equally good and ordered most recent first. Neighbours are
    chained into clusters, so for every adjacent pair in the output either
    the similarity drop exceeds *tie_gap* or the earlier row is at least as
    recent as the later one.
    """
    kept = [item for item in scored if item.similarity >= threshold]
    by_similarity = sorted(kept, key=lambda item: (-item.similarity, item.record_id))

    clusters: list[list[RankedItem]] = []
    for item in by_similarity:
        if clusters and clusters[-1][-1].similarity - item.similarity <= tie_gap:
            clusters[-1].append(item)
        else:
            clusters.append([item])

    ranked: list[RankedItem] = []
    for cluster in clusters:
        # Stable, so equal dates keep their similarity order.
        ranked.extend(sorted(cluster, key=_date_key, reverse=True))
    return ranked
