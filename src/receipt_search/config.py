"""
Configuration helpers for ledger storage and search policy.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_DB_PATH = "~/.receipt_search/ledger.duckdb"
ENV_DB_PATH = "RECEIPT_SEARCH_DB_PATH"


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) RECEIPT_SEARCH_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class SearchPolicy:
    """Thresholds and limits used by the matchers.

    The tie gap and account lead have no derivation beyond behaving well on
    real receipts; treat them as tunables rather than principled constants.
    """

    item_threshold: float = 0.5
    account_threshold: float = 0.65
    account_lead: float = 0.15
    tie_gap: float = 0.05
    store_result_limit: int = 20
    embed_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "SearchPolicy":
        return cls(
            item_threshold=_env_float("RECEIPT_SEARCH_ITEM_THRESHOLD", cls.item_threshold),
            account_threshold=_env_float(
                "RECEIPT_SEARCH_ACCOUNT_THRESHOLD", cls.account_threshold
            ),
            account_lead=_env_float("RECEIPT_SEARCH_ACCOUNT_LEAD", cls.account_lead),
            tie_gap=_env_float("RECEIPT_SEARCH_TIE_GAP", cls.tie_gap),
            store_result_limit=int(
                os.getenv("RECEIPT_SEARCH_STORE_LIMIT", str(cls.store_result_limit))
            ),
            embed_timeout=_env_float("RECEIPT_SEARCH_EMBED_TIMEOUT", cls.embed_timeout),
        )
