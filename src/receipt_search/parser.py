import logging
import os
from datetime import date
from typing import Any

from google.genai import Client as GenAIClient
from google.genai.types import Content, HttpOptions, Part

from .models import ParsedQuery

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are a financial query parser. Turn the user's question about their household finances into a structured descriptor.

Pick a `queryType`:
- `transactions`: listing transactions, optionally by category, date range or account
- `budget`, `goals`, `analysis`, `general`: questions that are not searches over receipts
- `semantic_search`: looking for a product on receipts or for purchases at a store
- `latest_receipt`: showing the full receipt of the most recent visit to a store

For `searchType`, decide whether the search term is:
- `product`: a specific item, e.g. "burger buns", "coffee", "milk"
- `store`: a merchant, e.g. "Costco", "Target", "Starbucks"

Use ISO date strings for `dateRange`. Resolve relative dates such as "this month" or "last week" against today's date: {today}.
Account types are `budget`, `expenses` or `savings`. Extract account references by name, e.g. "Angelica's account" -> accountName: "Angelica", "household budget" -> accountName: "Household Budget".
Positive amounts are incoming money, negative amounts are spending.

Examples:
- "Show my grocery spending this month" -> queryType: transactions, category: groceries, dateRange: current month, transactionDirection: outgoing
- "Show transactions on Angelica's account" -> queryType: transactions, accountName: Angelica
- "How much did I spend on coffee?" -> queryType: semantic_search, searchTerm: coffee, searchType: product
- "Show me all my Starbucks purchases" -> queryType: semantic_search, searchTerm: Starbucks, searchType: store
- "When did I buy burger buns last time?" -> queryType: semantic_search, searchTerm: burger buns, isLatest: true, searchType: product
- "When did I last buy milk?" -> queryType: semantic_search, searchTerm: milk, isLatest: true, searchType: product
- "What was my last purchase of coffee?" -> queryType: semantic_search, searchTerm: coffee, isLatest: true, searchType: product
- "Show me the receipt from my last visit at Costco" -> queryType: latest_receipt, searchTerm: Costco, isLatest: true
- "What did I buy on my latest trip to Target?" -> queryType: latest_receipt, searchTerm: Target, isLatest: true

Any question like "when did I buy", "when did I last buy" or "when was my last" about a specific item sets isLatest: true and searchType: product.
"""

_DEFAULT_MODEL = "gemini-2.0-flash"


class QueryParser:
    """Turn a natural-language question into a ``ParsedQuery`` with an LLM."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("RECEIPT_SEARCH_PARSER_MODEL", _DEFAULT_MODEL)
        if client is not None:
            self._client = client
            return
        if api_key is None:
            api_key = os.getenv("GOOGLE_API_KEY")
        if api_key is None:
            raise ValueError(
                "GOOGLE_API_KEY not found within the current environment: please export it or provide it to the class constructor."
            )
        self._client = GenAIClient(
            api_key=api_key, http_options=HttpOptions(api_version="v1beta")
        )

    async def parse(self, message: str, *, today: date | None = None) -> ParsedQuery:
        """Parse *message*; any failure yields a ``general`` descriptor."""
        prompt = SYSTEM_PROMPT.format(today=(today or date.today()).isoformat())
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=[Content(role="user", parts=[Part.from_text(text=message)])],
                config={
                    "system_instruction": prompt,
                    "response_mime_type": "application/json",
                    "response_json_schema": ParsedQuery.model_json_schema(),
                },
            )
            if response.text is None:
                raise ValueError("parser returned an empty response")
            return ParsedQuery.model_validate_json(response.text)
        except Exception as exc:
            logger.warning("Could not parse query %r: %s", message, exc)
            return ParsedQuery(intent=message, query_type="general")
