from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing import Annotated, Any, Literal, TypeAlias, Union

QueryType: TypeAlias = Literal[
    "transactions",
    "budget",
    "goals",
    "analysis",
    "general",
    "semantic_search",
    "latest_receipt",
]
SearchType: TypeAlias = Literal["product", "store"]
SearchMode: TypeAlias = Literal[
    "product_search",
    "store_search",
    "latest_occurrence",
    "latest_receipt",
    "transaction_listing",
]


class DateRange(BaseModel):
    """Inclusive date range as ISO strings, exactly as the parser produced them"""

    start: str = Field(description="ISO start date")
    end: str = Field(description="ISO end date")


class QueryParameters(BaseModel):
    """Filters extracted from the user's message"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category: str | None = Field(default=None, description="Spending category, e.g. groceries")
    date_range: DateRange | None = Field(
        default=None, alias="dateRange", description="Date range the question refers to"
    )
    account_type: str | None = Field(
        default=None, alias="accountType", description="One of budget, expenses, savings"
    )
    account_name: str | None = Field(
        default=None, alias="accountName", description="Specific account referenced, e.g. Angelica"
    )
    amount: float | None = Field(default=None, description="Amount mentioned in the question")
    timeframe: str | None = Field(default=None, description="Free-text timeframe")
    search_term: str | None = Field(
        default=None, alias="searchTerm", description="Product or store to search for"
    )
    is_latest: bool | None = Field(
        default=False, alias="isLatest", description="True for latest/last visit questions"
    )
    search_type: SearchType | None = Field(
        default=None, alias="searchType", description="Whether the term is a product or a store"
    )
    transaction_direction: Literal["incoming", "outgoing", "all"] | None = Field(
        default=None, alias="transactionDirection", description="Direction of money flow"
    )


class ParsedQuery(BaseModel):
    """Structured descriptor of a natural-language finance question"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intent: str = Field(default="", description="What the user wants to know")
    parameters: QueryParameters = Field(default_factory=QueryParameters)
    query_type: QueryType = Field(
        default="general", alias="queryType", description="Kind of question"
    )


class ProductSearch(BaseModel):
    """Find line items that semantically match a product"""

    model_config = ConfigDict(frozen=True)

    mode: Literal["product_search"] = "product_search"
    term: str = Field(min_length=1)
    account_name: str | None = None


class StoreSearch(BaseModel):
    """Find transactions at a merchant"""

    model_config = ConfigDict(frozen=True)

    mode: Literal["store_search"] = "store_search"
    term: str = Field(min_length=1)
    account_name: str | None = None


class LatestOccurrence(BaseModel):
    """Find the single most relevant, most recent purchase of a product or at a store"""

    model_config = ConfigDict(frozen=True)

    mode: Literal["latest_occurrence"] = "latest_occurrence"
    term: str = Field(min_length=1)
    search_type: SearchType = "product"
    account_name: str | None = None


class LatestReceiptFromStore(BaseModel):
    """Show the full receipt of the most recent visit to a store"""

    model_config = ConfigDict(frozen=True)

    mode: Literal["latest_receipt"] = "latest_receipt"
    term: str = Field(min_length=1)
    account_name: str | None = None


class TransactionListing(BaseModel):
    """List transactions filtered by category and/or date range"""

    model_config = ConfigDict(frozen=True)

    mode: Literal["transaction_listing"] = "transaction_listing"
    category: str | None = None
    date_range: DateRange | None = None
    account_name: str | None = None
    limit: int = Field(default=20, ge=1)


SearchQuery: TypeAlias = Annotated[
    Union[ProductSearch, StoreSearch, LatestOccurrence, LatestReceiptFromStore, TransactionListing],
    Field(discriminator="mode"),
]

_SEARCH_QUERY_ADAPTER: TypeAdapter[Any] = TypeAdapter(SearchQuery)


def parse_search_query(data: dict[str, Any]) -> SearchQuery:
    """Validate an already-classified query dict against the closed union."""
    return _SEARCH_QUERY_ADAPTER.validate_python(data)
