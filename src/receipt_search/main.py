import asyncio
import json
from pathlib import Path

from typer import Argument, Exit, Option, Typer
from typing import Annotated
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .config import SearchPolicy, resolve_db_path
from .embeddings import EmbeddingProvider
from .errors import TransactionNotFoundError
from .indexing import LedgerIndexer
from .logging_config import setup_logging
from .parser import QueryParser
from .receipts import Receipt, ReceiptReconstructor
from .router import QueryRouter, SearchOutcome
from .storage import DuckDBStorage

app = Typer()

_STATUS_STYLES = {
    "ok": "bold green",
    "no_results": "bold yellow",
    "not_found": "bold red",
    "ambiguous": "bold magenta",
    "rejected": "bold red",
}


def get_embedding_provider() -> EmbeddingProvider | None:
    try:
        return EmbeddingProvider()
    except ValueError:
        return None


def get_parser() -> QueryParser:
    return QueryParser()


def render_receipt(receipt: Receipt) -> Table:
    txn = receipt.transaction
    table = Table(
        title=f"{txn.merchant or txn.description} · {txn.date:%Y-%m-%d}",
        title_justify="left",
    )
    table.add_column("Item")
    table.add_column("Category", style="dim")
    table.add_column("Amount", justify="right")
    for line in receipt.lines:
        table.add_row(
            line.item.item_description,
            line.item.category or "",
            f"${line.item.item_amount:,.2f}",
            style="bold yellow" if line.highlighted else "yellow" if line.matched else None,
        )
    table.add_section()
    table.add_row("Total", "", f"${receipt.total:,.2f}", style="bold")
    return table


def render_outcome(console: Console, outcome: SearchOutcome, *, debug: bool = False) -> None:
    header = f"**Mode:** `{outcome.mode or 'none'}`  **Status:** `{outcome.status}`"
    if outcome.term:
        header += f"  **Term:** {outcome.term}"
    if outcome.message:
        header += f"\n\n{outcome.message}"
    console.print(
        Panel(
            Markdown(header),
            title_align="left",
            title="Search",
            border_style=_STATUS_STYLES.get(outcome.status, "bold white"),
        )
    )

    if outcome.candidates and outcome.status == "ambiguous":
        table = Table(title="Which account did you mean?", title_justify="left")
        table.add_column("Account")
        table.add_column("Type")
        table.add_column("Similarity", justify="right")
        for candidate in outcome.candidates:
            table.add_row(
                candidate.record.name, candidate.record.type, f"{candidate.similarity:.3f}"
            )
        console.print(table)

    if outcome.matches and not outcome.receipts:
        table = Table(title="Transactions", title_justify="left")
        table.add_column("Date")
        table.add_column("Merchant")
        table.add_column("Description")
        table.add_column("Amount", justify="right")
        for match in outcome.matches:
            txn = match.record
            table.add_row(
                f"{txn.date:%Y-%m-%d}",
                txn.merchant or "",
                txn.description,
                f"{txn.amount:,.2f}",
            )
        console.print(table)

    for receipt in outcome.receipts:
        console.print(render_receipt(receipt))

    if debug:
        content = f"```json\n{json.dumps(outcome.trace.to_list(), indent=2, default=str)}\n```"
        console.print(
            Panel(
                Markdown(content),
                title_align="left",
                title="Trace",
                border_style="bold blue",
            )
        )


def open_ledger(console: Console, db_path: str | None) -> DuckDBStorage:
    """Open an existing ledger read-only, or exit when there is none."""
    resolved_db_path = resolve_db_path(db_path)
    if not Path(resolved_db_path).exists():
        console.print(f"[bold red]No ledger found at {resolved_db_path}.[/]")
        raise Exit(code=1)
    return DuckDBStorage(resolved_db_path, read_only=True, initialize=False)


async def run_search(
    console: Console,
    parser: QueryParser,
    storage: DuckDBStorage,
    message: str,
    *,
    debug: bool = False,
) -> None:
    try:
        router = QueryRouter(
            storage, get_embedding_provider(), policy=SearchPolicy.from_env()
        )
        with console.status(status="Working on your request..."):
            parsed = await parser.parse(message)
            outcome = await router.route(parsed, message=message)
        render_outcome(console, outcome, debug=debug)
    finally:
        storage.close()


@app.command()
def search(
    message: Annotated[
        str,
        Option("--message", "-m", help="Question about your receipts, e.g. 'When did I last buy milk?'"),
    ],
    db_path: Annotated[
        str | None,
        Option("--db-path", help="DuckDB ledger path (default: ~/.receipt_search/ledger.duckdb)."),
    ] = None,
    debug: Annotated[
        bool, Option("--debug", help="Print the decision trace after the result.")
    ] = False,
) -> None:
    """Answer a natural-language question about your receipts."""
    setup_logging()
    console = Console()
    try:
        parser = get_parser()
    except ValueError as exc:
        console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1)
    storage = open_ledger(console, db_path)
    asyncio.run(run_search(console, parser, storage, message, debug=debug))


@app.command()
def receipt(
    transaction_id: Annotated[str, Argument(help="Transaction id to show.")],
    highlight: Annotated[
        str | None, Option("--highlight", help="Receipt item id to highlight.")
    ] = None,
    db_path: Annotated[str | None, Option("--db-path", help="DuckDB ledger path.")] = None,
) -> None:
    """Show the full itemized receipt of one transaction."""
    setup_logging()
    console = Console()
    storage = open_ledger(console, db_path)
    try:
        rebuilt = asyncio.run(
            ReceiptReconstructor(storage).reconstruct(
                transaction_id, highlight_item_id=highlight
            )
        )
    except TransactionNotFoundError as exc:
        console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1)
    finally:
        storage.close()
    console.print(render_receipt(rebuilt))


@app.command()
def backfill(
    db_path: Annotated[str | None, Option("--db-path", help="DuckDB ledger path.")] = None,
) -> None:
    """Generate embeddings for every row that is missing one."""
    setup_logging()
    console = Console()
    provider = get_embedding_provider()
    if provider is None:
        console.print("[bold red]GOOGLE_API_KEY is required to generate embeddings.[/]")
        raise Exit(code=1)

    storage = DuckDBStorage(resolve_db_path(db_path))
    try:
        with console.status(status="Generating embeddings..."):
            result = LedgerIndexer(storage, embedding_provider=provider).backfill_embeddings()
    finally:
        storage.close()

    table = Table(title="Embedding backfill", title_justify="left")
    table.add_column("Kind")
    table.add_column("Written", justify="right")
    table.add_row("accounts", str(result.accounts))
    table.add_row("transactions", str(result.transactions))
    table.add_row("receipt items", str(result.receipt_items))
    table.add_row("failed", str(result.failed), style="red" if result.failed else None)
    console.print(table)
