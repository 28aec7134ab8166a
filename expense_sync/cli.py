import logging
from datetime import datetime
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from expense_sync import database, gmail
from expense_sync.categorizer import (
    CATEGORY_KEYWORDS_SETTING,
    KeywordCategorizer,
    load_category_keywords,
)
from expense_sync.models import SourceConfig, TransactionSource
from expense_sync.scraper import (
    AuthorizationRequiredError,
    NoAccountSelectedError,
    TransactionScraper,
)
from expense_sync.sources import (
    DEFAULT_SOURCE_CONFIGS,
    build_source_queries,
    get_source_configs,
    remove_source_config,
    save_source_config,
)
from expense_sync.sync import sync_transactions

app = typer.Typer(help="Sync bank alert emails from Gmail into categorized transactions.")
sources_app = typer.Typer(help="Configure which emails each source is scraped from.")
app.add_typer(sources_app, name="sources")

console = Console()

DAYS_PER_MONTH = 30


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show progress logs")):
    """Sync bank alert emails from Gmail into categorized transactions."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    database.init_db()


@app.command()
def auth(account: str = typer.Argument(help="Gmail address to authorize")):
    """Grant read-only Gmail access and remember the account for syncing."""
    try:
        gmail.authorize_account(account)
    except FileNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    gmail.set_selected_account(account)
    typer.echo(f"Authorized {account}. It will be used for future syncs.")


def _lookback(days: Optional[int], months: Optional[int]) -> int:
    if days is not None and months is not None:
        raise typer.BadParameter("Use either --days or --months, not both.")
    if months is not None:
        return months * DAYS_PER_MONTH
    return days if days is not None else 7


@app.command()
def sync(
    account: Optional[str] = typer.Option(None, help="Gmail account (default: the authorized one)"),
    days: Optional[int] = typer.Option(None, min=1, help="Look back this many days (default 7)"),
    months: Optional[int] = typer.Option(None, min=1, help="Look back this many 30-day months"),
    since: Optional[datetime] = typer.Option(None, formats=["%Y-%m-%d"], help="Look back to this date"),
):
    """Fetch alert emails now and store the new transactions."""
    lookback = _lookback(days, months)
    account = account or gmail.get_selected_account()

    categorizer = KeywordCategorizer(
        load_category_keywords(database.get_setting(CATEGORY_KEYWORDS_SETTING))
    )
    scraper = TransactionScraper(
        gmail.gmail_transport_factory,
        get_source_configs().values(),
        categorizer=categorizer,
    )

    try:
        result = sync_transactions(
            scraper,
            database.SqliteTransactionStore(),
            account,
            days=lookback,
            from_timestamp=since,
        )
    except NoAccountSelectedError:
        typer.echo("No Gmail account selected. Run `expense-sync auth <address>` first.", err=True)
        raise typer.Exit(1)
    except AuthorizationRequiredError as e:
        typer.echo(f"Gmail access needs your permission.\n{e}", err=True)
        raise typer.Exit(1)
    except Exception as e:
        typer.echo(f"Sync failed: {str(e) or type(e).__name__}", err=True)
        raise typer.Exit(1)

    window = f"since {since:%Y-%m-%d}" if since else f"from the past {lookback} days"
    typer.echo(
        f"Successfully synced {result.scraped} transactions {window}: "
        f"{len(result.inserted)} new, {result.duplicates} already stored."
    )


# --- Sources ---

@sources_app.command("list")
def sources_list():
    """Show the email sources used for syncing."""
    table = Table(title="Email sources")
    table.add_column("Source")
    table.add_column("Senders")
    table.add_column("Subject keywords")
    table.add_column("Description phrases")
    for source, config in get_source_configs().items():
        table.add_row(
            source.value,
            "\n".join(config.email_addresses),
            ", ".join(config.subject_keywords),
            ", ".join(config.description_phrases),
        )
    console.print(table)


def _parse_source(value: str) -> TransactionSource:
    try:
        source = TransactionSource(value.upper())
    except ValueError:
        source = None
    if source is None or source not in DEFAULT_SOURCE_CONFIGS:
        choices = ", ".join(s.value for s in DEFAULT_SOURCE_CONFIGS)
        raise typer.BadParameter(f"Unknown source {value!r}. Choose from: {choices}")
    return source


@sources_app.command("set")
def sources_set(
    source: str = typer.Argument(help="Source identifier, e.g. HDFC_UPI"),
    address: List[str] = typer.Option(..., "--address", "-a", help="Sender address (repeatable)"),
    keyword: List[str] = typer.Option([], "--keyword", "-k", help="Subject keyword (repeatable)"),
    phrase: List[str] = typer.Option([], "--phrase", "-p", help="Description phrase (repeatable)"),
):
    """Override the configuration of one source."""
    try:
        config = SourceConfig(
            source=_parse_source(source),
            email_addresses=address,
            subject_keywords=keyword,
            description_phrases=phrase,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))
    save_source_config(config)
    typer.echo(f"Saved configuration for {config.source.value}.")


@sources_app.command("reset")
def sources_reset(source: str = typer.Argument(help="Source identifier, e.g. HDFC_UPI")):
    """Drop a source override so its built-in configuration applies again."""
    parsed = _parse_source(source)
    remove_source_config(parsed)
    typer.echo(f"{parsed.value} reverted to its default configuration.")


@sources_app.command("queries")
def sources_queries(
    days: int = typer.Option(7, min=1, help="Look back this many days"),
):
    """Print the Gmail searches a sync would run."""
    for query, source in build_source_queries(get_source_configs().values(), days=days):
        typer.echo(f"{source.value}: {query}")
