"""Main CLI entry point using Typer."""

import logging

import typer
from rich.console import Console

from tally.config import PRODUCT_NAME, PRODUCT_TAGLINE, PRODUCT_VERSION, get_settings
from tally.db.database import init_db

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries
logging.getLogger("yfinance").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

console = Console()
app = typer.Typer(
    name="tally",
    help=f"{PRODUCT_NAME}: {PRODUCT_TAGLINE}",
    add_completion=False,
)


@app.callback()
def main_callback():
    """Initialize database on startup."""
    init_db()


# Import and add subcommands
from tally.cli.accounts import app as accounts_app
from tally.cli.transactions import app as transactions_app
from tally.cli.portfolio import app as portfolio_app
from tally.cli.budgets import app as budgets_app
from tally.cli.networth import app as networth_app
from tally.cli.connections import app as connections_app

app.add_typer(accounts_app, name="accounts", help="Manage accounts and balances")
app.add_typer(transactions_app, name="transactions", help="Record, search and import transactions")
app.add_typer(portfolio_app, name="portfolio", help="Manage investment and crypto holdings")
app.add_typer(budgets_app, name="budgets", help="Category budgets")
app.add_typer(networth_app, name="networth", help="Net worth snapshots")
app.add_typer(connections_app, name="connections", help="Link and sync Plaid, Finicity and Coinbase")


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold #14B8A6]{PRODUCT_NAME}[/]")
    console.print(f"[bold]Version:[/] {PRODUCT_VERSION}")
    console.print(f"[bold]Tagline:[/] {PRODUCT_TAGLINE}")


if __name__ == "__main__":
    app()
