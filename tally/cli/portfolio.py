"""Portfolio CLI commands."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tally.core.errors import TallyError
from tally.core.ledger import ASSET_TYPES, HoldingRepository
from tally.core.prices import PriceRegistry
from tally.db.database import get_db

console = Console()
app = typer.Typer()


@app.command("list")
def list_holdings(
    account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Account ID"),
):
    """List holdings with values."""
    with get_db() as db:
        portfolio = HoldingRepository(db).get_portfolio(account_id)

        if not portfolio.holdings:
            console.print("[yellow]No holdings found.[/yellow] Use 'set' to add some.")
            return

        table = Table(title="Portfolio Holdings")
        table.add_column("ID", style="dim")
        table.add_column("Symbol", style="cyan")
        table.add_column("Type")
        table.add_column("Quantity", justify="right")
        table.add_column("Price", justify="right")
        table.add_column("Value", justify="right", style="green")
        table.add_column("Price Source", style="dim")

        for h in portfolio.holdings:
            table.add_row(
                h.id[:8],
                h.symbol,
                h.asset_type,
                f"{h.quantity:,.4f}".rstrip("0").rstrip("."),
                f"${h.price:,.2f}" if h.price is not None else "-",
                f"${h.value:,.2f}" if h.value is not None else "-",
                h.price_source,
            )

        console.print(table)
        console.print(f"\n[bold]Total value:[/bold] ${portfolio.total_value:,.2f}")


@app.command("set")
def set_holding(
    account_id: str = typer.Argument(..., help="Account ID"),
    symbol: str = typer.Argument(..., help="Ticker (e.g., AAPL, BTC)"),
    quantity: float = typer.Argument(..., help="Units held"),
    price: Optional[float] = typer.Option(None, "--price", "-p", help="Price per unit"),
    asset_type: str = typer.Option("stock", "--type", "-t", help=f"One of: {', '.join(ASSET_TYPES)}"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
):
    """Add or replace a holding."""
    with get_db() as db:
        try:
            holding = HoldingRepository(db).upsert_holding(
                account_id, symbol, quantity, price=price, name=name, asset_type=asset_type
            )
        except (TallyError, ValueError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        value = f"${holding.value:,.2f}" if holding.value is not None else "unpriced"
        console.print(f"[green]Saved:[/green] {holding.symbol} x {holding.quantity} = {value}")


@app.command("delete")
def delete_holding(holding_id: str = typer.Argument(..., help="Holding ID")):
    """Delete a holding."""
    with get_db() as db:
        try:
            HoldingRepository(db).delete_holding(holding_id)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Deleted:[/green] {holding_id}")


@app.command("refresh")
def refresh_prices(
    account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Account ID"),
):
    """Fetch current prices for holdings."""
    console.print("[bold]Refreshing prices...[/bold]")
    with get_db() as db:
        result = HoldingRepository(db).refresh_prices(PriceRegistry(), account_id)

    console.print(f"[green]Updated:[/green] {len(result.updated)}")
    if result.failed:
        console.print(f"[yellow]No price for:[/yellow] {', '.join(result.failed)}")
