"""Net worth CLI commands."""

import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tally.core.ledger import NetWorthService
from tally.db.database import get_db

console = Console()
app = typer.Typer()


@app.command("snapshot")
def snapshot(
    notes: Optional[str] = typer.Option(None, "--notes", help="Note to store with the snapshot"),
    show_breakdown: bool = typer.Option(False, "--breakdown", "-b", help="Show per-account values"),
):
    """Record today's net worth."""
    with get_db() as db:
        snap = NetWorthService(db).snapshot_net_worth(notes=notes)

        console.print(f"[bold]Net worth on {snap.date}:[/bold] ${snap.net_worth:,.2f}")
        console.print(f"  Assets:      [green]${snap.total_assets:,.2f}[/green]")
        console.print(f"  Liabilities: [red]${snap.total_liabilities:,.2f}[/red]")

        if show_breakdown:
            table = Table(title="Breakdown")
            table.add_column("Account", style="cyan")
            table.add_column("Type")
            table.add_column("Value", justify="right")
            for item in json.loads(snap.breakdown or "[]"):
                table.add_row(item["name"], item["type"], f"${item['value']:,.2f}")
            console.print(table)


@app.command("history")
def history(
    from_date: Optional[str] = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    to_date: Optional[str] = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
    limit: int = typer.Option(90, "--limit", "-n", help="Maximum snapshots"),
):
    """Show recorded snapshots, newest first."""
    with get_db() as db:
        try:
            snapshots = NetWorthService(db).net_worth_history(from_date, to_date, limit)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        if not snapshots:
            console.print("[yellow]No snapshots yet.[/yellow] Use 'snapshot' to record one.")
            return

        table = Table(title="Net Worth History")
        table.add_column("Date")
        table.add_column("Assets", justify="right", style="green")
        table.add_column("Liabilities", justify="right", style="red")
        table.add_column("Net Worth", justify="right", style="bold")
        table.add_column("Notes", style="dim")

        for s in snapshots:
            table.add_row(
                s.date.isoformat(),
                f"${s.total_assets:,.2f}",
                f"${s.total_liabilities:,.2f}",
                f"${s.net_worth:,.2f}",
                s.notes or "",
            )

        console.print(table)
