"""Transaction CLI commands."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tally.core.errors import TallyError
from tally.core.ledger import TransactionRepository, export_csv, import_csv
from tally.core.providers.csv_provider import DATE_FORMATS
from tally.db.database import get_db

console = Console()
app = typer.Typer()


def _amount(value: float) -> str:
    color = "green" if value >= 0 else "red"
    return f"[{color}]{value:,.2f}[/{color}]"


@app.command("list")
def list_transactions(
    account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Account ID"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Exact category"),
    from_date: Optional[str] = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    to_date: Optional[str] = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Text in description, merchant or notes"),
    limit: int = typer.Option(100, "--limit", "-n", help="Maximum rows"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
):
    """Search transactions, newest first."""
    with get_db() as db:
        try:
            transactions = TransactionRepository(db).query_transactions(
                account_id=account_id,
                category=category,
                from_date=from_date,
                to_date=to_date,
                search=search,
                limit=limit,
                offset=offset,
            )
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        if not transactions:
            console.print("[yellow]No transactions found.[/yellow]")
            return

        table = Table(title="Transactions")
        table.add_column("ID", style="dim")
        table.add_column("Date")
        table.add_column("Amount", justify="right")
        table.add_column("Description")
        table.add_column("Category", style="cyan")
        table.add_column("Source", style="dim")

        for t in transactions:
            table.add_row(
                t.id[:8],
                t.date.isoformat(),
                _amount(t.amount),
                (t.merchant or t.description or "-")[:40],
                t.category or "-",
                t.source,
            )

        console.print(table)
        console.print(f"\n[dim]Showing {len(transactions)} transaction(s)[/dim]")


@app.command("add")
def add_transaction(
    account_id: str = typer.Argument(..., help="Account ID"),
    date: str = typer.Argument(..., help="Date (YYYY-MM-DD)"),
    amount: float = typer.Argument(..., help="Amount; negative for money out"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    merchant: Optional[str] = typer.Option(None, "--merchant", "-m"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    notes: Optional[str] = typer.Option(None, "--notes"),
):
    """Record a transaction."""
    with get_db() as db:
        try:
            tx = TransactionRepository(db).add_transaction(
                account_id,
                date,
                amount,
                description=description,
                merchant=merchant,
                category=category,
                notes=notes,
            )
        except (TallyError, ValueError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Added:[/green] {tx.date} {tx.amount:,.2f} [dim]{tx.id}[/dim]")


@app.command("update")
def update_transaction(
    transaction_id: str = typer.Argument(..., help="Transaction ID"),
    date: Optional[str] = typer.Option(None, "--date"),
    amount: Optional[float] = typer.Option(None, "--amount"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    merchant: Optional[str] = typer.Option(None, "--merchant", "-m"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    notes: Optional[str] = typer.Option(None, "--notes"),
):
    """Change fields of a transaction."""
    with get_db() as db:
        try:
            tx = TransactionRepository(db).update_transaction(
                transaction_id,
                date=date,
                amount=amount,
                description=description,
                merchant=merchant,
                category=category,
                notes=notes,
            )
        except (TallyError, ValueError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Updated:[/green] {tx.id}")


@app.command("delete")
def delete_transaction(transaction_id: str = typer.Argument(..., help="Transaction ID")):
    """Delete a transaction."""
    with get_db() as db:
        try:
            TransactionRepository(db).delete_transaction(transaction_id)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Deleted:[/green] {transaction_id}")


@app.command("summary")
def spending_summary(
    from_date: str = typer.Argument(..., help="Start date (YYYY-MM-DD)"),
    to_date: str = typer.Argument(..., help="End date (YYYY-MM-DD)"),
    account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Account ID"),
):
    """Spending by category over a date range."""
    with get_db() as db:
        try:
            summary = TransactionRepository(db).spending_summary(from_date, to_date, account_id)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        if not summary:
            console.print("[yellow]No spending in this range.[/yellow]")
            return

        table = Table(title=f"Spending {from_date} to {to_date}")
        table.add_column("Category", style="cyan")
        table.add_column("Total", justify="right", style="red")
        table.add_column("Count", justify="right")

        for row in summary:
            table.add_row(row.category, f"${row.total:,.2f}", str(row.count))

        console.print(table)
        total = sum(row.total for row in summary)
        console.print(f"\n[bold]Total spending:[/bold] ${total:,.2f}")


@app.command("import-csv")
def import_csv_command(
    file: Path = typer.Argument(..., help="CSV file", exists=True, readable=True),
    account_id: str = typer.Argument(..., help="Account to import into"),
    date_format: Optional[str] = typer.Option(None, "--date-format", help=f"One of: {', '.join(DATE_FORMATS)}"),
    invert: bool = typer.Option(False, "--invert", help="Flip signs (spending exported as positive)"),
    date_column: Optional[str] = typer.Option(None, "--date-column", help="Header of the date column"),
    amount_column: Optional[str] = typer.Option(None, "--amount-column", help="Header of the amount column"),
    description_column: Optional[str] = typer.Option(None, "--description-column"),
    category_column: Optional[str] = typer.Option(None, "--category-column"),
):
    """Import transactions from a CSV export."""
    mapping = {
        k: v
        for k, v in {
            "date": date_column,
            "amount": amount_column,
            "description": description_column,
            "category": category_column,
        }.items()
        if v
    }

    with get_db() as db:
        try:
            result = import_csv(
                db,
                str(file),
                account_id,
                mapping=mapping or None,
                date_format=date_format,
                invert_amounts=invert,
            )
        except (TallyError, ValueError) as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Import complete[/green] from {file.name}")
        console.print(f"  Imported: {result.imported}")
        console.print(f"  Skipped:  {result.skipped} (already present)")
        if result.errors:
            console.print(f"  [yellow]Errors: {len(result.errors)}[/yellow]")
            for err in result.errors[:10]:
                console.print(f"    - {err}")


@app.command("export-csv")
def export_csv_command(
    file: Path = typer.Argument(..., help="Output CSV file"),
    account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Account ID"),
    from_date: Optional[str] = typer.Option(None, "--from", help="Start date (YYYY-MM-DD)"),
    to_date: Optional[str] = typer.Option(None, "--to", help="End date (YYYY-MM-DD)"),
):
    """Export transactions to CSV."""
    with get_db() as db:
        try:
            count = export_csv(db, str(file), account_id=account_id, from_date=from_date, to_date=to_date)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Exported[/green] {count} transaction(s) to {file}")
