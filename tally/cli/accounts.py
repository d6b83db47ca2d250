"""Account CLI commands."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tally.cli.services import provider_services
from tally.core.errors import TallyError
from tally.core.ledger import AccountRepository
from tally.db.database import get_db
from tally.db.models import ACCOUNT_TYPES

console = Console()
app = typer.Typer()


def _money(value: Optional[float]) -> str:
    return f"${value:,.2f}" if value is not None else "-"


@app.command("list")
def list_accounts():
    """List active accounts."""
    with get_db() as db:
        accounts = AccountRepository(db).list_accounts()

        if not accounts:
            console.print("[yellow]No accounts found.[/yellow] Use 'add' or 'tally connections connect'.")
            return

        table = Table(title="Accounts")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        table.add_column("Institution")
        table.add_column("Balance", justify="right", style="green")
        table.add_column("Source")

        for a in accounts:
            table.add_row(
                a.id[:8],
                a.name,
                a.type,
                a.institution or "-",
                _money(a.balance),
                a.source,
            )

        console.print(table)


@app.command("add")
def add_account(
    name: str = typer.Argument(..., help="Account name"),
    type: str = typer.Argument(..., help=f"One of: {', '.join(ACCOUNT_TYPES)}"),
    institution: Optional[str] = typer.Option(None, "--institution", "-i", help="Bank or broker name"),
    balance: Optional[float] = typer.Option(None, "--balance", "-b", help="Current balance"),
    currency: str = typer.Option("USD", "--currency", help="ISO currency code"),
):
    """Add a manual account."""
    with get_db() as db:
        try:
            account = AccountRepository(db).add_account(
                name=name, type=type, institution=institution, balance=balance, currency=currency
            )
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Added:[/green] {account.name} ({account.type}) [dim]{account.id}[/dim]")


@app.command("balance")
def update_balance(
    account_id: str = typer.Argument(..., help="Account ID"),
    balance: float = typer.Argument(..., help="New balance"),
):
    """Set an account's balance."""
    with get_db() as db:
        try:
            account = AccountRepository(db).update_balance(account_id, balance)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Updated:[/green] {account.name} balance is now {_money(account.balance)}")


@app.command("delete")
def delete_account(
    account_id: str = typer.Argument(..., help="Account ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete an account, its transactions and holdings.

    Deleting an account that came from a linked institution removes the whole
    connection.
    """
    if not force:
        typer.confirm(f"Delete account {account_id} and all of its data?", abort=True)

    registry, secrets = provider_services()
    with get_db() as db:
        try:
            result = AccountRepository(db, registry, secrets).delete_account(account_id)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(
            f"[green]Deleted[/green] {result.deleted_accounts} account(s), "
            f"{result.deleted_transactions} transaction(s), {result.deleted_holdings} holding(s)"
        )
        if result.connection_removed:
            console.print("[dim]The linked connection was removed as well.[/dim]")
