"""Budget CLI commands."""

import typer
from rich.console import Console
from rich.table import Table

from tally.core.errors import TallyError
from tally.core.ledger import BudgetRepository
from tally.db.database import get_db
from tally.db.models import BUDGET_PERIODS

console = Console()
app = typer.Typer()


@app.command("list")
def list_budgets():
    """Show budgets and spending in the current period."""
    with get_db() as db:
        statuses = BudgetRepository(db).list_budgets()

        if not statuses:
            console.print("[yellow]No budgets set.[/yellow] Use 'set' to create one.")
            return

        table = Table(title="Budgets")
        table.add_column("ID", style="dim")
        table.add_column("Category", style="cyan")
        table.add_column("Period")
        table.add_column("Budget", justify="right")
        table.add_column("Spent", justify="right")
        table.add_column("Remaining", justify="right", style="green")
        table.add_column("Used", justify="right")

        for s in statuses:
            color = "red" if s.percent_used >= 100 else "yellow" if s.percent_used >= 80 else "green"
            table.add_row(
                s.id[:8],
                s.category,
                s.period,
                f"${s.amount:,.2f}",
                f"${s.actual:,.2f}",
                f"${s.remaining:,.2f}",
                f"[{color}]{s.percent_used}%[/{color}]",
            )

        console.print(table)


@app.command("set")
def set_budget(
    category: str = typer.Argument(..., help="Transaction category"),
    amount: float = typer.Argument(..., help="Budget amount"),
    period: str = typer.Option("monthly", "--period", "-p", help=f"One of: {', '.join(BUDGET_PERIODS)}"),
):
    """Create or update a budget."""
    with get_db() as db:
        try:
            budget = BudgetRepository(db).set_budget(category, amount, period)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Budget set:[/green] {budget.category} ${budget.amount:,.2f} {budget.period}")


@app.command("delete")
def delete_budget(budget_id: str = typer.Argument(..., help="Budget ID")):
    """Delete a budget."""
    with get_db() as db:
        try:
            BudgetRepository(db).delete_budget(budget_id)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[green]Deleted:[/green] {budget_id}")
