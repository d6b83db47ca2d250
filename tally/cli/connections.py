"""Provider connection CLI commands."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tally.cli.services import provider_services
from tally.config import get_settings
from tally.core.errors import TallyError
from tally.core.ledger import ConnectionService
from tally.core.linking import BankConnector, CoinbaseLink, LinkOutcome, LinkStatus
from tally.core.sync import SyncEngine, SyncResult, SyncScheduler
from tally.db.database import get_db

settings = get_settings()
console = Console()
app = typer.Typer()


def _print_sync_result(result: SyncResult) -> None:
    label = result.connection_id[:8]
    if not result.success:
        console.print(f"[red]{label} ({result.provider}) failed:[/red] {result.error}")
        return
    console.print(
        f"[green]{label} ({result.provider}):[/green] "
        f"{result.accounts_synced} account(s), "
        f"+{result.transactions_added} ~{result.transactions_modified} -{result.transactions_removed} transaction(s), "
        f"{result.holdings_synced} holding(s)"
    )
    if result.transactions_skipped:
        console.print(f"  [yellow]{result.transactions_skipped} transaction(s) skipped (unknown account)[/yellow]")


def _print_outcome(outcome: LinkOutcome, provider: str, token: str) -> None:
    if outcome.status == LinkStatus.WAITING:
        console.print("[yellow]The connection is not finished yet.[/yellow]")
        console.print(f"Once you are done in the browser, run: tally connections complete {provider} {token}")
        return
    if outcome.status == LinkStatus.DUPLICATE:
        console.print(
            f"[yellow]{outcome.institution_name or 'This institution'} is already linked[/yellow] "
            f"[dim](connection {outcome.connection_id})[/dim]"
        )
        return
    for linked in outcome.connections:
        console.print(
            f"[green]Linked {linked.institution_name}:[/green] {linked.accounts_synced} account(s), "
            f"{linked.transactions_added} transaction(s), {linked.holdings_synced} holding(s)"
        )
    for connection_id in outcome.duplicates:
        console.print(f"[yellow]Skipped a login already linked[/yellow] [dim](connection {connection_id})[/dim]")


@app.command("list")
def list_connections():
    """List linked institutions."""
    with get_db() as db:
        connections = ConnectionService(db).list_connections()

        if not connections:
            console.print("[yellow]No connections.[/yellow] Use 'connect' or 'coinbase' to link one.")
            return

        table = Table(title="Connections")
        table.add_column("ID", style="dim")
        table.add_column("Provider")
        table.add_column("Institution", style="cyan")
        table.add_column("Accounts", justify="right")
        table.add_column("Last Synced")

        for c in connections:
            table.add_row(
                c.id[:8],
                c.provider,
                c.institution_name or "-",
                str(c.account_count),
                c.last_synced_at.strftime("%Y-%m-%d %H:%M") if c.last_synced_at else "Never",
            )

        console.print(table)


@app.command("sync")
def sync(
    connection_id: Optional[str] = typer.Argument(None, help="Connection ID (default: all)"),
):
    """Pull new data from linked institutions."""
    registry, secrets = provider_services()
    with get_db() as db:
        engine = SyncEngine(db, registry, secrets)
        if connection_id:
            try:
                results = [engine.sync_connection(connection_id)]
            except TallyError as e:
                console.print(f"[red]Sync failed:[/red] {e}")
                raise typer.Exit(1)
        else:
            results = engine.sync_all()

    if not results:
        console.print("[yellow]No connections to sync.[/yellow]")
        return
    for result in results:
        _print_sync_result(result)


@app.command("remove")
def remove(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Unlink an institution and delete its accounts."""
    if not force:
        typer.confirm(f"Remove connection {connection_id} and all of its accounts?", abort=True)

    registry, secrets = provider_services()
    with get_db() as db:
        try:
            result = ConnectionService(db, registry, secrets).remove_connection(connection_id)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    console.print(
        f"[green]Removed[/green] connection with {result.deleted_accounts} account(s), "
        f"{result.deleted_transactions} transaction(s), {result.deleted_holdings} holding(s)"
    )


@app.command("reset-cursor")
def reset_cursor(
    connection_id: str = typer.Argument(..., help="Connection ID"),
):
    """Forget the sync position so the next sync re-fetches full history."""
    with get_db() as db:
        try:
            connection = ConnectionService(db).update_cursor(connection_id, None)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(
            f"[green]Cursor cleared[/green] for {connection.institution_name or connection.id}. "
            f"Run 'tally connections sync {connection.id}' to re-fetch."
        )


@app.command("connect")
def connect(
    institution: str = typer.Argument(..., help="Bank name, e.g. 'Chase'"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the browser flow to finish"),
):
    """Link a bank through Plaid or Finicity."""
    registry, secrets = provider_services()
    with get_db() as db:
        connector = BankConnector(db, registry, secrets)
        console.print(f"Searching for {institution}...")
        try:
            start = connector.connect(institution)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        console.print(f"[bold]{start.institution_name}[/bold] via {start.provider}")
        console.print(f"Open this link to connect:\n  [cyan]{start.link_url}[/cyan]")

        if not wait:
            console.print(f"\nThen run: tally connections complete {start.provider} {start.completion_token}")
            return

        console.print("[dim]Waiting for you to finish in the browser...[/dim]")
        try:
            outcome = connector.complete(start.provider, start.completion_token, start.institution_name)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        _print_outcome(outcome, start.provider, start.completion_token)


@app.command("complete")
def complete(
    provider: str = typer.Argument(..., help="plaid or finicity"),
    token: str = typer.Argument(..., help="Link token (Plaid) or customer id (Finicity)"),
    institution: Optional[str] = typer.Option(None, "--institution", "-i", help="Institution name"),
):
    """Finish a link started with 'connect --no-wait'."""
    registry, secrets = provider_services()
    with get_db() as db:
        try:
            outcome = BankConnector(db, registry, secrets).complete(provider, token, institution)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        _print_outcome(outcome, provider, token)


@app.command("coinbase")
def link_coinbase(
    api_key: str = typer.Option(..., "--api-key", prompt=True, help="Coinbase API key"),
    api_secret: str = typer.Option(..., "--api-secret", prompt=True, hide_input=True, help="Coinbase API secret"),
):
    """Link a Coinbase account with a read-only API key."""
    registry, secrets = provider_services()
    with get_db() as db:
        try:
            outcome = CoinbaseLink(db, registry, secrets).link(api_key, api_secret)
        except TallyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        _print_outcome(outcome, "coinbase", "")


@app.command("watch")
def watch(
    interval: int = typer.Option(
        None,
        "--interval",
        "-n",
        help=f"Seconds between syncs (default: {settings.sync_interval_seconds})",
    ),
):
    """Sync all connections on a schedule (runs continuously)."""
    registry, secrets = provider_services()
    effective_interval = interval or settings.sync_interval_seconds

    console.print("[bold]Starting background sync[/bold]")
    console.print(f"  Interval: {effective_interval} seconds")
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    SyncScheduler(registry, secrets, interval_seconds=effective_interval).start()
