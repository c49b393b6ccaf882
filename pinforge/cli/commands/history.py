"""``pinforge history`` — show recent CI runs from the run ledger."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from pinforge.cli.common import RUN_STATE_STYLES, console, err_console, forge_errors
from pinforge.config import settings
from pinforge.core.run_ledger import RunLedger
from pinforge.models.runs import RunState


def history_cmd(
    key: str = typer.Option(
        None,
        "--key",
        "-k",
        help="Only runs with this concurrency key.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of runs to show.",
    ),
    verify: bool = typer.Option(
        False,
        "--verify",
        help="Verify each run's hash chain.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database (default: PINFORGE_LEDGER_PATH).",
    ),
) -> None:
    """List the latest state of recent runs, newest first."""
    db_path = ledger_db or settings.ledger_path
    if not db_path.exists():
        err_console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    latest = ledger.latest_per_run(concurrency_key=key, limit=limit)
    if not latest:
        console.print("[dim]No runs recorded.[/dim]")
        return

    table = Table(title="CI runs")
    table.add_column("Run", style="cyan")
    table.add_column("Key")
    table.add_column("Event")
    table.add_column("State")
    table.add_column("Publish")
    table.add_column("Updated")
    table.add_column("Reason", overflow="fold")

    with forge_errors():
        for entry in latest:
            if verify:
                ledger.verify_chain(entry.run_id)
            state = RunState(entry.transition.partition("->")[2])
            style = RUN_STATE_STYLES[state]
            table.add_row(
                entry.run_id,
                entry.concurrency_key,
                entry.event_kind,
                f"[{style}]{state.value}[/{style}]",
                entry.publish or "-",
                entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                entry.reason,
            )
    console.print(table)
    if verify:
        console.print("[green]All hash chains verified.[/green]")
